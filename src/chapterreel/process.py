"""Process invocation for encoder calls.

A runner is any callable `runner(cmd, timeout=None, cancel=None)` that
executes one command to completion and raises ProcessError otherwise.
The renderer and assembler only talk to ffmpeg through a runner, so a
different backend (or a fake, in tests) can be swapped in without
touching pipeline logic.

Cancellation: `cancel` is a threading.Event. While the child runs, the
runner polls it every POLL_INTERVAL seconds; once set, or once the
timeout elapses, or if KeyboardInterrupt arrives mid-wait, the child is
killed and reaped before ProcessError is raised.
"""

import subprocess
import time

from .common import tail


POLL_INTERVAL = 0.2


class ProcessError(Exception):
    """An external command failed, timed out, or was cancelled."""

    def __init__(self, cmd, reason: str, returncode=None, stderr: str = ""):
        self.cmd = list(cmd)
        self.reason = reason
        self.returncode = returncode
        self.stderr = stderr
        if reason == "failed":
            msg = f"{self.cmd[0]} exited with code {returncode}"
        elif reason == "timeout":
            msg = f"{self.cmd[0]} timed out"
        else:
            msg = f"{self.cmd[0]} was {reason}"
        super().__init__(msg)


def _kill(proc: subprocess.Popen) -> str:
    proc.kill()
    _, stderr = proc.communicate()
    return stderr or ""


def run_process(cmd, timeout: float | None = None, cancel=None) -> subprocess.CompletedProcess:
    """Run cmd to completion, capturing output.

    Args:
        cmd: Argument list (no shell).
        timeout: Seconds before the child is killed, or None.
        cancel: Optional threading.Event; setting it kills the child.

    Returns:
        CompletedProcess with returncode 0.

    Raises:
        ProcessError: reason "failed" (non-zero exit or not startable),
            "timeout" or "cancelled".
    """
    if cancel is not None and cancel.is_set():
        raise ProcessError(cmd, "cancelled")

    try:
        proc = subprocess.Popen(
            cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True,
        )
    except OSError as e:
        raise ProcessError(cmd, "failed", stderr=str(e)) from e

    deadline = None if timeout is None else time.monotonic() + timeout
    try:
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.is_set():
                    raise ProcessError(cmd, "cancelled", stderr=tail(_kill(proc)))
                if deadline is not None and time.monotonic() >= deadline:
                    raise ProcessError(cmd, "timeout", stderr=tail(_kill(proc)))
    except KeyboardInterrupt:
        _kill(proc)
        raise ProcessError(cmd, "cancelled") from None

    if proc.returncode != 0:
        raise ProcessError(cmd, "failed", returncode=proc.returncode, stderr=tail(stderr))
    return subprocess.CompletedProcess(cmd, proc.returncode, stdout, stderr)
