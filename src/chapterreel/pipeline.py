"""Pipeline controller — load, render all chapters, assemble, clean up.

State machine:

  idle → loading → rendering → assembling → cleaning_up → done
                 ↘           ↘            ↘
                              failed

Loading failures happen before any scratch area exists. Once rendering
starts, a run-scoped scratch directory (temp-XXXX inside the project
root) holds the chapter segments and the concat list; it is removed at
the end of every run, successful or not. A cleanup failure only emits a
CleanupWarning and never changes the run's outcome.

All inputs are explicit constructor arguments, so independent runs never
share state.
"""

import enum
import shutil
import tempfile
import time
import warnings
from pathlib import Path

from .assemble import assemble_segments
from .common import artifact_filename
from .errors import AssemblyError, CleanupWarning, ManifestError, RenderError
from .manifest import load_manifest
from .process import run_process
from .render import default_settings, render_chapters


class State(enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    RENDERING = "rendering"
    ASSEMBLING = "assembling"
    CLEANING_UP = "cleaning_up"
    DONE = "done"
    FAILED = "failed"


class Pipeline:
    """One build of one project. Not reusable: call run() once."""

    def __init__(
        self,
        project_root: str | Path,
        output_dir: str | Path,
        settings: dict | None = None,
        workers: int = 1,
        timeout: float | None = None,
        runner=run_process,
        cancel=None,
        scratch_parent: str | Path | None = None,
    ):
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self.project_root = Path(project_root)
        self.output_dir = Path(output_dir)
        self.settings = settings if settings is not None else default_settings()
        self.workers = workers
        self.timeout = timeout
        self.runner = runner
        self.cancel = cancel
        self.scratch_parent = scratch_parent

        self.state = State.IDLE
        self.history = [State.IDLE]
        self.config = None
        self.scratch_dir = None
        self.output_path = None
        self.error = None

    def _enter(self, state: State) -> None:
        self.state = state
        self.history.append(state)

    def _fail(self, error: BaseException) -> None:
        self.error = error
        self._enter(State.FAILED)

    def run(self) -> Path:
        """Execute the whole build.

        Returns:
            Path of the final video.

        Raises:
            ManifestError, RenderError, AssemblyError: the failing stage.
        """
        if self.state is not State.IDLE:
            raise RuntimeError(f"Pipeline already ran (state: {self.state.value})")

        t0 = time.monotonic()
        self._enter(State.LOADING)
        try:
            self.config = load_manifest(self.project_root)
        except ManifestError as e:
            self._fail(e)
            raise

        chapters = self.config["chapters"]
        print(f"Project: {self.config['title'] or self.config['projectId']}")
        print(f"Chapters: {len(chapters)}\n")

        try:
            output = self._render_and_assemble()
        except KeyboardInterrupt:
            error = self._interrupted()
            self._cleanup()
            self._fail(error)
            raise error from None
        except BaseException as e:
            self._cleanup()
            self._fail(e)
            raise

        self._enter(State.CLEANING_UP)
        self._cleanup()
        self._enter(State.DONE)
        self.output_path = output
        print(f"\nDone: {output} ({time.monotonic() - t0:.1f}s total)")
        return output

    def _render_and_assemble(self) -> Path:
        self._enter(State.RENDERING)
        parent = self.scratch_parent or self.config["root"]
        try:
            self.scratch_dir = Path(tempfile.mkdtemp(prefix="temp-", dir=parent))
        except OSError as e:
            raise RenderError(None, None, f"Could not create scratch directory in {parent}: {e}") from e

        segments = render_chapters(
            self.config["chapters"],
            self.config["root"],
            self.scratch_dir,
            self.settings,
            workers=self.workers,
            runner=self.runner,
            timeout=self.timeout,
            cancel=self.cancel,
        )

        self._enter(State.ASSEMBLING)
        output_path = self.output_dir / artifact_filename(self.config["projectId"])
        print(f"\nAssembling {len(segments)} segments -> {output_path}")
        return assemble_segments(
            segments,
            output_path,
            self.scratch_dir,
            runner=self.runner,
            timeout=self.timeout,
            cancel=self.cancel,
        )

    def _interrupted(self):
        if self.state is State.ASSEMBLING:
            return AssemblyError("Assembly interrupted", reason="cancelled")
        return RenderError(None, None, "interrupted", reason="cancelled")

    def _cleanup(self) -> None:
        """Best-effort removal of the scratch directory."""
        if self.scratch_dir is None or not self.scratch_dir.exists():
            return
        try:
            shutil.rmtree(self.scratch_dir)
        except OSError as e:
            warnings.warn(
                f"Could not remove scratch directory {self.scratch_dir}: {e}",
                CleanupWarning,
                stacklevel=2,
            )


def build_video(project_root: str | Path, output_dir: str | Path, **kwargs) -> Path:
    """Build the final video for project_root into output_dir."""
    return Pipeline(project_root, output_dir, **kwargs).run()
