"""Assembler — join rendered chapter segments into the final video.

Uses ffmpeg's concat demuxer with stream copy (-c copy): no re-encode,
so every segment must come from the same renderer settings.

The join writes to `<output>.part` next to the final path and renames it
into place only after ffmpeg reports success; on any failure the partial
file is removed, so the final path either holds a complete video or
does not exist.
"""

import os
from pathlib import Path

from .common import ffmpeg_exe
from .errors import AssemblyError
from .process import ProcessError, run_process


def _quote(path: Path) -> str:
    # concat demuxer syntax: single-quoted, embedded quotes as '\''
    return "'" + path.resolve().as_posix().replace("'", "'\\''") + "'"


def write_concat_list(segments: list[str | Path], list_path: str | Path) -> Path:
    """Write the concat demuxer input file, one `file '<path>'` per segment."""
    list_path = Path(list_path)
    with open(list_path, "w", encoding="utf-8") as f:
        for seg in segments:
            f.write(f"file {_quote(Path(seg))}\n")
    return list_path


def build_concat_command(list_path: str | Path, output_path: str | Path) -> list[str]:
    """ffmpeg stream-copy concat. Output path is the last argument."""
    return [
        ffmpeg_exe(), "-y",
        "-f", "concat", "-safe", "0",
        "-i", str(list_path),
        "-c", "copy",
        "-f", "mp4",
        str(output_path),
    ]


def assemble_segments(
    segments: list[str | Path],
    output_path: str | Path,
    scratch_dir: str | Path,
    runner=run_process,
    timeout: float | None = None,
    cancel=None,
) -> Path:
    """Concatenate segments, in the given order, into output_path.

    Args:
        segments: Segment paths in playback order.
        output_path: Final video path.
        scratch_dir: Where to write the concat list.

    Returns:
        output_path as a Path.

    Raises:
        AssemblyError: No segments, a segment is missing, or the join
            failed / timed out / was cancelled.
    """
    if not segments:
        raise AssemblyError("No segments to assemble")

    missing = [str(s) for s in segments if not Path(s).is_file()]
    if missing:
        raise AssemblyError(
            f"Missing {len(missing)} segment(s): {', '.join(missing)}",
            reason="missing_input",
        )

    output_path = Path(output_path)
    partial = output_path.with_name(output_path.name + ".part")
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        list_path = write_concat_list(segments, Path(scratch_dir) / "concat.txt")
    except OSError as e:
        raise AssemblyError(f"Could not prepare output {output_path}: {e}") from e
    cmd = build_concat_command(list_path, partial)

    try:
        try:
            runner(cmd, timeout=timeout, cancel=cancel)
        except ProcessError as e:
            raise AssemblyError(f"Concat failed: {e}", reason=e.reason, diagnostic=e.stderr) from e

        if not partial.is_file() or partial.stat().st_size == 0:
            raise AssemblyError(f"Concat wrote no output to {partial}", reason="missing_output")

        try:
            os.replace(partial, output_path)
        except OSError as e:
            raise AssemblyError(f"Could not publish {output_path}: {e}") from e
    finally:
        partial.unlink(missing_ok=True)

    return output_path
