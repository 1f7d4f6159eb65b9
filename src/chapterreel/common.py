"""chapterreel.common — shared helpers.

Contains: ffmpeg executable lookup, project-relative path resolution,
and the deterministic file names used for segments and final output.
"""

from pathlib import Path

import imageio_ffmpeg


# ── ffmpeg ─────────────────────────────────────────────────────────
# imageio-ffmpeg ships a static ffmpeg binary per platform, so the
# pipeline works without a system-wide install.

def ffmpeg_exe() -> str:
    """Return the path of the ffmpeg executable to invoke."""
    return imageio_ffmpeg.get_ffmpeg_exe()


def codec_params(codec: str) -> list[str]:
    """Return the quality/pixel-format ffmpeg params for a video codec."""
    if codec == "h264_nvenc":
        return ["-cq", "20", "-pix_fmt", "yuv420p"]
    return ["-crf", "20", "-pix_fmt", "yuv420p"]


# ── Path utilities ─────────────────────────────────────────────────

def resolve_project_path(project_root: str | Path, relative: str) -> Path:
    """Resolve a manifest path against the project root.

    The result must stay inside the root; '..' escapes and absolute
    paths pointing elsewhere raise ValueError.
    """
    root = Path(project_root).resolve()
    resolved = (root / relative).resolve()
    if resolved != root and root not in resolved.parents:
        raise ValueError(f"Path escapes project root: {relative}")
    return resolved


# ── Naming ─────────────────────────────────────────────────────────

CONTAINER_EXT = "mp4"


def segment_filename(index: int) -> str:
    """chapter-<index>.mp4 — named by manifest position, not completion order."""
    return f"chapter-{index}.{CONTAINER_EXT}"


def artifact_filename(project_id: str) -> str:
    return f"video-{project_id}.{CONTAINER_EXT}"


def tail(text: str, lines: int = 40) -> str:
    """Last `lines` lines of process output, for error diagnostics."""
    if not text:
        return ""
    return "\n".join(text.rstrip().splitlines()[-lines:])
