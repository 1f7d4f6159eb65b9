"""Chapter renderer — one still image + speech (+ music) into one segment.

Each chapter is encoded by a single ffmpeg invocation:

  video: the image is looped for `duration` seconds at `fps`, scaled and
         cropped to the output resolution, then pushed through zoompan
         for a centred Ken Burns zoom-in.
  audio: speech alone, or speech and music each gain-adjusted and mixed
         with amix duration=shortest (the mix ends with the shorter track).
  trim:  -shortest, so a segment never outlasts its audio or its video.

Zoom model: zoom(n) = min(1 + n * zoom_step, max_zoom) for output frame n.
Non-decreasing in n and capped, whatever the chapter duration.

Segments are named by chapter index (chapter-<i>.mp4). With workers > 1
chapters are encoded concurrently, but the returned list is always in
manifest order.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed, wait
from pathlib import Path

from .common import codec_params, ffmpeg_exe, segment_filename
from .errors import RenderError
from .manifest import chapter_paths
from .process import ProcessError, run_process


# ── Settings ──────────────────────────────────────────────────────

DEFAULT_SETTINGS = {
    "fps": 30,
    "resolution": (1920, 1080),
    "zoom_step": 0.0015,
    "max_zoom": 1.5,
    "speech_volume": 1.0,
    "codec": "libx264",
    "preset": "medium",
    "audio_bitrate": "192k",
}

VALID_CODECS = {"libx264", "h264_nvenc"}

# Uniform audio layout across segments; the concat stream copy requires it.
AUDIO_RATE = 44100
AUDIO_CHANNELS = 2


def default_settings(**overrides) -> dict:
    """Return a validated copy of DEFAULT_SETTINGS with overrides applied.

    Raises:
        ValueError: Unknown key or out-of-range value.
    """
    unknown = set(overrides) - set(DEFAULT_SETTINGS)
    if unknown:
        raise ValueError(f"Unknown render setting(s): {sorted(unknown)}")

    settings = {**DEFAULT_SETTINGS, **overrides}
    settings["resolution"] = tuple(settings["resolution"])

    if not isinstance(settings["fps"], int) or settings["fps"] <= 0:
        raise ValueError(f"fps must be a positive integer, got {settings['fps']!r}")
    if len(settings["resolution"]) != 2 or any(
        not isinstance(v, int) or v <= 0 or v % 2 for v in settings["resolution"]
    ):
        raise ValueError(
            f"resolution must be two positive even integers, got {settings['resolution']!r}"
        )
    if settings["zoom_step"] < 0:
        raise ValueError(f"zoom_step must be >= 0, got {settings['zoom_step']!r}")
    if settings["max_zoom"] < 1.0:
        raise ValueError(f"max_zoom must be >= 1.0, got {settings['max_zoom']!r}")
    if settings["speech_volume"] < 0:
        raise ValueError(f"speech_volume must be >= 0, got {settings['speech_volume']!r}")
    if settings["codec"] not in VALID_CODECS:
        raise ValueError(
            f"Unknown codec '{settings['codec']}'. Valid: {sorted(VALID_CODECS)}"
        )
    return settings


# ── Ken Burns zoom ────────────────────────────────────────────────

def zoom_at(frame: int, zoom_step: float, max_zoom: float) -> float:
    """Zoom factor for output frame `frame` — mirrors zoom_expression()."""
    return min(1.0 + frame * zoom_step, max_zoom)


def zoom_expression(zoom_step: float, max_zoom: float) -> str:
    """zoompan z= expression. `on` is zoompan's output frame counter."""
    return f"min(1+on*{zoom_step:g},{max_zoom:g})"


def _video_chain(settings: dict) -> str:
    w, h = settings["resolution"]
    fps = settings["fps"]
    z = zoom_expression(settings["zoom_step"], settings["max_zoom"])
    # Looped input already yields one frame per output frame, so d=1.
    return (
        f"[0:v]scale={w}:{h}:force_original_aspect_ratio=increase,"
        f"crop={w}:{h},setsar=1,"
        f"zoompan=z='{z}':x='iw/2-(iw/zoom/2)':y='ih/2-(ih/zoom/2)'"
        f":d=1:s={w}x{h}:fps={fps},"
        f"format=yuv420p[vout]"
    )


def build_filter_graph(chapter: dict, settings: dict) -> tuple[str, str]:
    """Build the filter_complex for a chapter.

    Input layout: 0 = image, 1 = speech, 2 = music (if present).

    Returns (filter_graph, audio_map) where audio_map is the -map value
    for the audio stream.
    """
    parts = [_video_chain(settings)]

    if "music" not in chapter["files"]:
        return ";".join(parts), "1:a"

    parts.append(f"[1:a]volume={settings['speech_volume']:g}[speech]")
    parts.append(f"[2:a]volume={chapter['musicVolume']:g}[music]")
    parts.append("[speech][music]amix=inputs=2:duration=shortest[aout]")
    return ";".join(parts), "[aout]"


def format_seconds(value: float) -> str:
    """Plain decimal seconds for ffmpeg time options, to the microsecond."""
    # ffmpeg parses time values at microsecond precision, without exponents.
    return f"{value:.6f}".rstrip("0").rstrip(".")


def build_chapter_command(
    chapter: dict,
    paths: dict[str, Path],
    output_path: str | Path,
    settings: dict,
) -> list[str]:
    """Build the ffmpeg argument list for one chapter.

    Args:
        chapter: Normalized chapter dict from load_manifest().
        paths: Absolute input paths (image, speech, optional music).
        output_path: Segment file to write. Always the last argument.
        settings: Render settings from default_settings().
    """
    fps = settings["fps"]
    duration = chapter["duration"]
    codec = settings["codec"]

    inputs = [
        "-loop", "1", "-framerate", str(fps), "-t", format_seconds(duration),
        "-i", str(paths["image"]),
        "-i", str(paths["speech"]),
    ]
    if "music" in paths:
        inputs.extend(["-i", str(paths["music"])])

    filter_graph, audio_map = build_filter_graph(chapter, settings)

    video_args = ["-c:v", codec]
    if codec == "libx264":
        video_args.extend(["-preset", settings["preset"]])
    video_args.extend(codec_params(codec))

    return [
        ffmpeg_exe(), "-y",
        *inputs,
        "-filter_complex", filter_graph,
        "-map", "[vout]",
        "-map", audio_map,
        *video_args,
        "-r", str(fps),
        "-c:a", "aac", "-b:a", settings["audio_bitrate"],
        "-ar", str(AUDIO_RATE), "-ac", str(AUDIO_CHANNELS),
        "-shortest",
        str(output_path),
    ]


# ── Rendering ─────────────────────────────────────────────────────

def render_chapter(
    chapter: dict,
    project_root: str | Path,
    output_path: str | Path,
    settings: dict,
    runner=run_process,
    timeout: float | None = None,
    cancel=None,
) -> Path:
    """Render one chapter to output_path.

    Returns:
        output_path as a Path.

    Raises:
        RenderError: Input file missing, encoder failed / timed out /
            was cancelled, or no output was written.
    """
    index, title = chapter["index"], chapter["title"]
    paths = chapter_paths(chapter, project_root)

    for key, path in paths.items():
        if not path.is_file():
            raise RenderError(
                index, title, f"files.{key} not found: {chapter['files'][key]}",
                reason="missing_input",
            )

    output_path = Path(output_path)
    cmd = build_chapter_command(chapter, paths, output_path, settings)
    try:
        runner(cmd, timeout=timeout, cancel=cancel)
    except ProcessError as e:
        raise RenderError(index, title, str(e), reason=e.reason, diagnostic=e.stderr) from e

    try:
        size = output_path.stat().st_size if output_path.is_file() else 0
    except OSError as e:
        raise RenderError(index, title, f"Could not read segment {output_path}: {e}") from e
    if size == 0:
        raise RenderError(index, title, f"encoder wrote no output to {output_path}", reason="missing_output")
    return output_path


def _label(chapter: dict) -> str:
    return f"[{chapter['index']}] {chapter['title']}"


def _render_one(chapter, project_root, scratch_dir, settings, runner, timeout, cancel):
    """Worker: render one chapter, logging START/DONE lines."""
    label = _label(chapter)
    print(f"  START  {label}", flush=True)
    t0 = time.monotonic()
    out = render_chapter(
        chapter, project_root, Path(scratch_dir) / segment_filename(chapter["index"]),
        settings, runner=runner, timeout=timeout, cancel=cancel,
    )
    print(f"  DONE   {label} — {time.monotonic() - t0:.1f}s wall", flush=True)
    return out


class _AbortSignal:
    """Event-like flag: set by the caller's cancel event or by a failed sibling chapter."""

    def __init__(self, cancel=None):
        self._cancel = cancel
        self._failed = threading.Event()

    def set(self):
        self._failed.set()

    def is_set(self) -> bool:
        return self._failed.is_set() or (self._cancel is not None and self._cancel.is_set())


def render_chapters(
    chapters: list[dict],
    project_root: str | Path,
    scratch_dir: str | Path,
    settings: dict,
    workers: int = 1,
    runner=run_process,
    timeout: float | None = None,
    cancel=None,
) -> list[Path]:
    """Render every chapter into scratch_dir.

    workers == 1 renders in manifest order and stops at the first
    failure. workers > 1 keeps up to `workers` encoders in flight; the
    first failure cancels queued chapters and kills in-flight ones.

    Returns:
        Segment paths ordered by chapter index, regardless of the order
        in which encodes finished.

    Raises:
        RenderError: The first chapter failure observed.
    """
    effective_workers = max(1, min(workers, len(chapters)))

    if effective_workers == 1:
        print(f"Rendering {len(chapters)} chapters\n", flush=True)
        return [
            _render_one(ch, project_root, scratch_dir, settings, runner, timeout, cancel)
            for ch in chapters
        ]

    print(f"Rendering {len(chapters)} chapters ({effective_workers} workers)\n", flush=True)
    abort = _AbortSignal(cancel)
    segments = {}
    first_error = None

    with ThreadPoolExecutor(max_workers=effective_workers) as pool:
        futures = {
            pool.submit(
                _render_one, ch, project_root, scratch_dir, settings, runner, timeout, abort,
            ): ch
            for ch in chapters
        }
        try:
            for future in as_completed(futures):
                if future.cancelled():
                    continue
                try:
                    segments[futures[future]["index"]] = future.result()
                except RenderError as e:
                    if first_error is None:
                        first_error = e
                        abort.set()
                        for f in futures:
                            f.cancel()
        except KeyboardInterrupt:
            abort.set()
            for f in futures:
                f.cancel()
            wait(futures)
            if first_error is None:
                first_error = _first_cancelled(futures) or RenderError(
                    None, None, "interrupted", reason="cancelled",
                )
        except BaseException:
            abort.set()
            for f in futures:
                f.cancel()
            raise

    if first_error is not None:
        raise first_error
    return [segments[i] for i in sorted(segments)]


def _first_cancelled(futures) -> RenderError | None:
    """Lowest-index RenderError among finished futures, if any."""
    found = []
    for future, chapter in futures.items():
        if future.done() and not future.cancelled():
            exc = future.exception()
            if isinstance(exc, RenderError):
                found.append((chapter["index"], exc))
    return min(found, key=lambda pair: pair[0])[1] if found else None
