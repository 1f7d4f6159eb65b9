"""CLI for building a chapter video from a project directory.

Reads <project>/manifest.json, renders every chapter with a Ken Burns
zoom over its image, mixes speech with optional music, and concatenates
the chapters into <output-dir>/video-<projectId>.mp4.

Usage:
    chapterreel projects/abc123
    chapterreel projects/abc123 --output-dir out/ --workers 4
    chapterreel projects/abc123 --resolution 1280x720 --fps 25 --gpu

    # Validate only (no rendering)
    chapterreel projects/abc123 --validate

Exit status: 0 on success, 1 on any manifest, render, or assembly
failure, 2 on usage errors.
"""

import argparse
import sys

from .errors import PipelineError
from .manifest import load_manifest, validate_paths
from .pipeline import Pipeline
from .render import default_settings


def _parse_resolution(value: str) -> tuple[int, int]:
    try:
        w, h = value.lower().split("x")
        return int(w), int(h)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected WIDTHxHEIGHT, got '{value}'") from None


def _print_error(error: PipelineError) -> None:
    print(f"\nError [{error.stage}]: {error}", file=sys.stderr)
    if error.reason not in ("failed", getattr(error, "kind", None)):
        print(f"  reason: {error.reason}", file=sys.stderr)
    if error.diagnostic:
        print("  ffmpeg output:", file=sys.stderr)
        for line in error.diagnostic.splitlines():
            print(f"    {line}", file=sys.stderr)


def _validate(project_root: str) -> int:
    config = load_manifest(project_root)
    print(f"Manifest valid: {len(config['chapters'])} chapters")
    for ch in config["chapters"]:
        music = f", music x{ch['musicVolume']:g}" if "music" in ch["files"] else ""
        print(f"  {ch['index']}: {ch['title']} ({ch['duration']:g}s{music})")
    try:
        validate_paths(config)
    except FileNotFoundError as e:
        print(str(e), file=sys.stderr, end="")
        return 1
    print("All paths verified.")
    return 0


def main(args=None):
    parser = argparse.ArgumentParser(
        prog="chapterreel",
        description="Build a narrated chapter video from a project manifest.",
    )
    parser.add_argument(
        "project",
        help="Project root directory containing manifest.json",
    )
    parser.add_argument(
        "--output-dir", default="output",
        help="Directory for the final video (default: ./output)",
    )
    parser.add_argument(
        "--workers", type=int, default=1,
        help="Number of chapters encoded in parallel (default: 1)",
    )
    parser.add_argument(
        "--timeout", type=float, default=None,
        help="Kill any single ffmpeg invocation after N seconds",
    )
    parser.add_argument(
        "--fps", type=int, default=30,
        help="Output frame rate (default: 30)",
    )
    parser.add_argument(
        "--resolution", type=_parse_resolution, default=(1920, 1080),
        help="Output resolution WIDTHxHEIGHT (default: 1920x1080)",
    )
    parser.add_argument(
        "--max-zoom", type=float, default=1.5,
        help="Ken Burns zoom cap (default: 1.5)",
    )
    parser.add_argument(
        "--gpu", action="store_true",
        help="Use GPU encoding (h264_nvenc). Default is CPU (libx264).",
    )
    parser.add_argument(
        "--validate", action="store_true",
        help="Validate manifest only — check paths, don't render",
    )
    parsed = parser.parse_args(args)

    if parsed.workers < 1:
        parser.error("--workers must be >= 1")
    if parsed.timeout is not None and parsed.timeout <= 0:
        parser.error("--timeout must be > 0")

    try:
        settings = default_settings(
            fps=parsed.fps,
            resolution=parsed.resolution,
            max_zoom=parsed.max_zoom,
            codec="h264_nvenc" if parsed.gpu else "libx264",
        )
    except ValueError as e:
        parser.error(str(e))

    try:
        if parsed.validate:
            sys.exit(_validate(parsed.project))

        Pipeline(
            parsed.project,
            parsed.output_dir,
            settings=settings,
            workers=parsed.workers,
            timeout=parsed.timeout,
        ).run()
    except PipelineError as e:
        _print_error(e)
        sys.exit(1)


if __name__ == "__main__":
    main()
