#!/usr/bin/env python3
"""Generate a synthetic chapter project for trying out chapterreel.

Creates examples/demo-project/ with one numbered title image per
chapter, a sine-tone "speech" track per chapter, a quieter music bed
for every other chapter, and a manifest.json tying them together.

Usage:
    python examples/generate_demo_project.py
    # Then build:
    chapterreel examples/demo-project --output-dir examples/demo-output \
        --resolution 640x360 --workers 2
"""

import json
import subprocess
from pathlib import Path

import imageio_ffmpeg
from PIL import Image, ImageDraw, ImageFont

PROJECT_DIR = Path(__file__).resolve().parent / "demo-project"
SIZE = (640, 360)

_FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()

# (title, background color, duration seconds, speech tone Hz, has music)
CHAPTERS = [
    ("Introduction", (180, 60, 60),  4.0, 440, False),
    ("The Problem",  (60, 60, 180),  3.0, 523, True),
    ("A Solution",   (60, 160, 60),  5.0, 587, False),
    ("Wrapping Up",  (200, 130, 40), 3.5, 659, True),
]


def _make_image(title: str, color: tuple[int, int, int], out: Path) -> None:
    """White chapter title on a solid background."""
    img = Image.new("RGB", SIZE, color)
    draw = ImageDraw.Draw(img)
    try:
        font = ImageFont.truetype(
            "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf", 48
        )
    except OSError:
        font = ImageFont.load_default()
    bbox = draw.textbbox((0, 0), title, font=font)
    tw, th = bbox[2] - bbox[0], bbox[3] - bbox[1]
    draw.text(((SIZE[0] - tw) / 2, (SIZE[1] - th) / 2), title, fill=(255, 255, 255), font=font)
    img.save(out)


def _make_tone(freq: int, duration: float, out: Path) -> None:
    subprocess.run(
        [
            _FFMPEG, "-y",
            "-f", "lavfi", "-i", f"sine=frequency={freq}:duration={duration}",
            "-c:a", "libmp3lame", "-b:a", "64k",
            str(out),
        ],
        check=True,
        capture_output=True,
    )


def main():
    (PROJECT_DIR / "images").mkdir(parents=True, exist_ok=True)
    (PROJECT_DIR / "audio").mkdir(parents=True, exist_ok=True)

    chapters = []
    for i, (title, color, duration, freq, has_music) in enumerate(CHAPTERS):
        files = {
            "image": f"images/chapter-{i}.jpg",
            "speech": f"audio/chapter-{i}-speech.mp3",
        }
        _make_image(title, color, PROJECT_DIR / files["image"])
        _make_tone(freq, duration, PROJECT_DIR / files["speech"])

        chapter = {"title": title, "duration": duration, "files": files}
        if has_music:
            files["music"] = f"audio/chapter-{i}-music.mp3"
            # Music runs longer than speech; the mix ends with the speech.
            _make_tone(220, duration + 2, PROJECT_DIR / files["music"])
            chapter["musicVolume"] = 0.3
        chapters.append(chapter)
        print(f"  wrote chapter {i}: {title} ({duration}s)")

    manifest = {
        "projectId": "demo",
        "metadata": {"title": "chapterreel demo"},
        "chapters": chapters,
    }
    with open(PROJECT_DIR / "manifest.json", "w") as f:
        json.dump(manifest, f, indent=2)

    print(f"\nDone: {PROJECT_DIR}")


if __name__ == "__main__":
    main()
