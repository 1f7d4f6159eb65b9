"""Shared test fixtures for chapterreel tests."""

import json
import subprocess
import time
from pathlib import Path

import pytest
import imageio_ffmpeg
from PIL import Image

from chapterreel.process import ProcessError
from chapterreel.render import default_settings

_FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()


def make_image(path: Path, size=(200, 150), color=(40, 90, 160)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path)
    return path


def make_tone(path: Path, duration: float, freq: int = 440) -> Path:
    """Write a mono sine tone WAV of the given duration."""
    path.parent.mkdir(parents=True, exist_ok=True)
    subprocess.run(
        [
            _FFMPEG, "-y",
            "-f", "lavfi", "-i", f"sine=frequency={freq}:duration={duration}",
            "-ac", "1", "-ar", "44100",
            str(path),
        ],
        check=True,
        capture_output=True,
    )
    return path


def write_manifest(root: Path, manifest: dict) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    path = root / "manifest.json"
    path.write_text(json.dumps(manifest))
    return path


def chapter_entry(index: int, duration: float = 2.0, music_volume: float | None = None) -> dict:
    """Manifest chapter dict with the exporter's file naming."""
    entry = {
        "title": f"Chapter {index}",
        "duration": duration,
        "files": {
            "image": f"images/chapter-{index}.png",
            "speech": f"audio/chapter-{index}-speech.wav",
        },
    }
    if music_volume is not None:
        entry["files"]["music"] = f"audio/chapter-{index}-music.wav"
        entry["musicVolume"] = music_volume
    return entry


@pytest.fixture
def project_factory(tmp_path):
    """Build a project directory with placeholder media files.

    Media files are tiny stand-ins; use media_project_factory when a
    real encode is needed.
    """
    def _make(chapters, project_id="test123", root=None, create_files=True):
        root = root or tmp_path / "project"
        write_manifest(root, {
            "projectId": project_id,
            "metadata": {"title": "Test project"},
            "chapters": chapters,
        })
        if create_files:
            for ch in chapters:
                for rel in ch.get("files", {}).values():
                    p = root / rel
                    p.parent.mkdir(parents=True, exist_ok=True)
                    p.write_bytes(b"media")
        return root
    return _make


@pytest.fixture
def media_project_factory(tmp_path):
    """Build a project directory with real images and audio tracks.

    Each chapter spec is (duration, speech_seconds, music_seconds or None,
    music_volume or None).
    """
    def _make(specs, project_id="e2e"):
        root = tmp_path / "project"
        chapters = []
        for i, (duration, speech_secs, music_secs, volume) in enumerate(specs):
            entry = chapter_entry(i, duration, volume if music_secs else None)
            make_image(root / entry["files"]["image"])
            make_tone(root / entry["files"]["speech"], speech_secs, freq=440 + 60 * i)
            if music_secs:
                make_tone(root / entry["files"]["music"], music_secs, freq=220)
            chapters.append(entry)
        write_manifest(root, {
            "projectId": project_id,
            "metadata": {"title": "End to end"},
            "chapters": chapters,
        })
        return root
    return _make


@pytest.fixture
def small_settings():
    """Fast encode settings for real-ffmpeg tests."""
    return default_settings(fps=10, resolution=(160, 120), preset="ultrafast")


class FakeRunner:
    """Stand-in for run_process that never invokes ffmpeg.

    Chapter commands write `chapter-<i>` into their output file. Concat
    commands read the concat list and write the joined segment contents,
    so tests can check the order segments were assembled in.
    """

    def __init__(self, fail_chapters=(), fail_concat=False, reason="failed", delays=None,
                 write_output=True):
        self.fail_chapters = set(fail_chapters)
        self.fail_concat = fail_concat
        self.reason = reason
        self.delays = delays or {}
        self.write_output = write_output
        self.calls = []

    def __call__(self, cmd, timeout=None, cancel=None):
        self.calls.append(list(cmd))
        out = Path(cmd[-1])

        if "concat" in cmd:
            if cancel is not None and cancel.is_set():
                raise ProcessError(cmd, "cancelled")
            if self.fail_concat:
                raise ProcessError(cmd, self.reason, returncode=1, stderr="concat exploded")
            list_path = Path(cmd[cmd.index("-i") + 1])
            data = b""
            for line in list_path.read_text().splitlines():
                seg = line[len("file '"):-1]
                data += Path(seg).read_bytes() + b"|"
            out.write_bytes(data)
            return

        index = int(out.stem.split("-")[1])
        if index in self.delays:
            time.sleep(self.delays[index])
        if cancel is not None and cancel.is_set():
            raise ProcessError(cmd, "cancelled")
        if index in self.fail_chapters:
            raise ProcessError(cmd, self.reason, returncode=1, stderr=f"chapter {index} exploded")
        if self.write_output:
            out.write_bytes(f"chapter-{index}".encode())

    def chapter_calls(self):
        return [c for c in self.calls if "concat" not in c]


@pytest.fixture
def fake_runner():
    return FakeRunner
