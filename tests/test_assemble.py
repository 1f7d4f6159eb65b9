"""Tests for segment concatenation."""

import threading

import pytest
from moviepy import VideoFileClip

from chapterreel.assemble import (
    assemble_segments,
    build_concat_command,
    write_concat_list,
)
from chapterreel.errors import AssemblyError
from chapterreel.manifest import load_manifest
from chapterreel.process import ProcessError
from chapterreel.render import render_chapters


def _segments(tmp_path, n):
    paths = []
    for i in range(n):
        p = tmp_path / f"chapter-{i}.mp4"
        p.write_bytes(f"chapter-{i}".encode())
        paths.append(p)
    return paths


class TestConcatList:
    def test_one_line_per_segment_in_order(self, tmp_path):
        segs = _segments(tmp_path, 3)
        list_path = write_concat_list(segs, tmp_path / "concat.txt")
        lines = list_path.read_text().splitlines()
        assert lines == [f"file '{s.resolve().as_posix()}'" for s in segs]

    def test_quotes_escaped(self, tmp_path):
        seg = tmp_path / "it's.mp4"
        seg.write_bytes(b"x")
        line = write_concat_list([seg], tmp_path / "concat.txt").read_text().strip()
        assert line.endswith("it'\\''s.mp4'")


class TestConcatCommand:
    def test_stream_copy(self, tmp_path):
        cmd = build_concat_command(tmp_path / "concat.txt", tmp_path / "out.mp4")
        assert cmd[cmd.index("-f") + 1] == "concat"
        assert cmd[cmd.index("-safe") + 1] == "0"
        assert cmd[cmd.index("-c") + 1] == "copy"
        assert cmd[-1] == str(tmp_path / "out.mp4")


class TestAssembleSegments:
    def test_joins_in_given_order(self, tmp_path, fake_runner):
        segs = _segments(tmp_path, 3)
        out = assemble_segments(segs, tmp_path / "out" / "video-x.mp4", tmp_path, runner=fake_runner())
        assert out == tmp_path / "out" / "video-x.mp4"
        assert out.read_bytes() == b"chapter-0|chapter-1|chapter-2|"
        assert not (tmp_path / "out" / "video-x.mp4.part").exists()

    def test_empty_raises(self, tmp_path, fake_runner):
        with pytest.raises(AssemblyError, match="No segments"):
            assemble_segments([], tmp_path / "video.mp4", tmp_path, runner=fake_runner())

    def test_missing_segment_raises(self, tmp_path, fake_runner):
        segs = _segments(tmp_path, 2)
        segs[1].unlink()
        runner = fake_runner()
        with pytest.raises(AssemblyError, match="Missing 1 segment") as exc_info:
            assemble_segments(segs, tmp_path / "video.mp4", tmp_path, runner=runner)
        assert exc_info.value.stage == "assemble"
        assert runner.calls == []
        assert not (tmp_path / "video.mp4").exists()

    def test_failure_leaves_no_artifact(self, tmp_path, fake_runner):
        segs = _segments(tmp_path, 2)
        out_dir = tmp_path / "out"
        with pytest.raises(AssemblyError) as exc_info:
            assemble_segments(segs, out_dir / "video.mp4", tmp_path, runner=fake_runner(fail_concat=True))
        assert exc_info.value.diagnostic == "concat exploded"
        assert list(out_dir.iterdir()) == []

    def test_partial_output_removed_on_failure(self, tmp_path):
        segs = _segments(tmp_path, 2)
        out = tmp_path / "video.mp4"

        def runner(cmd, timeout=None, cancel=None):
            # ffmpeg died mid-write.
            (tmp_path / "video.mp4.part").write_bytes(b"half")
            raise ProcessError(cmd, "timeout")

        with pytest.raises(AssemblyError) as exc_info:
            assemble_segments(segs, out, tmp_path, runner=runner)
        assert exc_info.value.reason == "timeout"
        assert not out.exists()
        assert not (tmp_path / "video.mp4.part").exists()

    def test_cancelled_before_join(self, tmp_path, fake_runner):
        segs = _segments(tmp_path, 2)
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(AssemblyError) as exc_info:
            assemble_segments(segs, tmp_path / "out" / "video.mp4", tmp_path, runner=fake_runner(), cancel=cancel)
        assert exc_info.value.cancelled
        assert list((tmp_path / "out").iterdir()) == []

    def test_output_parent_is_a_file(self, tmp_path, fake_runner):
        segs = _segments(tmp_path, 1)
        blocker = tmp_path / "out"
        blocker.write_text("not a directory")
        runner = fake_runner()
        with pytest.raises(AssemblyError, match="Could not prepare output") as exc_info:
            assemble_segments(segs, blocker / "sub" / "video.mp4", tmp_path, runner=runner)
        assert exc_info.value.stage == "assemble"
        assert runner.calls == []

    def test_real_concat_adds_durations(self, media_project_factory, small_settings, tmp_path):
        root = media_project_factory([(2.0, 2.0, None, None), (1.5, 1.5, 3.0, 0.3)])
        config = load_manifest(root)
        scratch = tmp_path / "scratch"
        scratch.mkdir()
        segs = render_chapters(config["chapters"], root, scratch, small_settings)
        out = assemble_segments(segs, tmp_path / "video-e2e.mp4", scratch)
        with VideoFileClip(str(out)) as clip:
            assert abs(clip.duration - 3.5) < 0.5
