"""Manifest loader for chapter projects.

Reads `<project root>/manifest.json` (or manifest.yaml / manifest.yml
when no JSON manifest exists), validates it, and returns a normalized
config dict. Fields written by the exporter but not used here (chapter
`id`, top-level `settings`, per-chapter `sfx`) are ignored.

Manifest schema:
  projectId: "abc123"
  metadata:
    title: "My podcast"
  chapters:
    - title: "Intro"
      duration: 5
      files:
        image: images/chapter-0.jpg
        speech: audio/chapter-0-speech.mp3
        music: audio/chapter-0-music.mp3   # optional
      musicVolume: 0.4                      # required iff music is present
"""

import json
from pathlib import Path

import yaml

from .common import resolve_project_path
from .errors import ManifestError


MANIFEST_NAMES = ("manifest.json", "manifest.yaml", "manifest.yml")

REQUIRED_FILES = ("image", "speech")

OPTIONAL_FILES = ("music",)


def find_manifest(project_root: str | Path) -> Path:
    """Return the manifest path inside project_root.

    Raises:
        ManifestError: kind "not_found" if the root or manifest is missing.
    """
    root = Path(project_root)
    if not root.is_dir():
        raise ManifestError(f"Project root not found: {root}", kind="not_found")
    for name in MANIFEST_NAMES:
        candidate = root / name
        if candidate.is_file():
            return candidate
    raise ManifestError(f"No manifest.json in {root}", kind="not_found")


def _parse(manifest_path: Path):
    try:
        text = manifest_path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ManifestError(f"{manifest_path.name}: not UTF-8 text", kind="malformed") from e
    if manifest_path.suffix == ".json":
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ManifestError(f"{manifest_path.name}: invalid JSON: {e}", kind="malformed") from e
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ManifestError(f"{manifest_path.name}: invalid YAML: {e}", kind="malformed") from e


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def load_manifest(project_root: str | Path) -> dict:
    """Load, validate, and normalize a project manifest.

    Processing pipeline:
      1. Locate and parse the manifest (JSON, else YAML).
      2. Validate projectId and the chapters list (must be non-empty).
      3. Validate each chapter: duration > 0, image + speech paths,
         music + musicVolume together.
      4. Check every referenced path stays inside the project root.

    Args:
        project_root: Directory containing the manifest and media files.

    Returns:
        Normalized config dict: projectId (str), title, root (resolved
        Path), chapters (list of chapter dicts, manifest order, each
        tagged with its 'index').

    Raises:
        ManifestError: kind not_found / malformed / missing_field / invalid.
    """
    manifest_path = find_manifest(project_root)
    raw = _parse(manifest_path)

    if not isinstance(raw, dict):
        raise ManifestError("Manifest: top level must be an object", kind="malformed")

    if "projectId" not in raw:
        raise ManifestError("Manifest: missing required field 'projectId'", kind="missing_field")
    project_id = raw["projectId"]
    if isinstance(project_id, bool) or not isinstance(project_id, (str, int)) or str(project_id).strip() == "":
        raise ManifestError(
            f"Manifest: projectId must be a non-empty string, got {project_id!r}",
            kind="invalid",
        )
    project_id = str(project_id)
    if "/" in project_id or "\\" in project_id:
        raise ManifestError(f"Manifest: projectId must not contain path separators: {project_id!r}")

    metadata = raw.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ManifestError("Manifest: 'metadata' must be an object", kind="malformed")

    if "chapters" not in raw:
        raise ManifestError("Manifest: missing required field 'chapters'", kind="missing_field")
    raw_chapters = raw["chapters"]
    if not isinstance(raw_chapters, list):
        raise ManifestError("Manifest: 'chapters' must be a list", kind="malformed")
    if not raw_chapters:
        raise ManifestError("Manifest: 'chapters' is empty, nothing to render")

    root = Path(project_root).resolve()
    chapters = [_load_chapter(ch, i, root) for i, ch in enumerate(raw_chapters)]

    return {
        "projectId": project_id,
        "title": metadata.get("title", ""),
        "root": root,
        "chapters": chapters,
    }


def _load_chapter(raw: dict, index: int, root: Path) -> dict:
    prefix = f"Chapter {index}"
    if not isinstance(raw, dict):
        raise ManifestError(f"{prefix}: must be an object", kind="malformed")

    title = raw.get("title") or f"Chapter {index}"
    prefix = f"Chapter {index} ({title})"

    if "duration" not in raw:
        raise ManifestError(f"{prefix}: missing required field 'duration'", kind="missing_field")
    duration = raw["duration"]
    if not _is_number(duration) or duration <= 0:
        raise ManifestError(f"{prefix}: duration must be > 0, got {duration!r}")

    files = raw.get("files")
    if files is None:
        raise ManifestError(f"{prefix}: missing required field 'files'", kind="missing_field")
    if not isinstance(files, dict):
        raise ManifestError(f"{prefix}: 'files' must be an object", kind="malformed")

    chapter_files = {}
    for key in REQUIRED_FILES + OPTIONAL_FILES:
        value = files.get(key)
        if value is None:
            if key in REQUIRED_FILES:
                raise ManifestError(
                    f"{prefix}: missing required field 'files.{key}'", kind="missing_field",
                )
            continue
        if not isinstance(value, str) or not value.strip():
            raise ManifestError(f"{prefix}: files.{key} must be a non-empty path")
        try:
            resolve_project_path(root, value)
        except ValueError as e:
            raise ManifestError(f"{prefix}: files.{key}: {e}") from e
        chapter_files[key] = value

    chapter = {
        "index": index,
        "title": str(title),
        "duration": float(duration),
        "files": chapter_files,
    }

    if "music" in chapter_files:
        if raw.get("musicVolume") is None:
            raise ManifestError(
                f"{prefix}: musicVolume is required when files.music is set",
                kind="missing_field",
            )
        volume = raw["musicVolume"]
        if not _is_number(volume) or volume < 0:
            raise ManifestError(f"{prefix}: musicVolume must be >= 0, got {volume!r}")
        chapter["musicVolume"] = float(volume)

    return chapter


def chapter_paths(chapter: dict, root: str | Path) -> dict[str, Path]:
    """Absolute paths for a chapter's files, keyed image/speech/music."""
    return {
        key: resolve_project_path(root, rel)
        for key, rel in chapter["files"].items()
    }


def validate_paths(config: dict) -> None:
    """Check that every file referenced by every chapter exists on disk.

    Raises:
        FileNotFoundError: Lists all missing files.
    """
    missing = []
    for chapter in config["chapters"]:
        for key, path in chapter_paths(chapter, config["root"]).items():
            if not path.is_file():
                missing.append(f"chapter {chapter['index']} files.{key}: {chapter['files'][key]}")

    if missing:
        msg = f"Missing {len(missing)} file(s):\n"
        for m in missing:
            msg += f"  - {m}\n"
        raise FileNotFoundError(msg)
