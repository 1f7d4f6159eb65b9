"""Error taxonomy for the chapter pipeline.

Every fatal error carries the stage it happened in, a short reason, and
the tail of the encoder's stderr when an external process was involved.

  ManifestError  — manifest unreadable, malformed, or incomplete (stage "load").
  RenderError    — one chapter's encode failed (stage "render").
  AssemblyError  — the concat join failed (stage "assemble").
  CleanupWarning — scratch removal failed; never fatal.
"""

MANIFEST_ERROR_KINDS = {"not_found", "malformed", "missing_field", "invalid"}


class PipelineError(Exception):
    """Base class for fatal pipeline errors."""

    stage = None

    def __init__(self, message: str, reason: str = "failed", diagnostic: str = ""):
        super().__init__(message)
        self.reason = reason
        self.diagnostic = diagnostic

    @property
    def cancelled(self) -> bool:
        return self.reason == "cancelled"


class ManifestError(PipelineError, ValueError):
    stage = "load"

    def __init__(self, message: str, kind: str = "invalid"):
        if kind not in MANIFEST_ERROR_KINDS:
            raise ValueError(f"Unknown manifest error kind: {kind!r}")
        super().__init__(message, reason=kind)
        self.kind = kind


class RenderError(PipelineError):
    stage = "render"

    def __init__(
        self,
        chapter_index: int | None,
        chapter_title: str | None,
        message: str,
        reason: str = "failed",
        diagnostic: str = "",
    ):
        # chapter_index is None only when the run was interrupted between chapters.
        where = "Rendering" if chapter_index is None else f"Chapter {chapter_index} ({chapter_title})"
        super().__init__(f"{where}: {message}", reason=reason, diagnostic=diagnostic)
        self.chapter_index = chapter_index
        self.chapter_title = chapter_title


class AssemblyError(PipelineError):
    stage = "assemble"


class CleanupWarning(UserWarning):
    """Scratch-area removal failed. Reported, never escalated."""
