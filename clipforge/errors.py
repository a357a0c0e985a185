from __future__ import annotations

from typing import Optional


class ClipForgeError(RuntimeError):
    """Base class for every error raised by the export backend."""
    pass


class ValidationError(ClipForgeError):
    """Request is well-formed but not exportable (empty tracks, bad sizes, bad clips)."""
    pass


class ParseError(ClipForgeError):
    """A clip descriptor could not be parsed."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"Failed to parse clip data: {field}: {message}")
        self.field = field


class OutputPathBusy(ValidationError):
    """Another export is already writing to the same output file."""
    pass


class GraphIntegrityError(ClipForgeError):
    """Internal invariant violation in a compiled filter graph."""
    pass


class EngineNotFoundError(ClipForgeError):
    """Raised when ffmpeg/ffprobe cannot be located."""
    pass


class EngineInvocationError(ClipForgeError):
    """The ffmpeg subprocess could not be started."""
    pass


class ExportCancelled(ClipForgeError):
    """Export was cancelled by the caller; the engine was killed."""
    pass


class ExportTimedOut(ClipForgeError):
    """Export exceeded its wall-clock limit; the engine was killed."""

    def __init__(self, timeout_sec: float) -> None:
        super().__init__(f"Export timed out after {timeout_sec:g} seconds")
        self.timeout_sec = timeout_sec


class EngineFailure(ClipForgeError):
    """
    ffmpeg exited with a non-zero status.

    Attributes:
        kind: one of the FAILURE_* constants in clipforge.diagnostics
        raw: the full diagnostic text, never trimmed
        returncode: process exit status (None when unknown)
    """

    def __init__(self, kind: str, message: str, raw: str, returncode: Optional[int] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.raw = raw
        self.returncode = returncode
