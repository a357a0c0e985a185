from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .errors import ParseError, ValidationError

DEFAULT_WIDTH = 1280
DEFAULT_HEIGHT = 720
MIN_SIZE = 64
MAX_WIDTH = 7680
MAX_HEIGHT = 4320


@dataclass(frozen=True)
class ExportResolution:
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


def _as_int(name: str, raw: object, default: int) -> int:
    if raw is None:
        return default
    if isinstance(raw, bool):
        raise ParseError(name, "expected an integer")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ParseError(name, f"expected an integer, got {raw!r}") from None


def normalize_resolution(width: Optional[int] = None, height: Optional[int] = None) -> ExportResolution:
    """
    Normalize a requested export size.

    Missing values fall back to 1280x720. Each side is rounded down to an even
    number (yuv420p needs even dimensions) and must land in 64..7680 x 64..4320.
    """
    w = _as_int("width", width, DEFAULT_WIDTH) & ~1
    h = _as_int("height", height, DEFAULT_HEIGHT) & ~1

    if w < MIN_SIZE or h < MIN_SIZE:
        raise ValidationError(f"Export resolution too small. Minimum is {MIN_SIZE}x{MIN_SIZE}.")
    if w > MAX_WIDTH or h > MAX_HEIGHT:
        raise ValidationError(f"Export resolution too large. Maximum is {MAX_WIDTH}x{MAX_HEIGHT} (8K).")
    return ExportResolution(width=w, height=h)
