from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple

from .errors import EngineFailure

log = logging.getLogger(__name__)

FAILURE_DISK_SPACE = "disk_space"
FAILURE_CODEC_INCOMPATIBLE = "codec_incompatible"
FAILURE_INVALID_PARAMETERS = "invalid_parameters"
FAILURE_GENERIC = "generic"

# (kind, matcher, message builder). First match wins, so order is part of the
# contract. Matching is on ffmpeg's English wording; swap this table out if
# the engine ever reports structured errors.
Rule = Tuple[str, Callable[[str], bool], Callable[[str], str]]

RULES: List[Rule] = [
    (
        FAILURE_DISK_SPACE,
        lambda text: "No space left" in text,
        lambda _raw: "Not enough disk space to export video.",
    ),
    (
        FAILURE_CODEC_INCOMPATIBLE,
        lambda text: "codec" in text and "not found" in text,
        lambda _raw: "Video codec incompatibility. Try re-encoding (slower).",
    ),
    (
        FAILURE_INVALID_PARAMETERS,
        lambda text: "Invalid" in text and "argument" in text,
        lambda raw: f"Invalid export parameters. FFmpeg error:\n\n{raw}",
    ),
]


def _generic_message(raw: str) -> str:
    return f"Export failed. FFmpeg error:\n\n{raw}"


def classify_failure(stderr: str, returncode: Optional[int] = None) -> EngineFailure:
    """Map ffmpeg's diagnostic output to an EngineFailure; raw text is kept verbatim."""
    raw = stderr or ""
    log.error("ffmpeg failed (exit %s):\n%s", returncode, raw)
    for kind, matches, message in RULES:
        if matches(raw):
            return EngineFailure(kind, message(raw), raw, returncode)
    return EngineFailure(FAILURE_GENERIC, _generic_message(raw), raw, returncode)
