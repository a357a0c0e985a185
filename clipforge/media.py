from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .errors import EngineInvocationError, ValidationError

ALLOWED_VIDEO_EXT = {".mp4", ".mov", ".webm"}
WARN_SIZE_MB = 2048
MAX_SIZE_MB = 5120


@dataclass(frozen=True)
class MediaInfo:
    duration: float
    width: int = 0
    height: int = 0
    codec: str = ""
    file_size: int = 0
    has_video: bool = False
    has_audio: bool = False


def _int(raw: object) -> int:
    try:
        return int(raw or 0)
    except (TypeError, ValueError):
        return 0


def probe_media(ffprobe_path: str, src: str) -> MediaInfo:
    """Use ffprobe to read duration, first video stream size/codec and file size."""
    cmd = [
        ffprobe_path,
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        src,
    ]
    try:
        p = subprocess.run(cmd, capture_output=True, text=True, encoding="utf-8", errors="replace", check=True)
    except OSError as ex:
        raise EngineInvocationError(f"Failed to execute FFprobe: {ex}") from ex
    data = json.loads(p.stdout or "{}")

    fmt = data.get("format", {}) or {}
    try:
        dur = float(fmt.get("duration", 0.0) or 0.0)
    except (TypeError, ValueError):
        dur = 0.0

    streams = data.get("streams", []) or []
    video = next((s for s in streams if s.get("codec_type") == "video"), None) or {}
    has_a = any(s.get("codec_type") == "audio" for s in streams)

    size = _int(fmt.get("size"))
    if size <= 0:
        try:
            size = Path(src).stat().st_size
        except OSError:
            size = 0

    return MediaInfo(
        duration=dur,
        width=_int(video.get("width")),
        height=_int(video.get("height")),
        codec=str(video.get("codec_name") or ""),
        file_size=size,
        has_video=bool(video),
        has_audio=has_a,
    )


def validate_video_file(file_path: str) -> str:
    """
    Check a file before import.

    Returns "Valid", or a warning string for very large files that can still
    be used. Raises ValidationError when the file can't be imported.
    """
    p = Path(file_path)
    if not p.exists():
        raise ValidationError("File not found. It may have been moved or deleted.")
    try:
        size_mb = p.stat().st_size // (1024 * 1024)
    except OSError as ex:
        raise ValidationError(f"Cannot read file: {ex}") from ex

    if size_mb > MAX_SIZE_MB:
        raise ValidationError(f"File is too large ({size_mb} MB). Maximum file size is 5GB.")

    ext = p.suffix.lower()
    if ext not in ALLOWED_VIDEO_EXT:
        raise ValidationError(f"Unsupported format: {ext or '(none)'}. Please use MP4, MOV, or WebM.")

    if size_mb > WARN_SIZE_MB:
        return f"WARNING: File is very large ({size_mb} MB). This may cause performance issues. Continue anyway?"
    return "Valid"
