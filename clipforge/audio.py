from __future__ import annotations

import logging
import subprocess
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from .diagnostics import classify_failure
from .errors import EngineInvocationError, ValidationError
from .graph import fmt_sec

log = logging.getLogger(__name__)


def build_extract_command(
    ffmpeg_path: str,
    video_path: str,
    out_path: str,
    in_point: Optional[float] = None,
    out_point: Optional[float] = None,
) -> List[str]:
    """16 kHz mono PCM, the format speech-to-text services expect."""
    cmd: List[str] = [ffmpeg_path]
    if in_point is not None:
        cmd += ["-ss", fmt_sec(in_point)]
    cmd += ["-i", video_path]
    if in_point is not None and out_point is not None:
        cmd += ["-t", fmt_sec(max(0.0, out_point - in_point))]
    cmd += ["-vn", "-acodec", "pcm_s16le", "-ar", "16000", "-ac", "1", "-y", out_path]
    return cmd


@contextmanager
def extracted_audio(
    ffmpeg_path: str,
    video_path: str,
    in_point: Optional[float] = None,
    out_point: Optional[float] = None,
    temp_root: Optional[str] = None,
) -> Iterator[Path]:
    """
    Extract a clip's audio to a temporary WAV and yield its path.

    The file and its directory are removed when the block exits, whether it
    returns, raises, or ffmpeg itself fails.

        with extracted_audio(ffmpeg, "talk.mp4", 2.0, 9.5) as wav:
            upload(wav)
    """
    if not Path(video_path).exists():
        raise ValidationError("Video file not found")

    with tempfile.TemporaryDirectory(prefix="clipforge_audio_", dir=temp_root) as td:
        wav = Path(td) / f"{Path(video_path).stem}.wav"
        cmd = build_extract_command(ffmpeg_path, video_path, str(wav), in_point, out_point)
        try:
            p = subprocess.run(cmd, capture_output=True, text=True, encoding="utf-8", errors="replace")
        except OSError as ex:
            raise EngineInvocationError(f"Failed to execute FFmpeg: {ex}") from ex
        if p.returncode != 0:
            raise classify_failure(p.stderr or "", p.returncode)
        log.debug("extracted audio %s -> %s", video_path, wav)
        yield wav
