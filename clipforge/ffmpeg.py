from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import threading
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from .compiler import CompiledExport
from .diagnostics import classify_failure
from .errors import EngineInvocationError, EngineNotFoundError, ExportCancelled, ExportTimedOut
from .model import EncodeSettings

log = logging.getLogger(__name__)

# Checked in order after the configured path and ./bin, before PATH.
KNOWN_INSTALL_DIRS: Tuple[str, ...] = (
    "/opt/homebrew/bin",
    "/usr/local/bin",
    "/usr/bin",
    r"C:\ffmpeg\bin",
    r"C:\Program Files\ffmpeg\bin",
)

_PROGRESS_KEY_RE = re.compile(
    r"^(frame|fps|stream_\d+_\d+_q|bitrate|total_size|out_time(_us|_ms)?|dup_frames|drop_frames|speed|progress)="
)
_STATS_TIME_RE = re.compile(r"\btime=(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")

ProgressFn = Callable[[float, float], None]
CancelFn = Callable[[], bool]


def _exe(name: str) -> str:
    return f"{name}.exe" if os.name == "nt" else name


def _which(name: str, local_bin: Path) -> Optional[str]:
    local = local_bin / name
    if local.is_file():
        return str(local)
    return None


def _candidate_dirs(project_root: Path, configured: Optional[str]) -> List[Path]:
    dirs: List[Path] = []
    if configured:
        p = Path(configured).expanduser()
        # Accept either the ffmpeg binary itself or the directory holding it.
        dirs.append(p.parent if p.is_file() else p)
    dirs.append(Path(project_root) / "bin")
    dirs.extend(Path(d) for d in KNOWN_INSTALL_DIRS)
    return dirs


def resolve_ffmpeg_bins(project_root: Path, configured: Optional[str] = None) -> Tuple[str, str]:
    """
    Return (ffmpeg_path, ffprobe_path).

    The first directory holding both binaries wins: configured path, ./bin,
    the usual install locations, then PATH.
    """
    candidates = _candidate_dirs(project_root, configured)
    for d in candidates:
        ffmpeg = _which(_exe("ffmpeg"), d)
        ffprobe = _which(_exe("ffprobe"), d)
        if ffmpeg and ffprobe:
            return ffmpeg, ffprobe

    ffmpeg = shutil.which("ffmpeg")
    ffprobe = shutil.which("ffprobe")
    if ffmpeg and ffprobe:
        return ffmpeg, ffprobe

    searched = "\n".join(f"- {d}" for d in candidates)
    raise EngineNotFoundError(f"FFmpeg not found. Searched:\n{searched}\nand PATH")


def build_export_command(
    ffmpeg_path: str,
    compiled: CompiledExport,
    out_path: str,
    encode: Optional[EncodeSettings] = None,
    progress: bool = False,
) -> List[str]:
    """Full ffmpeg argv for a compiled export (video only)."""
    enc = encode or EncodeSettings()
    args: List[str] = [ffmpeg_path]
    if progress:
        args += ["-nostats", "-progress", "pipe:2"]
    for src in compiled.inputs:
        args += ["-i", src]
    args += [
        "-filter_complex",
        compiled.filter_complex,
        "-map",
        f"[{compiled.output}]",
        "-c:v",
        enc.video_codec,
        "-preset",
        enc.preset,
        "-crf",
        str(enc.crf),
        "-pix_fmt",
        enc.pixel_format,
        "-y",
        out_path,
    ]
    return args


def parse_ffmpeg_progress_seconds(line: str) -> Optional[float]:
    """Seconds encoded so far from a -progress line or a classic stats line."""
    s = (line or "").strip()
    if not s:
        return None
    for key, scale in (("out_time_us=", 1_000_000.0), ("out_time_ms=", 1_000_000.0)):
        # ffmpeg reports out_time_ms in microseconds as well.
        if s.startswith(key):
            try:
                return max(0.0, int(s[len(key):]) / scale)
            except ValueError:
                return None
    m = _STATS_TIME_RE.search(s)
    if m:
        h, mnt, sec = m.groups()
        return int(h) * 3600 + int(mnt) * 60 + float(sec)
    return None


def _is_progress_line(line: str) -> bool:
    return bool(_PROGRESS_KEY_RE.match(line.strip()))


def _kill(proc: subprocess.Popen) -> None:
    try:
        proc.kill()
    except OSError:
        # Already exited.
        pass


def run_ffmpeg(
    cmd: Sequence[str],
    total_sec: float = 0.0,
    on_progress: Optional[ProgressFn] = None,
    should_cancel: Optional[CancelFn] = None,
    timeout_sec: Optional[float] = None,
) -> None:
    """
    Run ffmpeg and block until it exits.

    stderr is read line by line: progress lines go to on_progress, the rest is
    kept as the diagnostic for classification. should_cancel is polled per
    line; cancellation and the wall-clock timeout both kill the process.

    Raises:
        EngineInvocationError: the process could not be started
        ExportCancelled / ExportTimedOut: the process was killed
        EngineFailure: non-zero exit, already classified
    """
    total = max(0.0, float(total_sec or 0.0))
    try:
        proc = subprocess.Popen(
            list(cmd),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as ex:
        raise EngineInvocationError(f"Failed to execute FFmpeg: {ex}") from ex

    timed_out = threading.Event()
    timer: Optional[threading.Timer] = None
    if timeout_sec and timeout_sec > 0:

        def _expire() -> None:
            if proc.poll() is None:
                timed_out.set()
                _kill(proc)

        timer = threading.Timer(float(timeout_sec), _expire)
        timer.daemon = True
        timer.start()

    diagnostic: List[str] = []
    cancelled = False
    rc: Optional[int] = None
    try:
        if on_progress:
            on_progress(0.0, total)
        for line in proc.stderr:
            sec = parse_ffmpeg_progress_seconds(line)
            if sec is not None and on_progress and total > 0:
                on_progress(min(total, sec), total)
            if sec is None and not _is_progress_line(line):
                diagnostic.append(line)
            if should_cancel and should_cancel():
                cancelled = True
                _kill(proc)
                break
        rc = proc.wait()
    finally:
        if timer is not None:
            timer.cancel()
        # A callback raised: the encoder must not outlive the output-path lock.
        if rc is None and proc.poll() is None:
            _kill(proc)
            proc.wait()
        proc.stderr.close()

    if cancelled:
        raise ExportCancelled("Export cancelled")
    if rc != 0:
        if timed_out.is_set():
            raise ExportTimedOut(float(timeout_sec or 0.0))
        raise classify_failure("".join(diagnostic), rc)
    if on_progress and total > 0:
        on_progress(total, total)
