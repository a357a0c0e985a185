from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence, Set

from .compiler import CompiledExport, compile_export
from .errors import EngineFailure, OutputPathBusy
from .ffmpeg import CancelFn, ProgressFn, build_export_command, run_ffmpeg
from .model import EncodeSettings, ExportRequest, build_export_request

log = logging.getLogger(__name__)

STATE_IDLE = "idle"
STATE_VALIDATING = "validating"
STATE_COMPILING = "compiling"
STATE_INVOKING = "invoking"
STATE_SUCCEEDED = "succeeded"
STATE_FAILED = "failed"


class OutputPathLocks:
    """
    Process-wide set of output files currently being written.

    Two exports to one file would race at the filesystem level, so the second
    one is rejected instead of queued.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._busy: Set[str] = set()

    @staticmethod
    def key(path: str) -> str:
        p = os.path.abspath(os.path.expanduser(str(path)))
        return p.lower() if os.name == "nt" else p

    def is_busy(self, path: str) -> bool:
        with self._lock:
            return self.key(path) in self._busy

    @contextmanager
    def hold(self, path: str) -> Iterator[None]:
        k = self.key(path)
        with self._lock:
            if k in self._busy:
                raise OutputPathBusy(f"An export to {Path(path).name} is already running")
            self._busy.add(k)
        try:
            yield
        finally:
            with self._lock:
                self._busy.discard(k)


OUTPUT_LOCKS = OutputPathLocks()


class ExportJob:
    """
    One export call: idle -> validating -> compiling -> invoking -> succeeded/failed.

    failure_kind is the classifier category for engine failures, otherwise the
    name of the error that stopped the job.
    """

    def __init__(
        self,
        ffmpeg_path: str,
        main: Optional[Sequence[Any]],
        secondary: Optional[Sequence[Any]],
        output_path: str,
        width: Optional[int] = None,
        height: Optional[int] = None,
        encode: Optional[EncodeSettings] = None,
        timeout_sec: Optional[float] = None,
        locks: Optional[OutputPathLocks] = None,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.raw_main = main or []
        self.raw_secondary = secondary or []
        self.output_path = output_path
        self.width = width
        self.height = height
        self.encode = encode
        self.timeout_sec = timeout_sec
        self.locks = locks or OUTPUT_LOCKS

        self.state = STATE_IDLE
        self.failure_kind: Optional[str] = None
        self.request: Optional[ExportRequest] = None
        self.compiled: Optional[CompiledExport] = None
        self.command: List[str] = []

    def debug_info(self) -> str:
        res = str(self.request.resolution) if self.request else f"{self.width}x{self.height}"
        return (
            "Debug info:\n"
            f"- Resolution: {res}\n"
            f"- Main clips: {len(self.raw_main)}\n"
            f"- PiP clips: {len(self.raw_secondary)}"
        )

    def run(self, on_progress: Optional[ProgressFn] = None, should_cancel: Optional[CancelFn] = None) -> str:
        try:
            self.state = STATE_VALIDATING
            self.request = build_export_request(
                self.raw_main,
                self.raw_secondary,
                self.output_path,
                width=self.width,
                height=self.height,
                encode=self.encode,
            )

            self.state = STATE_COMPILING
            self.compiled = compile_export(self.request)
            self.command = build_export_command(
                self.ffmpeg_path,
                self.compiled,
                self.request.output_path,
                self.request.encode,
                progress=on_progress is not None,
            )

            self.state = STATE_INVOKING
            log.info("FFmpeg export resolution: %s", self.request.resolution)
            log.info("Main clips: %d, PiP clips: %d", len(self.request.main), len(self.request.secondary))
            with self.locks.hold(self.request.output_path):
                run_ffmpeg(
                    self.command,
                    total_sec=self.compiled.target_duration,
                    on_progress=on_progress,
                    should_cancel=should_cancel,
                    timeout_sec=self.timeout_sec,
                )
        except EngineFailure as ex:
            self.state = STATE_FAILED
            self.failure_kind = ex.kind
            raise
        except Exception as ex:
            self.state = STATE_FAILED
            self.failure_kind = type(ex).__name__
            raise

        self.state = STATE_SUCCEEDED
        return self.request.output_path


def export_video(
    ffmpeg_path: str,
    clips: Sequence[Any],
    output_path: str,
    encode: Optional[EncodeSettings] = None,
    timeout_sec: Optional[float] = None,
    on_progress: Optional[ProgressFn] = None,
    should_cancel: Optional[CancelFn] = None,
) -> str:
    """Single-track export: clips trimmed, fitted to 1280x720 and concatenated."""
    job = ExportJob(ffmpeg_path, clips, [], output_path, encode=encode, timeout_sec=timeout_sec)
    out = job.run(on_progress=on_progress, should_cancel=should_cancel)
    return f"Export completed successfully: {out}"


def export_multi_track_video(
    ffmpeg_path: str,
    main_track_clips: Optional[Sequence[Any]],
    pip_track_clips: Optional[Sequence[Any]],
    output_path: str,
    width: Optional[int] = None,
    height: Optional[int] = None,
    encode: Optional[EncodeSettings] = None,
    timeout_sec: Optional[float] = None,
    on_progress: Optional[ProgressFn] = None,
    should_cancel: Optional[CancelFn] = None,
) -> str:
    """
    Main track plus picture-in-picture track.

    Engine failures are re-raised with a debug block (resolution, clip counts
    and the full ffmpeg output) appended to the classified message.
    """
    job = ExportJob(
        ffmpeg_path,
        main_track_clips,
        pip_track_clips,
        output_path,
        width=width,
        height=height,
        encode=encode,
        timeout_sec=timeout_sec,
    )
    try:
        out = job.run(on_progress=on_progress, should_cancel=should_cancel)
    except EngineFailure as ex:
        msg = f"{ex}\n\n{job.debug_info()}\n\nFull FFmpeg error:\n{ex.raw}"
        raise EngineFailure(ex.kind, msg, ex.raw, ex.returncode) from ex
    return f"Multi-track export completed successfully: {out}"
