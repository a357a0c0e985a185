from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import flet as ft

from clipforge.config import ConfigStore
from clipforge.errors import ClipForgeError, EngineFailure, EngineNotFoundError, ExportCancelled
from clipforge.export import OUTPUT_LOCKS, export_multi_track_video
from clipforge.ffmpeg import resolve_ffmpeg_bins
from clipforge.media import MediaInfo, probe_media, validate_video_file

logging.basicConfig(level=logging.INFO)
log = logging.getLogger("clipforge")


def _fmt_time(sec: float) -> str:
    sec = max(0.0, float(sec))
    m = int(sec // 60)
    s = sec - m * 60
    return f"{m:02d}:{s:05.2f}"


@dataclass
class TimelineItem:
    path: str
    info: MediaInfo
    pip: Optional[Dict[str, float]] = None

    def to_wire(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "path": self.path,
            "duration": self.info.duration,
            "inPoint": 0.0,
            "outPoint": self.info.duration,
            "volume": 100.0,
            "muted": False,
        }
        if self.pip is not None:
            d["pipSettings"] = dict(self.pip)
        return d


@dataclass
class AppState:
    main: List[TimelineItem] = field(default_factory=list)
    pip: List[TimelineItem] = field(default_factory=list)


def main(page: ft.Page) -> None:
    page.title = "ClipForge"
    page.theme_mode = ft.ThemeMode.DARK
    page.padding = 10

    root = Path(__file__).resolve().parent
    state = AppState()
    cfg = ConfigStore.default()
    file_picker = ft.FilePicker()
    export_in_progress = False

    # ---------- helpers ----------
    def snack(msg: str) -> None:
        page.show_dialog(ft.SnackBar(ft.Text(msg)))

    def get_bins() -> Optional[tuple[str, str]]:
        try:
            return resolve_ffmpeg_bins(root, cfg.ffmpeg_path())
        except EngineNotFoundError as e:
            snack(str(e))
            return None

    main_list = ft.Column(spacing=2)
    pip_list = ft.Column(spacing=2)
    default_w, default_h = cfg.default_resolution()
    width_field = ft.TextField(label="Width", value=str(default_w), width=100, dense=True)
    height_field = ft.TextField(label="Height", value=str(default_h), width=100, dense=True)

    def _row(item: TimelineItem) -> ft.Control:
        return ft.Text(f"{Path(item.path).name}  ({_fmt_time(item.info.duration)})", size=12)

    def refresh_tracks() -> None:
        main_list.controls = [_row(x) for x in state.main] or [ft.Text("(empty)", size=12)]
        pip_list.controls = [_row(x) for x in state.pip] or [ft.Text("(empty)", size=12)]
        page.update()

    # ---------- Actions ----------
    def _import_to(track: str):
        def _click(_e=None) -> None:
            async def _pick() -> None:
                picked = await file_picker.pick_files(
                    allow_multiple=True,
                    initial_directory=cfg.last_import_dir(),
                    file_type=ft.FilePickerFileType.CUSTOM,
                    allowed_extensions=["mp4", "mov", "webm"],
                )
                if not picked:
                    return
                bins = get_bins()
                if not bins:
                    return
                _, ffprobe = bins

                for f in picked:
                    if not f.path:
                        continue
                    try:
                        verdict = validate_video_file(f.path)
                        if verdict != "Valid":
                            snack(verdict)
                        info = probe_media(ffprobe, f.path)
                    except ClipForgeError as ex:
                        snack(f"{Path(f.path).name}: {ex}")
                        continue
                    except Exception as ex:
                        log.exception("probe failed: %s", ex)
                        snack(f"Cannot read file: {Path(f.path).name}")
                        continue
                    if info.duration <= 0.01 or not info.has_video:
                        snack(f"No video stream: {Path(f.path).name}")
                        continue
                    cfg.set_last_import_dir(f.path)
                    if track == "pip":
                        state.pip.append(TimelineItem(path=f.path, info=info, pip={}))
                    else:
                        state.main.append(TimelineItem(path=f.path, info=info))
                refresh_tracks()

            page.run_task(_pick)

        return _click

    def clear_click(_e=None) -> None:
        state.main.clear()
        state.pip.clear()
        refresh_tracks()

    def _parse_size(raw: str) -> Optional[int]:
        s = str(raw or "").strip()
        return int(s) if s.isdigit() else None

    def export_click(_e=None) -> None:
        nonlocal export_in_progress
        if export_in_progress:
            snack("Export is already running")
            return
        if not state.main and not state.pip:
            snack("No clips to export")
            return

        async def _save_and_export() -> None:
            nonlocal export_in_progress
            out_path = await file_picker.save_file(
                file_name="output.mp4",
                initial_directory=cfg.last_export_dir(),
                file_type=ft.FilePickerFileType.CUSTOM,
                allowed_extensions=["mp4"],
            )
            if not out_path:
                return
            out_path = str(Path(out_path).with_suffix(".mp4"))
            if OUTPUT_LOCKS.is_busy(out_path):
                snack(f"{Path(out_path).name} is already being exported")
                return
            cfg.set_last_export_dir(out_path)

            bins = get_bins()
            if not bins:
                return
            ffmpeg, _ = bins

            # Snapshot so edits during export don't change what is encoded.
            main_wire = [x.to_wire() for x in state.main]
            pip_wire = [x.to_wire() for x in state.pip]
            width = _parse_size(width_field.value)
            height = _parse_size(height_field.value)

            progress_label = ft.Text("Preparing export...", size=12)
            progress_bar = ft.ProgressBar(value=0.0, width=420)
            cancel_requested = False
            cancel_btn = ft.TextButton("Cancel Export")

            def _request_cancel(_e=None) -> None:
                nonlocal cancel_requested
                cancel_requested = True
                cancel_btn.disabled = True
                progress_label.value = "Cancelling export..."
                page.update()

            cancel_btn.on_click = _request_cancel
            page.show_dialog(
                ft.AlertDialog(
                    modal=True,
                    title=ft.Text("Exporting"),
                    content=ft.Column([progress_label, progress_bar], tight=True, width=460),
                    actions=[cancel_btn],
                )
            )
            export_in_progress = True
            last_emit = 0.0

            def _on_progress(current: float, total: float) -> None:
                nonlocal last_emit
                now = time.perf_counter()
                ratio = max(0.0, min(1.0, current / max(total, 0.001)))
                if ratio < 1.0 and now - last_emit < 0.2:
                    return
                last_emit = now

                async def _apply() -> None:
                    progress_bar.value = ratio
                    progress_label.value = f"Encoding... {int(round(ratio * 100))}%"
                    page.update()

                page.run_task(_apply)

            def _do_export() -> None:
                try:
                    msg = export_multi_track_video(
                        ffmpeg,
                        main_wire,
                        pip_wire,
                        out_path,
                        width=width,
                        height=height,
                        encode=cfg.encode_settings(),
                        timeout_sec=cfg.export_timeout_sec(),
                        on_progress=_on_progress,
                        should_cancel=lambda: cancel_requested,
                    )
                except ExportCancelled:
                    msg = "Export cancelled"
                except EngineFailure as ex:
                    # Full diagnostic already logged by the classifier.
                    msg = str(ex).split("\n\nDebug info:")[0]
                except ClipForgeError as ex:
                    msg = str(ex)
                except Exception as ex:
                    log.exception("export failed: %s", ex)
                    msg = f"Export failed: {ex}"

                async def _notify() -> None:
                    nonlocal export_in_progress
                    export_in_progress = False
                    page.pop_dialog()
                    snack(msg)

                page.run_task(_notify)

            page.run_thread(_do_export)

        page.run_task(_save_and_export)

    page.add(
        ft.Row(
            [
                ft.FilledButton("Add to main", icon=ft.Icons.VIDEO_FILE, on_click=_import_to("main")),
                ft.FilledButton("Add to PiP", icon=ft.Icons.PICTURE_IN_PICTURE, on_click=_import_to("pip")),
                ft.TextButton("Clear", on_click=clear_click),
                width_field,
                height_field,
                ft.FilledButton("Export", icon=ft.Icons.OUTPUT, on_click=export_click),
            ]
        ),
        ft.Text("Main track", weight=ft.FontWeight.BOLD),
        main_list,
        ft.Text("PiP track", weight=ft.FontWeight.BOLD),
        pip_list,
    )
    refresh_tracks()


if __name__ == "__main__":
    ft.app(target=main)
