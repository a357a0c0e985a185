from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from .model import EncodeSettings
from .resolution import DEFAULT_HEIGHT, DEFAULT_WIDTH

log = logging.getLogger(__name__)

MAX_EXPORT_TIMEOUT_SEC = 24 * 3600


class ConfigStore:
    """
    Simple JSON config store.

    Default location: ~/.clipforge/config.json
    """

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = Path(root_dir)
        self.path = self.root_dir / "config.json"

    @staticmethod
    def default() -> "ConfigStore":
        return ConfigStore(Path.home() / ".clipforge")

    def default_config(self) -> Dict[str, Any]:
        return {
            "ffmpeg_path": "",
            "export_timeout_sec": 0,
            "default_width": DEFAULT_WIDTH,
            "default_height": DEFAULT_HEIGHT,
            "encode": EncodeSettings().to_dict(),
            "last_export_dir": "",
            "last_import_dir": "",
        }

    def load(self) -> Dict[str, Any]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return self.default_config()
        except (OSError, ValueError) as ex:
            # Corrupted file; don't crash the app.
            log.warning("config unreadable, using defaults: %s", ex)
            return self.default_config()
        if not isinstance(data, dict):
            return self.default_config()
        merged = self.default_config()
        merged.update(data)
        return merged

    def save(self, data: Dict[str, Any]) -> None:
        self.root_dir.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(data, ensure_ascii=False, indent=2)
        # Atomic write: a crash mid-save must not leave a truncated config.
        fd, tmp = tempfile.mkstemp(dir=str(self.root_dir), prefix=".config.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fp:
                fp.write(payload)
            os.replace(tmp, str(self.path))
        finally:
            if os.path.exists(tmp):
                os.unlink(tmp)

    def _set(self, key: str, value: Any) -> None:
        cfg = self.load()
        cfg[key] = value
        self.save(cfg)

    def ffmpeg_path(self) -> Optional[str]:
        raw = str(self.load().get("ffmpeg_path") or "").strip()
        return raw or None

    def set_ffmpeg_path(self, path: str) -> None:
        self._set("ffmpeg_path", str(path or "").strip())

    def export_timeout_sec(self) -> Optional[float]:
        """Wall-clock limit for one export; None means no limit."""
        raw = self.load().get("export_timeout_sec", 0)
        try:
            v = float(raw)
        except (TypeError, ValueError):
            v = 0.0
        v = max(0.0, min(float(MAX_EXPORT_TIMEOUT_SEC), v))
        return v or None

    def default_resolution(self) -> tuple[int, int]:
        cfg = self.load()
        try:
            w = int(cfg.get("default_width", DEFAULT_WIDTH))
            h = int(cfg.get("default_height", DEFAULT_HEIGHT))
        except (TypeError, ValueError):
            return DEFAULT_WIDTH, DEFAULT_HEIGHT
        return w, h

    def encode_settings(self) -> EncodeSettings:
        return EncodeSettings.from_dict(self.load().get("encode", {}))

    def set_encode_settings(self, settings: EncodeSettings) -> None:
        self._set("encode", settings.to_dict())

    @staticmethod
    def _dir_of(path: str) -> str:
        p = Path(str(path or "")).expanduser()
        if p.suffix or not p.is_dir():
            p = p.parent
        try:
            return str(p.resolve())
        except OSError:
            return str(p)

    def last_export_dir(self) -> Optional[str]:
        raw = str(self.load().get("last_export_dir") or "")
        return raw if raw and Path(raw).is_dir() else None

    def set_last_export_dir(self, path: str) -> None:
        self._set("last_export_dir", self._dir_of(path))

    def last_import_dir(self) -> Optional[str]:
        raw = str(self.load().get("last_import_dir") or "")
        return raw if raw and Path(raw).is_dir() else None

    def set_last_import_dir(self, path: str) -> None:
        self._set("last_import_dir", self._dir_of(path))
