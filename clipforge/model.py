from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .errors import ParseError, ValidationError
from .resolution import ExportResolution, normalize_resolution

TRACK_MAIN = "main"
TRACK_SECONDARY = "secondary"


def _pick(d: Dict[str, Any], *keys: str) -> Any:
    # Wire form is camelCase; accept snake_case from Python callers too.
    for k in keys:
        if k in d:
            return d[k]
    return None


def _number(d: Dict[str, Any], where: str, *keys: str, default: Optional[float] = None) -> Optional[float]:
    raw = _pick(d, *keys)
    if raw is None:
        if default is None:
            raise ParseError(f"{where}.{keys[0]}", "missing field")
        return default
    if isinstance(raw, bool):
        raise ParseError(f"{where}.{keys[0]}", "expected a number")
    try:
        v = float(raw)
    except (TypeError, ValueError):
        raise ParseError(f"{where}.{keys[0]}", f"expected a number, got {raw!r}") from None
    if not math.isfinite(v):
        raise ParseError(f"{where}.{keys[0]}", f"expected a finite number, got {raw!r}")
    return v


@dataclass(frozen=True)
class PipPlacement:
    """Picture-in-picture rectangle as fractions of the export canvas."""

    x: float = 0.75
    y: float = 0.75
    width: float = 0.25
    height: float = 0.25
    opacity: float = 1.0

    @staticmethod
    def from_dict(d: Any, where: str = "pipSettings") -> "PipPlacement":
        if not isinstance(d, dict):
            raise ParseError(where, "expected an object")
        base = PipPlacement()
        return PipPlacement(
            x=_number(d, where, "x", default=base.x),
            y=_number(d, where, "y", default=base.y),
            width=_number(d, where, "width", default=base.width),
            height=_number(d, where, "height", default=base.height),
            opacity=_number(d, where, "opacity", default=base.opacity),
        )

    def validate(self, where: str) -> None:
        for name in ("x", "y", "width", "height", "opacity"):
            v = getattr(self, name)
            if v < 0.0 or v > 1.0:
                raise ValidationError(f"{where}: pip {name} must be within 0..1 (got {v})")
        if self.width <= 0.0 or self.height <= 0.0:
            raise ValidationError(f"{where}: pip width/height must be greater than 0")


@dataclass
class EncodeSettings:
    """
    Fixed encode parameters handed to ffmpeg.

    frame_rate is only used for the synthesized background canvas when the
    main track is empty; clip streams keep their own rate.
    """

    video_codec: str = "libx264"
    preset: str = "fast"
    crf: int = 23
    pixel_format: str = "yuv420p"
    frame_rate: int = 30

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "EncodeSettings":
        if not isinstance(d, dict):
            return EncodeSettings()
        out = EncodeSettings()
        out.video_codec = str(d.get("video_codec", out.video_codec) or out.video_codec)
        out.preset = str(d.get("preset", out.preset) or out.preset)
        out.pixel_format = str(d.get("pixel_format", out.pixel_format) or out.pixel_format)
        try:
            out.crf = max(0, min(51, int(d.get("crf", out.crf))))
        except (TypeError, ValueError):
            out.crf = 23
        try:
            out.frame_rate = max(1, min(240, int(d.get("frame_rate", out.frame_rate))))
        except (TypeError, ValueError):
            out.frame_rate = 30
        return out


@dataclass
class Clip:
    """
    Trimmed segment of a source file placed on a track.

    Attributes:
        path: media file
        duration: full duration of the source (seconds, from the probe)
        in_point/out_point: segment range on the clip (seconds)
        source_offset: where the segment starts in the source file; set on
            clips produced by splitting a longer clip
        volume/muted: carried for the UI, not used by the video graph
        pip: placement on the secondary track (None = default)
    """

    path: str
    duration: float
    in_point: float
    out_point: float
    volume: float = 100.0
    muted: bool = False
    source_offset: Optional[float] = None
    pip: Optional[PipPlacement] = None

    @property
    def name(self) -> str:
        return Path(self.path).name

    @property
    def trim_start(self) -> float:
        return self.source_offset if self.source_offset is not None else self.in_point

    @property
    def trim_duration(self) -> float:
        return min(self.out_point, self.duration) - self.in_point

    @property
    def placement(self) -> PipPlacement:
        return self.pip if self.pip is not None else PipPlacement()

    def validate(self, where: str) -> None:
        if self.out_point <= self.in_point:
            raise ValidationError(
                f"{where} ({self.name}): out point {self.out_point:g} must be after in point {self.in_point:g}"
            )
        if self.trim_duration <= 0.0:
            raise ValidationError(
                f"{where} ({self.name}): effective duration is {self.trim_duration:g}s; "
                "the in point lies beyond the end of the source"
            )
        if self.trim_start < 0.0:
            raise ValidationError(f"{where} ({self.name}): trim start must not be negative")
        if self.pip is not None:
            self.pip.validate(where)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "path": self.path,
            "duration": self.duration,
            "inPoint": self.in_point,
            "outPoint": self.out_point,
            "volume": self.volume,
            "muted": self.muted,
        }
        if self.source_offset is not None:
            d["sourceOffset"] = self.source_offset
        if self.pip is not None:
            d["pipSettings"] = asdict(self.pip)
        return d

    @staticmethod
    def from_dict(d: Any, where: str = "clip") -> "Clip":
        if not isinstance(d, dict):
            raise ParseError(where, "expected an object")
        path = _pick(d, "path", "src")
        if not isinstance(path, str) or not path.strip():
            raise ParseError(f"{where}.path", "missing or empty path")

        offset = None
        if _pick(d, "sourceOffset", "source_offset") is not None:
            offset = _number(d, where, "sourceOffset", "source_offset")

        pip = None
        raw_pip = _pick(d, "pipSettings", "pip_settings", "pip")
        if raw_pip is not None:
            pip = PipPlacement.from_dict(raw_pip, f"{where}.pipSettings")

        return Clip(
            path=path,
            duration=_number(d, where, "duration"),
            in_point=_number(d, where, "inPoint", "in_point"),
            out_point=_number(d, where, "outPoint", "out_point"),
            volume=_number(d, where, "volume", default=100.0),
            muted=bool(d.get("muted", False)),
            source_offset=offset,
            pip=pip,
        )


@dataclass
class Track:
    kind: str  # "main" | "secondary"
    clips: List[Clip] = field(default_factory=list)

    @property
    def total_duration(self) -> float:
        return sum(c.trim_duration for c in self.clips)

    def __len__(self) -> int:
        return len(self.clips)


@dataclass
class ExportRequest:
    """One export call. Built per request and dropped once ffmpeg returns."""

    main: Track
    secondary: Track
    output_path: str
    resolution: ExportResolution = field(default_factory=ExportResolution)
    encode: EncodeSettings = field(default_factory=EncodeSettings)

    @property
    def inputs(self) -> List[str]:
        # Order matters: filter graph stream indices follow it.
        return [c.path for c in self.main.clips] + [c.path for c in self.secondary.clips]


def parse_track(items: Optional[Sequence[Any]], kind: str) -> Track:
    if items is None:
        return Track(kind=kind)
    if not isinstance(items, (list, tuple)):
        raise ParseError(kind, "expected a list of clips")
    return Track(kind=kind, clips=[Clip.from_dict(d, f"{kind}[{i}]") for i, d in enumerate(items)])


def build_export_request(
    main: Optional[Sequence[Any]],
    secondary: Optional[Sequence[Any]],
    output_path: str,
    width: Optional[int] = None,
    height: Optional[int] = None,
    encode: Optional[EncodeSettings] = None,
) -> ExportRequest:
    """
    Parse and validate a raw two-track export request.

    Raises:
        ValidationError: both tracks empty, a clip has no playable range,
            bad PIP values or an out-of-range resolution
        ParseError: a descriptor is malformed
    """
    main_track = parse_track(main, TRACK_MAIN)
    secondary_track = parse_track(secondary, TRACK_SECONDARY)
    if not main_track.clips and not secondary_track.clips:
        raise ValidationError("No clips to export")
    if not str(output_path or "").strip():
        raise ValidationError("Output path is required")

    for track in (main_track, secondary_track):
        for i, c in enumerate(track.clips):
            c.validate(f"{track.kind}[{i}]")

    return ExportRequest(
        main=main_track,
        secondary=secondary_track,
        output_path=str(output_path),
        resolution=normalize_resolution(width, height),
        encode=encode or EncodeSettings(),
    )
