from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .graph import (
    OP_COLOR,
    OP_CONCAT,
    OP_HOLD,
    OP_OVERLAY,
    OP_PAD,
    OP_RETIME,
    OP_SCALE,
    OP_TRIM,
    FilterGraph,
)
from .model import TRACK_MAIN, TRACK_SECONDARY, Clip, ExportRequest, PipPlacement
from .resolution import ExportResolution

log = logging.getLogger(__name__)

# Durations closer than this are treated as equal (float sums of clip lengths).
DURATION_EPSILON = 1e-6


@dataclass
class CompiledExport:
    """Result of compiling one ExportRequest; inputs[i] is ffmpeg input i."""

    graph: FilterGraph
    inputs: List[str]
    resolution: ExportResolution
    main_duration: float
    secondary_duration: float
    target_duration: float
    gate_times: List[float] = field(default_factory=list)

    @property
    def output(self) -> str:
        return str(self.graph.output)

    @property
    def filter_complex(self) -> str:
        return self.graph.serialize()


def _round_half_up(v: float) -> int:
    return int(math.floor(v + 0.5))


def pip_rect(placement: PipPlacement, resolution: ExportResolution) -> Tuple[int, int, int, int]:
    """
    Pixel (x, y, w, h) of a fractional placement on the export canvas.

    Halves round up (320.5 -> 321); width and height are at least 1.
    """
    w, h = resolution.width, resolution.height
    px = _round_half_up(w * placement.x)
    py = _round_half_up(h * placement.y)
    pw = max(1, _round_half_up(w * placement.width))
    ph = max(1, _round_half_up(h * placement.height))
    return px, py, pw, ph


def compile_clip_chain(
    graph: FilterGraph,
    clip: Clip,
    source_index: int,
    owner: str,
    resolution: ExportResolution,
    start_offset: float = 0.0,
) -> str:
    """
    trim -> retime -> scale (fit) -> pad (centered) for one clip.

    The output always has exactly the export size, which concat and overlay
    both rely on. start_offset shifts the clip's clock after the origin reset
    so a secondary clip's first frame lands on its overlay gate.
    """
    w, h = resolution.width, resolution.height
    label = graph.add(
        OP_TRIM,
        [graph.source(source_index)],
        owner,
        "trim",
        start=clip.trim_start,
        duration=clip.trim_duration,
    )
    label = graph.add(OP_RETIME, [label], owner, "retime", offset=max(0.0, float(start_offset)))
    label = graph.add(OP_SCALE, [label], owner, "fit", width=w, height=h, fit=True)
    return graph.add(OP_PAD, [label], owner, "pad", width=w, height=h)


def concat_track(graph: FilterGraph, labels: Sequence[str], owner: str = TRACK_MAIN) -> Optional[str]:
    """Join per-clip chains in track order into one video-only stream."""
    if not labels:
        return None
    return graph.add(OP_CONCAT, list(labels), owner, "concat")


def reconcile_base(
    graph: FilterGraph,
    main_label: Optional[str],
    main_duration: float,
    target_duration: float,
    resolution: ExportResolution,
    frame_rate: int = 30,
) -> str:
    """
    Produce the composition base that lasts target_duration.

    - main track present and shorter: hold its last frame for the difference
    - main track present and long enough: use the concat output as is
    - no main track: a black canvas at the export size
    """
    if main_label is None:
        return graph.add(
            OP_COLOR,
            [],
            "canvas",
            "fill",
            color="black",
            width=resolution.width,
            height=resolution.height,
            duration=target_duration,
            rate=int(frame_rate),
        )
    if main_duration + DURATION_EPSILON < target_duration:
        return graph.add(OP_HOLD, [main_label], TRACK_MAIN, "hold", duration=target_duration - main_duration)
    return main_label


def composite_overlays(
    graph: FilterGraph,
    base: str,
    clips: Sequence[Clip],
    chain_labels: Sequence[str],
    gates: Sequence[float],
    resolution: ExportResolution,
) -> str:
    """
    Overlay secondary clips one after another onto base.

    Each clip is scaled to its PIP rectangle and made visible from its gate
    time, the same value its chain was retimed to. Returns the final label.
    """
    current = base
    for j, (clip, chain, start) in enumerate(zip(clips, chain_labels, gates)):
        placement = clip.placement
        px, py, pw, ph = pip_rect(placement, resolution)
        owner = f"{TRACK_SECONDARY}{j}"
        scaled = graph.add(OP_SCALE, [chain], owner, "pip", width=pw, height=ph, fit=False)
        current = graph.add(
            OP_OVERLAY,
            [current, scaled],
            owner,
            "overlay",
            x=px,
            y=py,
            start=start,
            opacity=placement.opacity,
        )
    return current


def gate_times(clips: Sequence[Clip]) -> List[float]:
    """Start time of each secondary clip: the sum of the durations before it."""
    out: List[float] = []
    t = 0.0
    for c in clips:
        out.append(t)
        t += c.trim_duration
    return out


def compile_export(request: ExportRequest, graph_id: Optional[str] = None) -> CompiledExport:
    """
    Compile a validated request into a single-pass filter graph.

    Input order is main clips then secondary clips; input i feeds "[i:v]".
    """
    main_clips = request.main.clips
    secondary_clips = request.secondary.clips
    resolution = request.resolution
    inputs = request.inputs
    graph = FilterGraph(source_count=len(inputs), graph_id=graph_id)

    main_chains = [
        compile_clip_chain(graph, c, i, f"{TRACK_MAIN}{i}", resolution)
        for i, c in enumerate(main_clips)
    ]
    gates = gate_times(secondary_clips)
    offset = len(main_clips)
    secondary_chains = [
        compile_clip_chain(graph, c, offset + j, f"{TRACK_SECONDARY}{j}", resolution, start_offset=gates[j])
        for j, c in enumerate(secondary_clips)
    ]

    main_duration = request.main.total_duration
    secondary_duration = request.secondary.total_duration
    target_duration = max(main_duration, secondary_duration)

    main_label = concat_track(graph, main_chains, TRACK_MAIN)
    base = reconcile_base(
        graph,
        main_label,
        main_duration,
        target_duration,
        resolution,
        frame_rate=request.encode.frame_rate,
    )
    final = composite_overlays(graph, base, secondary_clips, secondary_chains, gates, resolution)
    graph.output = final
    graph.validate()

    log.debug(
        "compiled graph %s: %d node(s), main=%.3fs secondary=%.3fs target=%.3fs",
        graph.graph_id,
        len(graph.nodes),
        main_duration,
        secondary_duration,
        target_duration,
    )
    return CompiledExport(
        graph=graph,
        inputs=inputs,
        resolution=resolution,
        main_duration=main_duration,
        secondary_duration=secondary_duration,
        target_duration=target_duration,
        gate_times=gates,
    )
