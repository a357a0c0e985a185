from __future__ import annotations

import heapq
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import GraphIntegrityError

OP_TRIM = "trim"
OP_RETIME = "retime"
OP_SCALE = "scale"
OP_PAD = "pad"
OP_CONCAT = "concat"
OP_HOLD = "hold"
OP_OVERLAY = "overlay"
OP_COLOR = "color"

_SOURCE_RE = re.compile(r"^(\d+):v$")


def fmt_sec(value: float) -> str:
    """Seconds as ffmpeg reads them: fixed 6 decimals, trailing zeros dropped."""
    s = f"{float(value):.6f}".rstrip("0").rstrip(".")
    return "0" if s in ("", "-0") else s


@dataclass
class FilterNode:
    op: str
    inputs: List[str]
    output: str
    params: Dict[str, Any] = field(default_factory=dict)

    def render(self) -> str:
        """Filter text for this node, without input/output labels."""
        p = self.params
        if self.op == OP_TRIM:
            return f"trim=start={fmt_sec(p['start'])}:duration={fmt_sec(p['duration'])}"
        if self.op == OP_RETIME:
            offset = float(p.get("offset", 0.0) or 0.0)
            if offset > 0.0:
                return f"setpts=PTS-STARTPTS+{fmt_sec(offset)}/TB"
            return "setpts=PTS-STARTPTS"
        if self.op == OP_SCALE:
            if p.get("fit"):
                return f"scale={p['width']}:{p['height']}:force_original_aspect_ratio=decrease"
            return f"scale={p['width']}:{p['height']}"
        if self.op == OP_PAD:
            return f"pad={p['width']}:{p['height']}:(ow-iw)/2:(oh-ih)/2:color=black,setsar=1"
        if self.op == OP_CONCAT:
            return f"concat=n={len(self.inputs)}:v=1:a=0"
        if self.op == OP_HOLD:
            return f"tpad=stop_mode=clone:stop_duration={fmt_sec(p['duration'])}"
        if self.op == OP_COLOR:
            return (
                f"color={p.get('color', 'black')}:size={p['width']}x{p['height']}"
                f":duration={fmt_sec(p['duration'])}:rate={p.get('rate', 30)}"
            )
        if self.op == OP_OVERLAY:
            # Opacity stays on the node; ffmpeg's overlay filter has no such option.
            return f"overlay=x={p['x']}:y={p['y']}:eof_action=pass:enable='gte(t,{fmt_sec(p['start'])})'"
        raise GraphIntegrityError(f"Unknown filter op: {self.op}")


class FilterGraph:
    """
    Arena of filter nodes addressed by insertion index.

    Every label is suffixed with a per-graph id, so graphs compiled in the same
    process never share labels. Raw inputs are referenced as "<index>:v".
    """

    def __init__(self, source_count: int, graph_id: Optional[str] = None) -> None:
        self.source_count = int(source_count)
        self.graph_id = graph_id or uuid.uuid4().hex[:6]
        self.nodes: List[FilterNode] = []
        self.output: Optional[str] = None
        self._producers: Dict[str, int] = {}

    @staticmethod
    def source(index: int) -> str:
        return f"{int(index)}:v"

    def label(self, owner: str, stage: str) -> str:
        return f"{owner}_{stage}_{self.graph_id}"

    def add(self, op: str, inputs: List[str], owner: str, stage: str, **params: Any) -> str:
        """Append a node and return its output label."""
        out = self.label(owner, stage)
        if out in self._producers:
            raise GraphIntegrityError(f"Duplicate label [{out}]")
        self.nodes.append(FilterNode(op=op, inputs=list(inputs), output=out, params=dict(params)))
        self._producers[out] = len(self.nodes) - 1
        return out

    def producer(self, label: str) -> Optional[FilterNode]:
        idx = self._producers.get(label)
        if idx is not None:
            return self.nodes[idx]
        return next((n for n in self.nodes if n.output == label), None)

    def nodes_by_op(self, op: str) -> List[FilterNode]:
        return [n for n in self.nodes if n.op == op]

    def labels(self) -> List[str]:
        return [n.output for n in self.nodes]

    def frame_size(self, label: str) -> Optional[Tuple[int, int]]:
        """Frame size carried by a label, or None when it depends on a raw source."""
        seen = set()
        node = self.producer(label)
        while node is not None and node.output not in seen:
            seen.add(node.output)
            if node.op in (OP_SCALE, OP_PAD, OP_COLOR):
                return int(node.params["width"]), int(node.params["height"])
            if not node.inputs:
                return None
            # concat/overlay/trim/... keep the size of their first (base) input
            node = self.producer(node.inputs[0])
        return None

    def _is_source(self, label: str) -> bool:
        m = _SOURCE_RE.match(label)
        return bool(m) and int(m.group(1)) < self.source_count

    def validate(self) -> None:
        seen: Dict[str, int] = {}
        for i, n in enumerate(self.nodes):
            if n.output in seen:
                raise GraphIntegrityError(f"Label [{n.output}] produced by nodes {seen[n.output]} and {i}")
            seen[n.output] = i

        consumed: Dict[str, int] = {}
        for n in self.nodes:
            for inp in n.inputs:
                if not self._is_source(inp) and inp not in seen:
                    raise GraphIntegrityError(f"Node [{n.output}] reads [{inp}] which is never produced")
                consumed[inp] = consumed.get(inp, 0) + 1

        if self.output is None or self.output not in seen:
            raise GraphIntegrityError(f"Final output [{self.output}] is never produced")

        for n in self.nodes:
            if n.output != self.output and consumed.get(n.output, 0) == 0:
                raise GraphIntegrityError(f"Label [{n.output}] is produced but never used")
            if consumed.get(n.output, 0) > 1:
                # ffmpeg labels are single-use pads; fan-out needs an explicit split.
                raise GraphIntegrityError(f"Label [{n.output}] is consumed more than once")
        if consumed.get(self.output, 0) > 0:
            raise GraphIntegrityError(f"Final output [{self.output}] is also consumed inside the graph")

        self.topological_order()

    def topological_order(self) -> List[int]:
        """Stable Kahn walk: ready nodes come out in insertion order."""
        producers = {n.output: i for i, n in enumerate(self.nodes)}
        deps: List[List[int]] = []
        users: Dict[int, List[int]] = {i: [] for i in range(len(self.nodes))}
        for i, n in enumerate(self.nodes):
            d = [producers[inp] for inp in n.inputs if inp in producers]
            deps.append(d)
            for j in d:
                users[j].append(i)

        indegree = [len(d) for d in deps]
        ready = [i for i, k in enumerate(indegree) if k == 0]
        heapq.heapify(ready)
        order: List[int] = []
        while ready:
            i = heapq.heappop(ready)
            order.append(i)
            for u in users[i]:
                indegree[u] -= 1
                if indegree[u] == 0:
                    heapq.heappush(ready, u)
        if len(order) != len(self.nodes):
            raise GraphIntegrityError("Filter graph contains a cycle")
        return order

    def serialize(self) -> str:
        """
        Render the graph as -filter_complex text.

        Runs of nodes where each one only feeds the next are written as one
        comma-separated chain; chains are joined with ';'.
        """
        self.validate()
        order = self.topological_order()

        consumers: Dict[str, int] = {}
        for n in self.nodes:
            for inp in n.inputs:
                consumers[inp] = consumers.get(inp, 0) + 1

        chains: List[str] = []
        head: Optional[FilterNode] = None
        filters: List[str] = []
        prev: Optional[FilterNode] = None
        for i in order:
            n = self.nodes[i]
            fuse = (
                prev is not None
                and n.inputs == [prev.output]
                and consumers.get(prev.output, 0) == 1
            )
            if not fuse and head is not None and prev is not None:
                chains.append(_chain_text(head, filters, prev.output))
                head, filters = None, []
            if head is None:
                head = n
            filters.append(n.render())
            prev = n
        if head is not None and prev is not None:
            chains.append(_chain_text(head, filters, prev.output))
        return ";".join(chains)


def _chain_text(head: FilterNode, filters: List[str], out: str) -> str:
    ins = "".join(f"[{x}]" for x in head.inputs)
    return f"{ins}{','.join(filters)}[{out}]"
