"""Renderer-facing projection of a :class:`GraphDocument`.

:func:`to_view` and :func:`from_view` are pure functions. The projection is
never authoritative: everything in it can be rebuilt from the document plus
transient UI state (selection, per-node errors).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .graph.model import EdgeInstance, GraphDocument, NodeInstance
from .graph.types import NodeStatus

INPUT_KIND = "input"
OUTPUT_KIND = "output"
DEFAULT_KIND = "default"

# Presentational edge styling shared by every connection
EDGE_TYPE = "smoothstep"
EDGE_ANIMATED = True
EDGE_STROKE = "var(--color-primary-500)"
EDGE_STROKE_WIDTH = 2
EDGE_MARKER = "arrow"


@dataclass(frozen=True)
class ViewNode:
    """Lightweight representation of a node for the renderer."""

    id: str
    kind: str = DEFAULT_KIND
    position: Tuple[float, float] = (0.0, 0.0)
    node_type: Optional[str] = None
    params: Optional[Dict[str, Any]] = None
    inputs: Optional[Dict[str, Any]] = None
    outputs: Optional[Dict[str, Any]] = None
    dirty: bool = True
    status: str = NodeStatus.IDLE.value
    display_label: str = ""
    is_selected: bool = False
    has_error: bool = False
    is_executing: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Return the renderer payload for this node."""
        return {
            "id": self.id,
            "type": self.kind,
            "position": {"x": self.position[0], "y": self.position[1]},
            "data": {
                "label": self.display_label,
                "type": self.node_type,
                "params": copy.deepcopy(self.params),
                "inputs": copy.deepcopy(self.inputs),
                "outputs": copy.deepcopy(self.outputs),
                "dirty": self.dirty,
                "status": self.status,
                "isSelected": self.is_selected,
                "hasError": self.has_error,
                "isExecuting": self.is_executing,
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ViewNode":
        """Build a node from a renderer payload; missing fields stay unset."""
        payload = data.get("data") or {}
        pos = data.get("position") or {}
        return cls(
            id=str(data["id"]),
            kind=str(data.get("type") or DEFAULT_KIND),
            position=(float(pos.get("x", 0.0)), float(pos.get("y", 0.0))),
            node_type=payload.get("type"),
            params=payload.get("params"),
            inputs=payload.get("inputs"),
            outputs=payload.get("outputs"),
            dirty=bool(payload.get("dirty", True)),
            status=str(payload.get("status") or NodeStatus.IDLE.value),
            display_label=str(payload.get("label") or ""),
            is_selected=bool(payload.get("isSelected", False)),
            has_error=bool(payload.get("hasError", False)),
            is_executing=bool(payload.get("isExecuting", False)),
        )


@dataclass(frozen=True)
class ViewEdge:
    """Lightweight representation of an edge for the renderer."""

    id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    type: str = EDGE_TYPE
    animated: bool = EDGE_ANIMATED
    style: Dict[str, Any] = field(
        default_factory=lambda: {"stroke": EDGE_STROKE, "strokeWidth": EDGE_STROKE_WIDTH}
    )
    marker_end: Dict[str, Any] = field(
        default_factory=lambda: {"type": EDGE_MARKER, "color": EDGE_STROKE}
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "sourceHandle": self.source_handle,
            "target": self.target,
            "targetHandle": self.target_handle,
            "type": self.type,
            "animated": self.animated,
            "style": dict(self.style),
            "markerEnd": dict(self.marker_end),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ViewEdge":
        return cls(
            id=str(data["id"]),
            source=str(data["source"]),
            target=str(data["target"]),
            source_handle=data.get("sourceHandle"),
            target_handle=data.get("targetHandle"),
        )


@dataclass(frozen=True)
class ViewProjection:
    """Snapshot of the graph as consumed by the renderer."""

    nodes: List[ViewNode] = field(default_factory=list)
    edges: List[ViewEdge] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


def node_kind(node_type: str) -> str:
    """Return the renderer bucket for ``node_type``."""
    if node_type.startswith("IO::Import"):
        return INPUT_KIND
    if node_type.startswith("IO::Export"):
        return OUTPUT_KIND
    return DEFAULT_KIND


def node_label(node: NodeInstance) -> str:
    """Return a short display label, summarising well-known parameters."""

    label = node.type.split("::")[-1]
    params = node.params or {}
    if label == "Box":
        width, height, depth = (params.get(k) for k in ("width", "height", "depth"))
        if width and height and depth:
            return f"Box ({_fmt(width)}×{_fmt(height)}×{_fmt(depth)})"
    if label == "Fillet":
        radius = params.get("radius")
        if radius:
            return f"Fillet (R{_fmt(radius)})"
    return label or "Unknown"


def to_view(
    document: GraphDocument,
    selection: Iterable[str] = (),
    errors: Mapping[str, str] | None = None,
) -> ViewProjection:
    """Project ``document`` plus UI state into renderer nodes and edges."""

    selected = set(selection)
    errors = errors or {}
    nodes = [
        ViewNode(
            id=node.id,
            kind=node_kind(node.type),
            position=tuple(node.position or (0.0, 0.0)),
            node_type=node.type,
            params=copy.deepcopy(node.params),
            inputs=copy.deepcopy(node.inputs),
            outputs=copy.deepcopy(node.outputs),
            dirty=node.dirty,
            status=node.status.value,
            display_label=node_label(node),
            is_selected=node.id in selected,
            has_error=node.id in errors,
            is_executing=node.status is NodeStatus.EVALUATING,
        )
        for node in document.nodes
    ]
    edges = [
        ViewEdge(
            id=edge.id,
            source=edge.source,
            target=edge.target,
            source_handle=edge.source_handle,
            target_handle=edge.target_handle,
        )
        for edge in document.edges
    ]
    return ViewProjection(nodes=nodes, edges=edges)


def from_view(
    view_nodes: Iterable[ViewNode], view_edges: Iterable[ViewEdge]
) -> GraphDocument:
    """Rebuild a :class:`GraphDocument` from renderer nodes and edges."""

    nodes = [
        NodeInstance(
            id=vn.id,
            type=vn.node_type or vn.kind or "unknown",
            position=tuple(vn.position),
            params=copy.deepcopy(vn.params) if vn.params is not None else {},
            inputs=copy.deepcopy(vn.inputs) if vn.inputs is not None else {},
            outputs=copy.deepcopy(vn.outputs) if vn.outputs is not None else {},
            dirty=vn.dirty,
            status=NodeStatus(vn.status),
        )
        for vn in view_nodes
    ]
    edges = [
        EdgeInstance(
            id=ve.id,
            source=ve.source,
            source_handle=ve.source_handle or "",
            target=ve.target,
            target_handle=ve.target_handle or "",
        )
        for ve in view_edges
    ]
    return GraphDocument(nodes=nodes, edges=edges)


def _fmt(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
