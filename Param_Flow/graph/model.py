from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from ..config import Config
from .types import EdgeData, GraphDict, NodeData, NodeStatus

#: Node fields that carry domain meaning and survive a view round trip.
AUTHORITATIVE_NODE_FIELDS = ("id", "type", "position", "params", "inputs", "outputs")


def new_id() -> str:
    """Return a fresh unique identifier for a node or edge."""
    return str(uuid.uuid4())


@dataclass
class NodeInstance:
    """A typed operation node inside a :class:`GraphDocument`."""

    id: str
    type: str
    position: Tuple[float, float] = (0.0, 0.0)
    params: Dict[str, Any] = field(default_factory=dict)
    inputs: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    dirty: bool = True
    status: NodeStatus = NodeStatus.IDLE
    error_message: str | None = None

    def copy(self) -> "NodeInstance":
        """Return a deep copy so snapshots never alias live maps."""
        return copy.deepcopy(self)

    def authoritative(self) -> Dict[str, Any]:
        """Return the fields that define the node independently of UI state."""
        return {name: copy.deepcopy(getattr(self, name)) for name in AUTHORITATIVE_NODE_FIELDS}

    def to_dict(self) -> NodeData:
        data: NodeData = {
            "id": self.id,
            "type": self.type,
            "position": {"x": self.position[0], "y": self.position[1]},
            "params": _encode_params(self.params),
            "inputs": copy.deepcopy(self.inputs),
            "outputs": copy.deepcopy(self.outputs),
            "dirty": self.dirty,
            "status": self.status.value,
        }
        if self.error_message is not None:
            data["errorMessage"] = self.error_message
        return data

    @classmethod
    def from_dict(cls, data: NodeData) -> "NodeInstance":
        pos = data.get("position") or {}
        return cls(
            id=str(data.get("id") or new_id()),
            type=str(data.get("type", "unknown")),
            position=(float(pos.get("x", 0.0)), float(pos.get("y", 0.0))),
            params=_decode_params(data.get("params") or {}),
            inputs=dict(data.get("inputs") or {}),
            outputs=dict(data.get("outputs") or {}),
            dirty=bool(data.get("dirty", True)),
            status=NodeStatus(data.get("status", NodeStatus.IDLE.value)),
            error_message=data.get("errorMessage"),
        )


@dataclass
class EdgeInstance:
    """Directed connection from an output socket to an input socket."""

    id: str
    source: str
    source_handle: str
    target: str
    target_handle: str

    def copy(self) -> "EdgeInstance":
        return copy.copy(self)

    def to_dict(self) -> EdgeData:
        return {
            "id": self.id,
            "source": self.source,
            "sourceHandle": self.source_handle,
            "target": self.target,
            "targetHandle": self.target_handle,
        }

    @classmethod
    def from_dict(cls, data: EdgeData) -> "EdgeInstance":
        return cls(
            id=str(data.get("id") or new_id()),
            source=str(data["source"]),
            source_handle=str(data.get("sourceHandle") or ""),
            target=str(data["target"]),
            target_handle=str(data.get("targetHandle") or ""),
        )


@dataclass
class GraphDocument:
    """Canonical, serializable representation of a node graph."""

    version: str = field(default_factory=lambda: Config.document_version)
    units: str = field(default_factory=lambda: Config.default_units)
    tolerance: float = field(default_factory=lambda: Config.default_tolerance)
    nodes: List[NodeInstance] = field(default_factory=list)
    edges: List[EdgeInstance] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> GraphDict:
        """Serialize the document to a plain ``dict`` suitable for JSON."""
        return {
            "version": self.version,
            "units": self.units,
            "tolerance": self.tolerance,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "metadata": copy.deepcopy(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: GraphDict) -> "GraphDocument":
        """Construct a :class:`GraphDocument` from ``data``."""
        doc = cls()
        doc.version = str(data.get("version", doc.version))
        doc.units = str(data.get("units", doc.units))
        doc.tolerance = float(data.get("tolerance", doc.tolerance))
        doc.nodes = [NodeInstance.from_dict(n) for n in data.get("nodes", [])]
        doc.edges = [EdgeInstance.from_dict(e) for e in data.get("edges", [])]
        doc.metadata = dict(data.get("metadata") or {})
        return doc

    @classmethod
    def blank(cls) -> "GraphDocument":
        """Return a new empty document using the configured defaults."""
        return cls()

    def copy(self) -> "GraphDocument":
        return copy.deepcopy(self)

    def authoritative(self) -> Dict[str, Any]:
        """Return nodes and edges reduced to their authoritative fields."""
        return {
            "nodes": [n.authoritative() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


def _encode_params(params: Dict[str, Any]) -> Dict[str, Any]:
    return {k: list(v) if isinstance(v, tuple) else copy.deepcopy(v) for k, v in params.items()}


def _decode_params(params: Dict[str, Any]) -> Dict[str, Any]:
    # vectors travel as JSON arrays
    return {
        k: tuple(v) if isinstance(v, list) and v and all(_is_number(i) for i in v) else v
        for k, v in params.items()
    }


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
