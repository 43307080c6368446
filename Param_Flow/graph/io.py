"""File IO helpers for :mod:`Param_Flow.graph`."""

from __future__ import annotations

import json
from typing import Any

from ..errors import GraphFormatError
from .model import GraphDocument


def serialize(document: GraphDocument) -> str:
    """Return ``document`` encoded as indented JSON."""
    return json.dumps(document.to_dict(), indent=2)


def deserialize(text: str) -> GraphDocument:
    """Decode ``text`` into a :class:`GraphDocument`."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise GraphFormatError(f"invalid JSON: {exc}") from exc
    _validate_graph(data)
    try:
        return GraphDocument.from_dict(data)
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise GraphFormatError(f"invalid graph data: {exc}") from exc


def load_graph(path: str) -> GraphDocument:
    """Load a graph from ``path`` and return a :class:`GraphDocument`."""
    with open(path) as f:
        return deserialize(f.read())


def save_graph(path: str, document: GraphDocument) -> None:
    """Write ``document`` to ``path`` in JSON format."""
    with open(path, "w") as f:
        f.write(serialize(document))


def new_graph() -> GraphDocument:
    """Return a new blank document."""
    return GraphDocument.blank()


def _validate_graph(data: Any) -> None:
    if not isinstance(data, dict):
        raise GraphFormatError("Graph file must contain an object")
    if "nodes" not in data or "edges" not in data:
        raise GraphFormatError("Graph file must contain 'nodes' and 'edges'")
    if not isinstance(data["nodes"], list):
        raise GraphFormatError("'nodes' must be a list")
    if not isinstance(data["edges"], list):
        raise GraphFormatError("'edges' must be a list")
    for node in data["nodes"]:
        if not isinstance(node, dict):
            raise GraphFormatError("node entries must be objects")
        if "id" not in node or "type" not in node:
            raise GraphFormatError("node missing 'id' or 'type'")
        for key in ("params", "inputs", "outputs"):
            if key in node and node[key] is not None and not isinstance(node[key], dict):
                raise GraphFormatError(f"node '{key}' must be an object")
        if node.get("position") is not None:
            _validate_position(node["position"])
    for edge in data["edges"]:
        if not isinstance(edge, dict):
            raise GraphFormatError("edge entries must be objects")
        if "source" not in edge or "target" not in edge:
            raise GraphFormatError("edge missing 'source' or 'target'")
    if "tolerance" in data and not isinstance(data["tolerance"], (int, float)):
        raise GraphFormatError("'tolerance' must be a number")


def _validate_position(pos: Any) -> None:
    if not isinstance(pos, dict):
        raise GraphFormatError("node 'position' must be an object with 'x' and 'y'")
    for axis in ("x", "y"):
        value = pos.get(axis, 0.0)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise GraphFormatError(f"node position '{axis}' must be a number")
