from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Tuple, TypedDict, Union

# Closed set of values a node parameter may hold
ParamValue = Union[float, int, str, bool, Tuple[float, ...]]


class NodeStatus(Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"
    SUCCESS = "success"
    ERROR = "error"


# Reusable typed mappings for graph JSON files

PositionData = TypedDict("PositionData", {"x": float, "y": float})

NodeData = TypedDict(
    "NodeData",
    {
        "id": str,
        "type": str,
        "position": PositionData,
        "params": Dict[str, Any],
        "inputs": Dict[str, Any],
        "outputs": Dict[str, Any],
        "dirty": bool,
        "status": str,
        "errorMessage": str,
    },
    total=False,
)

EdgeData = TypedDict(
    "EdgeData",
    {
        "id": str,
        "source": str,
        "sourceHandle": str,
        "target": str,
        "targetHandle": str,
    },
    total=False,
)

GraphDict = TypedDict(
    "GraphDict",
    {
        "version": str,
        "units": str,
        "tolerance": float,
        "nodes": List[NodeData],
        "edges": List[EdgeData],
        "metadata": Dict[str, Any],
    },
    total=False,
)
