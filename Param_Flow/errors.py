"""Exception hierarchy shared across :mod:`Param_Flow`."""

from __future__ import annotations


class ParamFlowError(Exception):
    """Base class for all package specific errors."""


class GraphError(ParamFlowError, ValueError):
    """Raised when a structural operation would break a graph invariant."""


class GraphFormatError(ParamFlowError, ValueError):
    """Raised when serialized graph data has an invalid shape."""


class ParamValidationError(ParamFlowError, ValueError):
    """Raised when a node parameter does not match its declared schema."""

    def __init__(self, param: str, message: str) -> None:
        super().__init__(f"{param}: {message}")
        self.param = param


class EvaluationError(ParamFlowError):
    """Raised by evaluation engines when a call is rejected."""

    def __init__(self, message: str, node_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.node_id = node_id


class EngineConnectError(ParamFlowError):
    """Raised when a remote engine connection cannot be established."""
