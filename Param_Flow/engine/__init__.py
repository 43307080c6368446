"""Evaluation engine interface, lifecycle handle and remote client."""

from .base import EvaluationEngine
from .handle import (
    EngineHandle,
    EngineStatus,
    get_engine_handle,
    reset_engine_handle,
    set_engine_handle,
)

__all__ = [
    "EvaluationEngine",
    "EngineHandle",
    "EngineStatus",
    "get_engine_handle",
    "reset_engine_handle",
    "set_engine_handle",
]
