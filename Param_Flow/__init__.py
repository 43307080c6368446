"""Param_Flow package initialization."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .orchestrator import EvaluationOutcome, GraphOrchestrator

__all__ = ["GraphOrchestrator", "EvaluationOutcome"]


def __getattr__(name: str) -> Any:  # pragma: no cover - attribute access
    """Lazily expose the orchestrator without importing the engine stack."""

    if name == "GraphOrchestrator":
        from .orchestrator import GraphOrchestrator as _GraphOrchestrator

        return _GraphOrchestrator
    if name == "EvaluationOutcome":
        from .orchestrator import EvaluationOutcome as _EvaluationOutcome

        return _EvaluationOutcome
    raise AttributeError(name)
