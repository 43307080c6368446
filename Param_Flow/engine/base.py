"""Interface expected from geometry evaluation engines."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Set

from ..graph.model import GraphDocument


class EvaluationEngine(ABC):
    """Asynchronous engine computing results for dirty nodes.

    Implementations signal rejected calls by raising
    :class:`~Param_Flow.errors.EvaluationError`.
    """

    @abstractmethod
    async def init(self) -> None:
        """Prepare the engine. May take long and may fail."""

    @abstractmethod
    async def evaluate(self, document: GraphDocument, dirty_ids: Set[str]) -> None:
        """Recompute ``dirty_ids`` within ``document``."""

    @abstractmethod
    def cancel_all(self) -> None:
        """Best-effort request to abandon in-flight work."""

    @abstractmethod
    async def invoke(self, op_name: str, payload: Any) -> Any:
        """Run a single named geometry operation."""

    async def shutdown(self) -> None:
        """Release engine resources. The default does nothing."""
