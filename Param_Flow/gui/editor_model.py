"""Qt model exposing a :class:`GraphOrchestrator` to a node editor canvas."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from PySide6.QtCore import QObject, Property, Signal, Slot

from ..engine.handle import EngineStatus
from ..orchestrator import EvaluationOutcome, GraphOrchestrator
from ..view import ViewProjection


class EditorModel(QObject):
    """Translate canvas events into orchestrator calls.

    The canvas renders the ``dict`` emitted by :attr:`viewChanged` and reports
    user gestures back through the slots below.
    """

    viewChanged = Signal(dict)
    historyChanged = Signal()
    statusChanged = Signal(str)

    def __init__(self, orchestrator: GraphOrchestrator | None = None) -> None:
        super().__init__()
        self._orch = orchestrator if orchestrator is not None else GraphOrchestrator()
        self._status = ""
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe = self._orch.subscribe(self._on_change)
        self._unsubscribe_engine = self._orch.engine_handle.subscribe(
            self._on_engine_status
        )

    @property
    def orchestrator(self) -> GraphOrchestrator:
        return self._orch

    # ---- Properties ---------------------------------------------------------

    @Property(bool, notify=historyChanged)
    def canUndo(self) -> bool:
        return self._orch.can_undo()

    @Property(bool, notify=historyChanged)
    def canRedo(self) -> bool:
        return self._orch.can_redo()

    @Property(str, notify=statusChanged)
    def status(self) -> str:
        """Return the latest user-facing status message."""

        return self._status

    @Property(str, notify=statusChanged)
    def engineStatus(self) -> str:
        return self._orch.engine_status.value

    # ---- Canvas events ------------------------------------------------------

    @Slot(result=dict)
    def view(self) -> Dict[str, Any]:
        return self._orch.view().to_dict()

    @Slot(str, float, float, result=str)
    def addNode(self, node_type: str, x: float, y: float) -> str:
        """Add a ``node_type`` node at ``(x, y)`` returning its id or ``""``."""

        node = self._orch.add_node(node_type, (x, y))
        if node is None:
            self._report_warning()
            return ""
        return node.id

    @Slot(str)
    def deleteNode(self, node_id: str) -> None:
        self._orch.remove_node(node_id)

    @Slot()
    def deleteSelection(self) -> None:
        self._orch.delete_selection()

    @Slot(str, float, float)
    def moveNode(self, node_id: str, x: float, y: float) -> None:
        self._orch.move_node(node_id, x, y)

    @Slot(str, str, "QVariant")
    def setParam(self, node_id: str, name: str, value: Any) -> None:
        """Edit a single parameter of ``node_id``."""

        if not self._orch.update_node(node_id, {"params": {name: value}}):
            self._report_warning()

    @Slot(str, str, str, str, result=str)
    def connectNodes(
        self, source: str, source_handle: str, target: str, target_handle: str
    ) -> str:
        edge = self._orch.add_edge(source, source_handle, target, target_handle)
        if edge is None:
            self._report_warning()
            return ""
        return edge.id

    @Slot(str)
    def deleteEdge(self, edge_id: str) -> None:
        self._orch.remove_edge(edge_id)

    @Slot(str)
    def selectNode(self, node_id: str) -> None:
        self._orch.select_node(node_id or None)

    @Slot()
    def clearSelection(self) -> None:
        self._orch.clear_selection()

    # ---- History ------------------------------------------------------------

    @Slot()
    def undo(self) -> None:
        self._orch.undo()

    @Slot()
    def redo(self) -> None:
        self._orch.redo()

    # ---- Persistence --------------------------------------------------------

    @Slot(str, result=bool)
    def loadGraph(self, text: str) -> bool:
        ok = self._orch.load_graph(text)
        if not ok:
            self._report_warning()
        return ok

    @Slot(result=str)
    def saveGraph(self) -> str:
        return self._orch.save_graph()

    @Slot()
    def newGraph(self) -> None:
        self._orch.clear_graph()

    # ---- Engine -------------------------------------------------------------

    @Slot()
    def initializeEngine(self) -> None:
        self._spawn(self._orch.initialize_engine())

    @Slot()
    def evaluate(self) -> None:
        """Start evaluation in the background; progress arrives via signals."""

        self._spawn(self._evaluate())

    @Slot()
    def cancelEvaluation(self) -> None:
        self._orch.cancel_evaluation()

    async def _evaluate(self) -> EvaluationOutcome:
        outcome = await self._orch.evaluate_graph()
        if outcome in (EvaluationOutcome.NOT_READY, EvaluationOutcome.BUSY):
            self._report_warning()
        elif outcome is EvaluationOutcome.FAILED:
            self._set_status("Evaluation failed")
        elif outcome is EvaluationOutcome.COMPLETED:
            self._set_status("Evaluation completed")
        return outcome

    def _spawn(self, coro) -> Optional[asyncio.Task]:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ---- Callbacks ----------------------------------------------------------

    def _on_change(self, _document, projection: ViewProjection) -> None:
        self.viewChanged.emit(projection.to_dict())
        self.historyChanged.emit()

    def _on_engine_status(self, status: EngineStatus, reason: str | None) -> None:
        if status is EngineStatus.FAILED:
            self._set_status(f"Geometry engine unavailable: {reason}")
        elif status is EngineStatus.READY:
            self._set_status("Geometry engine ready")
        else:
            self.statusChanged.emit(self._status)

    def _report_warning(self) -> None:
        if self._orch.warnings:
            self._set_status(self._orch.warnings[-1])

    def _set_status(self, message: str) -> None:
        self._status = message
        self.statusChanged.emit(message)

    def close(self) -> None:
        """Detach from the orchestrator."""
        self._unsubscribe()
        self._unsubscribe_engine()
