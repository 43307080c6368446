"""Top-level coordinator between editing, history, view and evaluation.

Every user-facing mutation goes through :class:`GraphOrchestrator`: it builds
the matching command, pushes it onto the :class:`CommandStack` (which applies
it to the :class:`DocumentManager`), then republishes the document and its
view projection to subscribers. Evaluation is driven through the injected
:class:`EngineHandle` and always reports its result as state: node status,
per-node errors and the returned :class:`EvaluationOutcome`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import (
    Any,
    Callable,
    Deque,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
)

import networkx as nx

from .command_stack import (
    AddEdgeCommand,
    AddNodeCommand,
    Command,
    CommandGroup,
    CommandStack,
    MoveNodeCommand,
    RemoveEdgeCommand,
    RemoveNodeCommand,
    UpdateNodeCommand,
)
from .config import Config
from .engine.handle import EngineHandle, EngineStatus, get_engine_handle
from .errors import EvaluationError, GraphFormatError, ParamFlowError
from .graph import io as graph_io
from .graph.manager import (
    MAP_FIELDS,
    REMOVED,
    DirtyPropagation,
    DocumentManager,
    validate_document,
)
from .graph.model import EdgeInstance, GraphDocument, NodeInstance, new_id
from .graph.params import SchemaRegistry
from .graph.types import NodeStatus
from .journal import log_entry
from .logging_models import (
    CommandLog,
    CommandPayload,
    EvaluationLog,
    EvaluationPayload,
)
from .view import ViewProjection, to_view

logger = logging.getLogger(__name__)

#: Node fields a user edit may change.
EDITABLE_FIELDS = ("type", "position", "params", "inputs", "outputs")


class EvaluationOutcome(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    NOT_READY = "not_ready"
    UP_TO_DATE = "up_to_date"
    BUSY = "busy"
    CANCELLED = "cancelled"


class EvaluationPolicy(Enum):
    """What to do with an evaluation request while another is in flight."""

    REJECT = "reject"
    QUEUE = "queue"


Listener = Callable[[GraphDocument, ViewProjection], None]


class GraphOrchestrator:
    """Coordinate graph edits, undo history and evaluation.

    Parameters
    ----------
    engine_handle:
        Lifecycle handle of the evaluation engine. Defaults to the
        process-wide handle from :func:`get_engine_handle`.
    document:
        Initial document; a blank one is created when omitted.
    registry:
        Optional parameter schemas used to validate node parameters.
    history_limit:
        Undo depth, defaulting to :attr:`Config.history_limit`.
    propagation:
        Dirty propagation policy, defaulting to
        :attr:`Config.dirty_propagation`.
    evaluation_policy:
        Concurrent evaluation policy, defaulting to
        :attr:`Config.evaluation_policy`.
    """

    def __init__(
        self,
        engine_handle: EngineHandle | None = None,
        *,
        document: GraphDocument | None = None,
        registry: SchemaRegistry | None = None,
        history_limit: int | None = None,
        propagation: DirtyPropagation | str | None = None,
        evaluation_policy: EvaluationPolicy | str | None = None,
    ) -> None:
        self.manager = DocumentManager(document, propagation=propagation)
        self.stack = CommandStack(
            max_size=Config.history_limit if history_limit is None else history_limit
        )
        self.engine_handle = (
            engine_handle if engine_handle is not None else get_engine_handle()
        )
        self.registry = registry
        self.evaluation_policy = EvaluationPolicy(
            evaluation_policy or Config.evaluation_policy
        )

        self.selected_nodes: Set[str] = set()
        self.hovered_node: str | None = None
        self.errors: Dict[str, str] = {}
        self.warnings: Deque[str] = deque(maxlen=100)

        self.is_evaluating = False
        self.last_outcome: EvaluationOutcome | None = None
        self._evaluating_ids: Set[str] = set()
        self._eval_generation = 0
        self._inflight: asyncio.Future | None = None
        self._follow_up: asyncio.Future | None = None

        self._listeners: List[Listener] = []
        self._lock = threading.RLock()

    # ---- Read accessors -------------------------------------------------

    @property
    def document(self) -> GraphDocument:
        return self.manager.get_graph()

    @property
    def engine_status(self) -> EngineStatus:
        return self.engine_handle.status

    def view(self) -> ViewProjection:
        """Return the renderer projection of the current state."""
        return to_view(self.manager.get_graph(), self.selected_nodes, self.errors)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(document, projection)`` after every change."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def validate(self) -> List[str]:
        return self.manager.validate()

    # ---- Graph mutations ------------------------------------------------

    def add_node(
        self,
        node_type: str,
        position: Tuple[float, float] = (0.0, 0.0),
        params: Dict[str, Any] | None = None,
        inputs: Dict[str, Any] | None = None,
        outputs: Dict[str, Any] | None = None,
        *,
        node_id: str | None = None,
    ) -> NodeInstance | None:
        """Insert a new node and return it, or ``None`` if rejected."""

        with self._lock:
            if node_id is not None and self.manager.get_node(node_id) is not None:
                return self._reject(f"Node id {node_id} already exists")
            try:
                clean = self._check_params(node_type, params or {}, partial=False)
            except ParamFlowError as exc:
                return self._reject(f"Cannot add {node_type} node: {exc}")
            node = NodeInstance(
                id=node_id or new_id(),
                type=node_type,
                position=(float(position[0]), float(position[1])),
                params=clean,
                inputs=dict(inputs or {}),
                outputs=dict(outputs or {}),
            )
            if not self._run(AddNodeCommand(self.manager, node)):
                return None
            return self.manager.get_node(node.id)

    def remove_node(self, node_id: str) -> bool:
        """Delete ``node_id`` and its edges. Absent ids are a silent no-op."""

        with self._lock:
            node = self.manager.get_node(node_id)
            if node is None:
                logger.debug("remove_node: %s not in graph", node_id)
                return False
            return self._run(RemoveNodeCommand(self.manager, node))

    def remove_nodes(self, node_ids: Iterable[str]) -> int:
        """Delete several nodes as one undo step and return how many went."""

        ids = list(dict.fromkeys(node_ids))
        with self.group(f"Remove {len(ids)} nodes"):
            return sum(1 for nid in ids if self.remove_node(nid))

    def delete_selection(self) -> int:
        return self.remove_nodes(sorted(self.selected_nodes))

    @contextlib.contextmanager
    def group(self, description: str) -> Iterator[CommandGroup]:
        """Make every edit made inside the block a single undo step.

        An exception escaping the block reverts the edits it made.
        """

        with self._lock:
            nested = self.stack.grouping
            try:
                with self.stack.group(description) as group:
                    yield group
            except BaseException:
                if not nested:
                    self._after_change()
                raise
            if not nested and group.commands:
                self._record("execute", "command_executed", group)
                self._after_change()

    def update_node(self, node_id: str, patch: Dict[str, Any]) -> bool:
        """Apply a user edit to ``node_id``.

        ``params``, ``inputs`` and ``outputs`` in ``patch`` merge key by key.
        Patches that change nothing do not create a history entry.
        """

        with self._lock:
            node = self.manager.get_node(node_id)
            if node is None:
                self._reject(f"Cannot update node {node_id}: not in graph")
                return False
            unknown = set(patch) - set(EDITABLE_FIELDS)
            if unknown:
                self._reject(f"Cannot edit fields {sorted(unknown)} of node {node_id}")
                return False
            patch = dict(patch)
            if "params" in patch:
                try:
                    patch["params"] = self._check_params(
                        patch.get("type", node.type), patch["params"], partial=True
                    )
                except ParamFlowError as exc:
                    self._reject(f"Cannot update node {node_id}: {exc}")
                    return False
            if "position" in patch:
                patch["position"] = (float(patch["position"][0]), float(patch["position"][1]))
            patch = _effective_patch(node, patch)
            if not patch:
                return True
            cls = MoveNodeCommand if set(patch) == {"position"} else UpdateNodeCommand
            command = cls.capture(self.manager, node_id, patch)
            return command is not None and self._run(command)

    def move_node(self, node_id: str, x: float, y: float) -> bool:
        """Change the position of ``node_id``."""
        return self.update_node(node_id, {"position": (x, y)})

    def add_edge(
        self,
        source: str,
        source_handle: str,
        target: str,
        target_handle: str,
        *,
        edge_id: str | None = None,
    ) -> EdgeInstance | None:
        """Connect ``source.source_handle`` to ``target.target_handle``."""

        with self._lock:
            if self.manager.get_node(source) is None or self.manager.get_node(target) is None:
                return self._reject("source and target must exist in the graph")
            if source == target:
                return self._reject("self-loops are not allowed")
            if edge_id is not None and self.manager.get_edge(edge_id) is not None:
                return self._reject(f"Edge id {edge_id} already exists")
            for e in self.manager.get_graph().edges:
                if (e.source, e.source_handle, e.target, e.target_handle) == (
                    source,
                    source_handle,
                    target,
                    target_handle,
                ):
                    return self._reject("duplicate edge")
            if nx.has_path(self.manager.to_networkx(), target, source):
                return self._reject("connection would create a cycle")
            edge = EdgeInstance(
                id=edge_id or new_id(),
                source=source,
                source_handle=source_handle,
                target=target,
                target_handle=target_handle,
            )
            if not self._run(AddEdgeCommand(self.manager, edge)):
                return None
            return self.manager.get_edge(edge.id)

    def remove_edge(self, edge_id: str) -> bool:
        """Delete ``edge_id``. Absent ids are a silent no-op."""

        with self._lock:
            edge = self.manager.get_edge(edge_id)
            if edge is None:
                logger.debug("remove_edge: %s not in graph", edge_id)
                return False
            return self._run(RemoveEdgeCommand(self.manager, edge))

    # ---- Undo / redo ----------------------------------------------------

    def undo(self) -> bool:
        with self._lock:
            cmd = self.stack.undo()
            if cmd is None:
                return False
            self._record("undo", "command_undone", cmd)
            self._after_change()
            return True

    def redo(self) -> bool:
        with self._lock:
            cmd = self.stack.redo()
            if cmd is None:
                return False
            self._record("redo", "command_redone", cmd)
            self._after_change()
            return True

    def can_undo(self) -> bool:
        return self.stack.can_undo()

    def can_redo(self) -> bool:
        return self.stack.can_redo()

    def history(self) -> List[Command]:
        return self.stack.get_history()

    # ---- Selection and per-node errors ----------------------------------

    def select_node(self, node_id: str | None) -> None:
        with self._lock:
            self.selected_nodes = {node_id} if node_id else set()
            self._publish()

    def select_nodes(self, node_ids: Iterable[str]) -> None:
        with self._lock:
            self.selected_nodes = set(node_ids)
            self._publish()

    def deselect_node(self, node_id: str) -> None:
        with self._lock:
            self.selected_nodes.discard(node_id)
            self._publish()

    def clear_selection(self) -> None:
        with self._lock:
            self.selected_nodes = set()
            self._publish()

    def set_hovered_node(self, node_id: str | None) -> None:
        self.hovered_node = node_id

    def set_error(self, node_id: str, message: str) -> None:
        with self._lock:
            self.errors[node_id] = message
            self._publish()

    def clear_errors(self) -> None:
        with self._lock:
            self.errors = {}
            self._publish()

    # ---- Persistence ----------------------------------------------------

    def load_graph(self, text: str) -> bool:
        """Replace the document with serialized ``text``; clears history.

        Malformed text and documents with duplicate ids, dangling edges or
        cycles are logged and leave the current document untouched.
        """

        try:
            document = graph_io.deserialize(text)
        except GraphFormatError as exc:
            logger.error("Failed to load graph: %s", exc)
            self.warnings.append(f"Failed to load graph: {exc}")
            return False
        if not self._accept_document(document, "load"):
            return False
        self._replace_document(document)
        logger.info(
            "Graph loaded successfully (%d nodes, %d edges)",
            len(document.nodes),
            len(document.edges),
        )
        return True

    def save_graph(self) -> str:
        return graph_io.serialize(self.manager.get_graph())

    def open_file(self, path: str) -> bool:
        with open(path) as f:
            return self.load_graph(f.read())

    def save_file(self, path: str) -> None:
        graph_io.save_graph(path, self.manager.get_graph())

    def import_graph(self, document: GraphDocument) -> bool:
        """Replace the document with a copy of ``document`` if it is valid."""

        if not self._accept_document(document, "import"):
            return False
        self._replace_document(document.copy())
        return True

    def export_graph(self) -> GraphDocument:
        return self.manager.get_graph().copy()

    def clear_graph(self) -> None:
        self._replace_document(GraphDocument.blank())

    def _accept_document(self, document: GraphDocument, action: str) -> bool:
        problems = validate_document(document)
        if not problems:
            return True
        message = f"Failed to {action} graph: {'; '.join(problems)}"
        logger.error(message)
        self.warnings.append(message)
        return False

    def _replace_document(self, document: GraphDocument) -> None:
        with self._lock:
            if self.is_evaluating:
                self.cancel_evaluation()
            self.manager.set_graph(document)
            # old commands reference a document that no longer exists
            self.stack.clear()
            log_entry(
                "history",
                "history_cleared",
                CommandLog(
                    payload=CommandPayload(action="clear", history_size=0, current_index=-1)
                ),
            )
            self.selected_nodes = set()
            self.hovered_node = None
            self.errors = {}
            self._publish()

    # ---- Engine ---------------------------------------------------------

    async def initialize_engine(self) -> EngineStatus:
        """Bring the engine up, sharing any attempt already in flight."""

        status = await self.engine_handle.ensure_ready()
        if status is EngineStatus.FAILED:
            self.warnings.append(
                f"Geometry engine unavailable: {self.engine_handle.reason}"
            )
        return status

    async def invoke(self, op_name: str, payload: Any) -> Any:
        """Run a single engine operation; the engine must be ready."""

        engine = self.engine_handle.engine
        if engine is None:
            raise EvaluationError("Geometry engine is not ready")
        return await engine.invoke(op_name, payload)

    async def evaluate_graph(self) -> EvaluationOutcome:
        """Evaluate dirty nodes and report the result as state.

        Never raises for engine failures: the returned outcome, node
        statuses and :attr:`errors` describe what happened.
        """

        if not self.engine_handle.is_ready():
            return self._set_outcome(self._not_ready())
        if not self.is_evaluating:
            return self._set_outcome(await self._run_evaluation())
        if self.evaluation_policy is EvaluationPolicy.REJECT:
            logger.warning("Evaluation already in progress - request rejected")
            self.warnings.append("Evaluation already in progress")
            return EvaluationOutcome.BUSY
        return self._set_outcome(await self._queue_evaluation())

    async def _queue_evaluation(self) -> EvaluationOutcome:
        waiter = self._follow_up
        if waiter is not None:
            return await asyncio.shield(waiter)
        waiter = self._follow_up = asyncio.get_running_loop().create_future()
        try:
            while self.is_evaluating and self._inflight is not None:
                await asyncio.shield(self._inflight)
            self._follow_up = None
            outcome = await self._run_evaluation()
        except BaseException:
            if self._follow_up is waiter:
                self._follow_up = None
            if not waiter.done():
                waiter.set_result(EvaluationOutcome.CANCELLED)
            raise
        waiter.set_result(outcome)
        return outcome

    async def _run_evaluation(self) -> EvaluationOutcome:
        engine = self.engine_handle.engine
        if engine is None:
            return self._not_ready()
        with self._lock:
            dirty = self.manager.get_dirty_node_ids()
            if not dirty:
                return EvaluationOutcome.UP_TO_DATE
            revisions = {nid: self.manager.dirty_revision(nid) for nid in dirty}
            self._eval_generation += 1
            generation = self._eval_generation
            self.is_evaluating = True
            self._inflight = asyncio.get_running_loop().create_future()
            self._evaluating_ids = set(dirty)
            for nid in dirty:
                self.manager.set_status(nid, NodeStatus.EVALUATING)
                self.errors.pop(nid, None)
            snapshot = self.manager.get_graph().copy()
            self._publish()
        self._journal("evaluation_started", "started", dirty)

        start = time.perf_counter()
        try:
            await engine.evaluate(snapshot, set(dirty))
        except asyncio.CancelledError:
            with self._lock:
                if generation == self._eval_generation:
                    self._reset_evaluating()
                    self._publish()
            raise
        except Exception as exc:
            duration = (time.perf_counter() - start) * 1000.0
            if generation != self._eval_generation:
                return EvaluationOutcome.CANCELLED
            message = _error_message(exc)
            logger.error(
                "Graph evaluation failed after %.2f ms (%d dirty nodes): %s",
                duration,
                len(dirty),
                message,
            )
            with self._lock:
                for nid in dirty:
                    if self.manager.get_node(nid) is not None:
                        self.manager.set_status(nid, NodeStatus.ERROR, message)
                        self.errors[nid] = message
                self._end_evaluation()
                self._publish()
            self._journal("evaluation_failed", "failed", dirty, duration, message)
            return EvaluationOutcome.FAILED

        duration = (time.perf_counter() - start) * 1000.0
        if generation != self._eval_generation:
            return EvaluationOutcome.CANCELLED
        with self._lock:
            present = [nid for nid in dirty if self.manager.get_node(nid) is not None]
            # nodes edited while the engine was busy stay dirty and go back to idle
            fresh = [
                nid for nid in present if self.manager.dirty_revision(nid) == revisions[nid]
            ]
            self.manager.clear_dirty_flags(fresh)
            for nid in present:
                status = NodeStatus.SUCCESS if nid in fresh else NodeStatus.IDLE
                self.manager.set_status(nid, status)
            self._end_evaluation()
            self._publish()
        logger.info(
            "Graph evaluation completed in %.2f ms (%d dirty nodes)", duration, len(dirty)
        )
        self._journal("evaluation_completed", "completed", dirty, duration)
        return EvaluationOutcome.COMPLETED

    def cancel_evaluation(self) -> None:
        """Ask the engine to stop and reset local evaluation bookkeeping.

        The engine is only asked; whatever it later returns for the
        cancelled run is ignored.
        """

        engine = self.engine_handle.engine
        if engine is not None:
            try:
                engine.cancel_all()
            except Exception:
                logger.warning("Engine rejected cancellation request", exc_info=True)
        with self._lock:
            was_running = self.is_evaluating
            ids = set(self._evaluating_ids)
            self._eval_generation += 1
            self._reset_evaluating()
            self._publish()
        if was_running:
            self._journal("evaluation_cancelled", "cancelled", ids)

    # ---- Internals ------------------------------------------------------

    def _run(self, command: Command) -> bool:
        try:
            self.stack.execute(command)
        except ParamFlowError as exc:
            self._reject(f"{command.description} failed: {exc}")
            return False
        if not self.stack.grouping:
            self._record("execute", "command_executed", command)
        self._after_change()
        return True

    def _after_change(self) -> None:
        ids = {n.id for n in self.manager.get_graph().nodes}
        self.selected_nodes &= ids
        self.errors = {k: v for k, v in self.errors.items() if k in ids}
        if self.hovered_node not in ids:
            self.hovered_node = None
        self._publish()

    def _publish(self) -> None:
        if not self._listeners:
            return
        document = self.manager.get_graph()
        projection = self.view()
        for listener in list(self._listeners):
            listener(document, projection)

    def _check_params(
        self, node_type: str, params: Dict[str, Any], *, partial: bool
    ) -> Dict[str, Any]:
        if self.registry is None:
            return dict(params)
        if not partial:
            schema = self.registry.get(node_type)
            if schema is not None:
                params = {**schema.defaults(), **params}
        return self.registry.validate(node_type, params, partial=partial)

    def _reject(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)
        return None

    def _not_ready(self) -> EvaluationOutcome:
        reason = self.engine_handle.reason
        message = "Geometry engine is not ready. Please wait a moment and try again."
        if reason:
            message = f"Geometry engine unavailable: {reason}"
        logger.warning("Evaluation skipped - engine %s", self.engine_handle.status.value)
        self.warnings.append(message)
        return EvaluationOutcome.NOT_READY

    def _set_outcome(self, outcome: EvaluationOutcome) -> EvaluationOutcome:
        self.last_outcome = outcome
        return outcome

    def _reset_evaluating(self) -> None:
        for nid in self._evaluating_ids:
            node = self.manager.get_node(nid)
            if node is not None and node.status is NodeStatus.EVALUATING:
                self.manager.set_status(nid, NodeStatus.IDLE)
        self._end_evaluation()

    def _end_evaluation(self) -> None:
        self.is_evaluating = False
        self._evaluating_ids = set()
        if self._inflight is not None and not self._inflight.done():
            self._inflight.set_result(None)
        self._inflight = None

    def _record(self, action: str, label: str, command: Command) -> None:
        log_entry(
            "history",
            label,
            CommandLog(
                payload=CommandPayload(
                    action=action,
                    command=command.to_record(),
                    history_size=len(self.stack.history),
                    current_index=self.stack.current_index,
                )
            ),
        )

    def _journal(
        self,
        label: str,
        outcome: str,
        ids: Iterable[str],
        duration: float = 0.0,
        error: Optional[str] = None,
    ) -> None:
        log_entry(
            "evaluation",
            label,
            EvaluationLog(
                payload=EvaluationPayload(
                    outcome=outcome,
                    node_ids=sorted(ids),
                    duration_ms=duration,
                    error=error,
                )
            ),
        )


def _effective_patch(node: NodeInstance, patch: Dict[str, Any]) -> Dict[str, Any]:
    """Drop the parts of ``patch`` that would not change ``node``."""

    out: Dict[str, Any] = {}
    for key, value in patch.items():
        if key in MAP_FIELDS:
            current = getattr(node, key)
            changed = {
                k: v
                for k, v in dict(value).items()
                if current.get(k, REMOVED) != v
            }
            if changed:
                out[key] = changed
        elif getattr(node, key) != value:
            out[key] = value
    return out


def _error_message(exc: BaseException) -> str:
    message = getattr(exc, "message", None) or str(exc)
    return message or type(exc).__name__
