"""Structural primitives over the canonical :class:`GraphDocument`.

The :class:`DocumentManager` is the only component that mutates a document.
Its insert/remove/patch operations are the forward and inverse effects that
commands in :mod:`Param_Flow.command_stack` replay, so every operation here is
deterministic given the same input state.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

import networkx as nx

from ..config import Config
from ..errors import GraphError
from .model import EdgeInstance, GraphDocument, NodeInstance
from .types import NodeStatus

logger = logging.getLogger(__name__)


class _Removed:
    """Marker for a map key that a patch deletes."""

    _instance: "_Removed | None" = None

    def __new__(cls) -> "_Removed":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "REMOVED"

    def __deepcopy__(self, memo: dict) -> "_Removed":
        return self


#: Patch value deleting a key from ``params``, ``inputs`` or ``outputs``.
REMOVED = _Removed()

#: Fields of :class:`NodeInstance` merged key by key by :meth:`patch_node`.
MAP_FIELDS = ("params", "inputs", "outputs")
#: Fields whose change requires the node to be recomputed.
DIRTYING_FIELDS = ("params", "inputs")
PATCHABLE_FIELDS = (
    "type",
    "position",
    "params",
    "inputs",
    "outputs",
    "dirty",
    "status",
    "error_message",
)


class DirtyPropagation(Enum):
    """Scope of dirty marking after a node changes."""

    DIRECT = "direct"
    DOWNSTREAM = "downstream"


Listener = Callable[[GraphDocument], None]


def socket_ref(edge: EdgeInstance) -> Dict[str, str]:
    """Return the ``inputs`` entry that records ``edge`` on its target."""
    return {"nodeId": edge.source, "socketId": edge.source_handle}


def document_digraph(document: GraphDocument) -> nx.DiGraph:
    """Return the connectivity of ``document`` as a ``networkx`` graph."""

    g = nx.DiGraph()
    for node in document.nodes:
        g.add_node(node.id)
    for edge in document.edges:
        if edge.source in g and edge.target in g:
            g.add_edge(edge.source, edge.target)
    return g


def validate_document(document: GraphDocument) -> List[str]:
    """Return a list of human readable problems with ``document``."""

    errors: List[str] = []
    seen: Set[str] = set()
    for node in document.nodes:
        if node.id in seen:
            errors.append(f"Duplicate node id {node.id}")
        seen.add(node.id)
    seen_edges: Set[str] = set()
    for edge in document.edges:
        if edge.id in seen_edges:
            errors.append(f"Duplicate edge id {edge.id}")
        seen_edges.add(edge.id)
        for end in (edge.source, edge.target):
            if end not in seen:
                errors.append(f"Edge {edge.id}: Missing node {end}")
    if not nx.is_directed_acyclic_graph(document_digraph(document)):
        errors.append("Graph contains cycles")
    return errors


class DocumentManager:
    """Own a :class:`GraphDocument` and expose reversible structural edits."""

    def __init__(
        self,
        document: GraphDocument | None = None,
        *,
        propagation: DirtyPropagation | str | None = None,
    ) -> None:
        self._doc = document if document is not None else GraphDocument.blank()
        self.propagation = DirtyPropagation(propagation or Config.dirty_propagation)
        self._listeners: List[Listener] = []
        self._revision = 0
        self._revisions: Dict[str, int] = {}
        # input values hidden by a connected edge, keyed by edge id
        self._shadowed: Dict[str, Any] = {}
        self._seed_revisions()

    # ---- Read accessors ------------------------------------------------------

    def get_graph(self) -> GraphDocument:
        """Return the live document. Callers must treat it as read-only."""
        return self._doc

    def get_node(self, node_id: str) -> NodeInstance | None:
        for node in self._doc.nodes:
            if node.id == node_id:
                return node
        return None

    def get_edge(self, edge_id: str) -> EdgeInstance | None:
        for edge in self._doc.edges:
            if edge.id == edge_id:
                return edge
        return None

    def node_index(self, node_id: str) -> int | None:
        for i, node in enumerate(self._doc.nodes):
            if node.id == node_id:
                return i
        return None

    def edge_index(self, edge_id: str) -> int | None:
        for i, edge in enumerate(self._doc.edges):
            if edge.id == edge_id:
                return i
        return None

    def incident_edges(self, node_id: str) -> List[EdgeInstance]:
        """Return edges whose source or target is ``node_id``."""
        return [e for e in self._doc.edges if node_id in (e.source, e.target)]

    def get_dirty_node_ids(self) -> Set[str]:
        """Return ids of nodes that require recomputation."""
        return {n.id for n in self._doc.nodes if n.dirty}

    def dirty_revision(self, node_id: str) -> int:
        """Return a counter bumped every time ``node_id`` is marked dirty."""
        return self._revisions.get(node_id, 0)

    # ---- Structural operations -----------------------------------------------

    def insert_node(self, node: NodeInstance, index: int | None = None) -> NodeInstance:
        """Insert a copy of ``node`` and mark it dirty.

        ``index`` restores a node at its previous list position; ``None``
        appends. The stored node is always dirty, also when an undo restores
        it, so a remove/undo pair reproduces the authoritative fields of the
        node but not a clean dirty flag.
        """

        if self.get_node(node.id) is not None:
            raise GraphError(f"duplicate node id {node.id!r}")
        stored = node.copy()
        if index is None or index < 0 or index > len(self._doc.nodes):
            self._doc.nodes.append(stored)
        else:
            self._doc.nodes.insert(index, stored)
        self._mark_dirty(stored.id)
        self._notify()
        return stored

    def remove_node(self, node_id: str) -> List[Tuple[int, EdgeInstance]]:
        """Delete ``node_id`` together with its incident edges.

        Returns the removed edges paired with their former indices, in
        ascending index order, so that reinserting them in that order
        restores the edge list exactly. Socket references to the node are
        dropped from the inputs of its downstream neighbours. Removing an
        absent id is a no-op.
        """

        index = self.node_index(node_id)
        if index is None:
            return []
        self._doc.nodes.pop(index)
        self._revisions.pop(node_id, None)

        removed: List[Tuple[int, EdgeInstance]] = []
        kept: List[EdgeInstance] = []
        for i, edge in enumerate(self._doc.edges):
            if node_id in (edge.source, edge.target):
                removed.append((i, edge))
            else:
                kept.append(edge)
        self._doc.edges = kept
        for _, edge in removed:
            if edge.target != node_id and self.get_node(edge.target) is not None:
                self._unlink_input(edge)
                self._mark_dirty(edge.target)
        self._notify()
        return removed

    def patch_node(self, node_id: str, partial: Dict[str, Any]) -> bool:
        """Apply ``partial`` to ``node_id``.

        ``params``, ``inputs`` and ``outputs`` merge key by key and a
        :data:`REMOVED` value deletes a key. The node is marked dirty when its
        ``params`` or ``inputs`` actually change. Returns ``False`` when the
        node does not exist.
        """

        node = self.get_node(node_id)
        if node is None:
            return False
        unknown = set(partial) - set(PATCHABLE_FIELDS)
        if unknown:
            raise GraphError(f"cannot patch fields {sorted(unknown)}")

        changed = False
        for key, value in partial.items():
            if key in MAP_FIELDS:
                current: Dict[str, Any] = getattr(node, key)
                for sub_key, sub_value in dict(value).items():
                    if sub_value is REMOVED:
                        if sub_key in current:
                            del current[sub_key]
                            changed = changed or key in DIRTYING_FIELDS
                    elif current.get(sub_key, REMOVED) != sub_value:
                        current[sub_key] = sub_value
                        changed = changed or key in DIRTYING_FIELDS
            elif key == "position":
                node.position = (float(value[0]), float(value[1]))
            elif key == "status":
                node.status = NodeStatus(value)
            else:
                setattr(node, key, value)
        if changed:
            self._mark_dirty(node_id)
        self._notify()
        return True

    def set_status(
        self, node_id: str, status: NodeStatus, message: str | None = None
    ) -> None:
        """Record evaluation status without touching the dirty flag."""
        self.patch_node(node_id, {"status": status, "error_message": message})

    def insert_edge(self, edge: EdgeInstance, index: int | None = None) -> EdgeInstance:
        """Insert a copy of ``edge`` after checking both endpoints exist.

        The target's ``inputs[target_handle]`` receives a socket reference to
        the source; a list-valued input gets the reference appended.
        """

        if self.get_edge(edge.id) is not None:
            raise GraphError(f"duplicate edge id {edge.id!r}")
        if self.get_node(edge.source) is None or self.get_node(edge.target) is None:
            raise GraphError("source and target must exist in the graph")
        stored = edge.copy()
        if index is None or index < 0 or index > len(self._doc.edges):
            self._doc.edges.append(stored)
        else:
            self._doc.edges.insert(index, stored)
        self._link_input(stored)
        self._mark_dirty(stored.target)
        self._notify()
        return stored

    def remove_edge(self, edge_id: str) -> Optional[Tuple[int, EdgeInstance]]:
        """Delete ``edge_id`` and return it with its former index, if present."""

        index = self.edge_index(edge_id)
        if index is None:
            return None
        edge = self._doc.edges.pop(index)
        if self.get_node(edge.target) is not None:
            self._unlink_input(edge)
            self._mark_dirty(edge.target)
        self._notify()
        return index, edge

    def clear_dirty_flags(self, ids: Iterable[str] | None = None) -> None:
        """Reset the dirty flag of ``ids`` or of every node when ``None``."""

        wanted = None if ids is None else set(ids)
        for node in self._doc.nodes:
            if wanted is None or node.id in wanted:
                node.dirty = False
        self._notify()

    def set_graph(self, document: GraphDocument) -> None:
        """Replace the document wholesale."""
        self._doc = document
        self._revisions.clear()
        self._shadowed.clear()
        self._seed_revisions()
        self._notify()

    # ---- Graph analysis ------------------------------------------------------

    def to_networkx(self) -> nx.DiGraph:
        """Return the connectivity of the document as a ``networkx`` graph."""
        return document_digraph(self._doc)

    def downstream_of(self, node_id: str) -> Set[str]:
        """Return ids reachable from ``node_id`` along edges."""

        g = self.to_networkx()
        if node_id not in g:
            return set()
        return set(nx.descendants(g, node_id))

    def validate(self) -> List[str]:
        """Return a list of human readable problems with the document."""
        return validate_document(self._doc)

    # ---- Listeners -----------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and return a function that removes it."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._doc)

    # ---- Socket references ---------------------------------------------------

    def _link_input(self, edge: EdgeInstance) -> None:
        node = self.get_node(edge.target)
        if node is None:
            return
        ref = socket_ref(edge)
        current = node.inputs.get(edge.target_handle, REMOVED)
        if isinstance(current, list):
            if ref not in current:
                current.append(ref)
            return
        if current is not REMOVED and current != ref:
            self._shadowed[edge.id] = current
        node.inputs[edge.target_handle] = ref

    def _unlink_input(self, edge: EdgeInstance) -> None:
        shadowed = self._shadowed.pop(edge.id, REMOVED)
        node = self.get_node(edge.target)
        if node is None:
            return
        ref = socket_ref(edge)
        current = node.inputs.get(edge.target_handle, REMOVED)
        if isinstance(current, list):
            if ref in current:
                current.remove(ref)
        elif current == ref:
            if shadowed is REMOVED:
                del node.inputs[edge.target_handle]
            else:
                node.inputs[edge.target_handle] = shadowed

    # ---- Dirty bookkeeping ---------------------------------------------------

    def _mark_dirty(self, node_id: str) -> None:
        ids = {node_id}
        if self.propagation is DirtyPropagation.DOWNSTREAM:
            ids |= self.downstream_of(node_id)
        for node in self._doc.nodes:
            if node.id in ids:
                node.dirty = True
                self._revision += 1
                self._revisions[node.id] = self._revision

    def _seed_revisions(self) -> None:
        for node in self._doc.nodes:
            if node.dirty:
                self._revision += 1
                self._revisions[node.id] = self._revision
