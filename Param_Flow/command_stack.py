"""Undo/redo command stack utilities without GUI dependencies."""

from __future__ import annotations

import contextlib
import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .config import Config
from .graph.manager import MAP_FIELDS, REMOVED, DocumentManager
from .graph.model import EdgeInstance, NodeInstance
from .graph.types import NodeStatus
from .logging_models import CommandRecord


class Command:
    """Base class for actions that can be undone and redone."""

    description: str = ""

    def execute(self) -> None:  # pragma: no cover - interface
        """Apply the command."""

    def undo(self) -> None:  # pragma: no cover - interface
        """Reverse the command."""

    def to_record(self) -> CommandRecord:
        """Return a serializable description of the command."""
        return CommandRecord(op=type(self).__name__, description=self.description)


class CommandGroup(Command):
    """Several commands undone and redone as a single history entry."""

    def __init__(self, description: str, commands: List[Command] | None = None) -> None:
        self.description = description
        self.commands: List[Command] = list(commands or [])

    def execute(self) -> None:
        for cmd in self.commands:
            cmd.execute()

    def undo(self) -> None:
        for cmd in reversed(self.commands):
            cmd.undo()

    def to_record(self) -> CommandRecord:
        records = [cmd.to_record() for cmd in self.commands]
        return CommandRecord(
            op="group",
            description=self.description,
            target_ids=[i for r in records for i in r.target_ids],
            payload={"commands": [r.model_dump() for r in records]},
        )


@dataclass
class CommandStack:
    """Linear undo history with a cursor and bounded size.

    ``history[: current_index + 1]`` holds the executed commands and anything
    after the cursor is pending redo. Executing a new command discards the
    pending redo branch.
    """

    max_size: int = field(default_factory=lambda: Config.history_limit)
    history: List[Command] = field(default_factory=list)
    current_index: int = -1
    _group: Optional[CommandGroup] = field(default=None, init=False, repr=False)

    def can_undo(self) -> bool:
        return self.current_index >= 0

    def can_redo(self) -> bool:
        return self.current_index < len(self.history) - 1

    @property
    def grouping(self) -> bool:
        """``True`` while a :meth:`group` block is open."""
        return self._group is not None

    @contextlib.contextmanager
    def group(self, description: str) -> Iterator[CommandGroup]:
        """Record every command executed in the block as one history entry.

        Nested blocks join the outermost group. If the block raises, the
        commands it already executed are undone and nothing is recorded.
        """

        if self._group is not None:
            yield self._group
            return
        group = self._group = CommandGroup(description)
        try:
            yield group
        except BaseException:
            self._group = None
            group.undo()
            raise
        self._group = None
        if group.commands:
            del self.history[self.current_index + 1 :]
            self.history.append(group)
            self.current_index += 1
            self._trim()

    def execute(self, command: Command) -> None:
        """Execute ``command`` and make it the most recent history entry."""

        if self._group is not None:
            command.execute()
            self._group.commands.append(command)
            return
        pruned = self.history[self.current_index + 1 :]
        del self.history[self.current_index + 1 :]
        self.history.append(command)
        try:
            command.execute()
        except Exception:
            self.history.pop()
            self.history.extend(pruned)
            raise
        self.current_index += 1
        self._trim()

    def _trim(self) -> None:
        if len(self.history) > self.max_size:
            self.history.pop(0)
            self.current_index -= 1

    def undo(self) -> Command | None:
        """Undo the most recent command if any and return it."""

        if not self.can_undo():
            return None
        cmd = self.history[self.current_index]
        cmd.undo()
        self.current_index -= 1
        return cmd

    def redo(self) -> Command | None:
        """Redo the most recently undone command if any and return it."""

        if not self.can_redo():
            return None
        self.current_index += 1
        cmd = self.history[self.current_index]
        cmd.execute()
        return cmd

    def clear(self) -> None:
        self.history = []
        self.current_index = -1

    def get_history(self) -> List[Command]:
        """Return executed commands, excluding those pending redo."""
        return self.history[: self.current_index + 1]

    def undo_description(self) -> str | None:
        if not self.can_undo():
            return None
        return self.history[self.current_index].description

    def redo_description(self) -> str | None:
        if not self.can_redo():
            return None
        return self.history[self.current_index + 1].description


# ---- Domain commands ---------------------------------------------------------


@dataclass
class AddNodeCommand(Command):
    """Command that inserts a node into a :class:`DocumentManager`."""

    manager: DocumentManager
    node: NodeInstance

    def __post_init__(self) -> None:
        self.node = self.node.copy()

    @property
    def description(self) -> str:
        return f"Add {self.node.type} node"

    def execute(self) -> None:
        if self.manager.get_node(self.node.id) is None:
            self.manager.insert_node(self.node)

    def undo(self) -> None:
        self.manager.remove_node(self.node.id)

    def to_record(self) -> CommandRecord:
        return CommandRecord(
            op="add_node",
            description=self.description,
            target_ids=[self.node.id],
            payload={"node": self.node.to_dict()},
        )


@dataclass
class RemoveNodeCommand(Command):
    """Command that deletes a node and its incident edges.

    The node is snapshotted at construction; the cascade of removed edges is
    captured on every execution so undo restores both. Evaluation status is
    not part of the snapshot: a restored node comes back idle.
    """

    manager: DocumentManager
    node: NodeInstance
    _index: Optional[int] = None
    _edges: List[Tuple[int, EdgeInstance]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.node = self.node.copy()
        self.node.status = NodeStatus.IDLE
        self.node.error_message = None

    @property
    def description(self) -> str:
        return f"Remove {self.node.type} node"

    def execute(self) -> None:
        self._index = self.manager.node_index(self.node.id)
        if self._index is None:
            self._edges = []
            return
        self._edges = self.manager.remove_node(self.node.id)

    def undo(self) -> None:
        if self._index is None or self.manager.get_node(self.node.id) is not None:
            return
        self.manager.insert_node(self.node, self._index)
        for index, edge in self._edges:
            if self.manager.get_edge(edge.id) is not None:
                continue
            other = edge.target if edge.source == self.node.id else edge.source
            if self.manager.get_node(other) is not None:
                self.manager.insert_edge(edge, index)

    def to_record(self) -> CommandRecord:
        return CommandRecord(
            op="remove_node",
            description=self.description,
            target_ids=[self.node.id],
            payload={
                "node": self.node.to_dict(),
                "edges": [e.to_dict() for _, e in self._edges],
            },
        )


@dataclass
class UpdateNodeCommand(Command):
    """Command that patches a subset of a node's fields."""

    manager: DocumentManager
    node_id: str
    old_patch: Dict[str, Any]
    new_patch: Dict[str, Any]

    description = "Update node parameters"

    def execute(self) -> None:
        self.manager.patch_node(self.node_id, self.new_patch)

    def undo(self) -> None:
        self.manager.patch_node(self.node_id, self.old_patch)

    @classmethod
    def capture(
        cls, manager: DocumentManager, node_id: str, new_patch: Dict[str, Any]
    ) -> "UpdateNodeCommand | None":
        """Build the command, snapshotting only the fields ``new_patch`` touches.

        Must be called before the patch is applied. Returns ``None`` when the
        node does not exist.
        """

        node = manager.get_node(node_id)
        if node is None:
            return None
        old_patch: Dict[str, Any] = {}
        for key, value in new_patch.items():
            if key in MAP_FIELDS:
                current = getattr(node, key)
                old_patch[key] = {
                    sub_key: copy.deepcopy(current.get(sub_key, REMOVED))
                    for sub_key in value
                }
            else:
                old_patch[key] = copy.deepcopy(getattr(node, key))
        return cls(manager, node_id, old_patch, copy.deepcopy(new_patch))

    def to_record(self) -> CommandRecord:
        return CommandRecord(
            op="update_node",
            description=self.description,
            target_ids=[self.node_id],
            payload={"fields": sorted(self.new_patch)},
        )


@dataclass
class MoveNodeCommand(UpdateNodeCommand):
    """Command that changes a node's ``(x, y)`` position."""

    description = "Move node"


@dataclass
class AddEdgeCommand(Command):
    """Command that connects two node sockets."""

    manager: DocumentManager
    edge: EdgeInstance

    description = "Connect nodes"

    def __post_init__(self) -> None:
        self.edge = self.edge.copy()

    def execute(self) -> None:
        if self.manager.get_edge(self.edge.id) is None:
            self.manager.insert_edge(self.edge)

    def undo(self) -> None:
        self.manager.remove_edge(self.edge.id)

    def to_record(self) -> CommandRecord:
        return CommandRecord(
            op="add_edge",
            description=self.description,
            target_ids=[self.edge.id],
            payload={"edge": self.edge.to_dict()},
        )


@dataclass
class RemoveEdgeCommand(Command):
    """Command that deletes an edge and restores it at its index on undo."""

    manager: DocumentManager
    edge: EdgeInstance
    _index: Optional[int] = None

    description = "Disconnect nodes"

    def __post_init__(self) -> None:
        self.edge = self.edge.copy()

    def execute(self) -> None:
        removed = self.manager.remove_edge(self.edge.id)
        self._index = removed[0] if removed is not None else None

    def undo(self) -> None:
        if self._index is None or self.manager.get_edge(self.edge.id) is not None:
            return
        if (
            self.manager.get_node(self.edge.source) is None
            or self.manager.get_node(self.edge.target) is None
        ):
            return
        self.manager.insert_edge(self.edge, self._index)

    def to_record(self) -> CommandRecord:
        return CommandRecord(
            op="remove_edge",
            description=self.description,
            target_ids=[self.edge.id],
            payload={"edge": self.edge.to_dict()},
        )
