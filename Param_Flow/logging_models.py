import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def new_log_id() -> str:
    """Return a unique identifier for a log entry."""
    return f"log_{uuid.uuid4()}"


class BaseLogEntry(BaseModel):
    """Common metadata for all journal entries."""

    log_id: str = Field(default_factory=new_log_id)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: Optional[str] = None


class CommandRecord(BaseModel):
    """Serializable description of a command: operation kind plus payload."""

    op: str
    description: str
    target_ids: List[str] = Field(default_factory=list)
    payload: Dict[str, Any] = Field(default_factory=dict)


class CommandPayload(BaseModel):
    action: str
    command: Optional[CommandRecord] = None
    history_size: int
    current_index: int


class CommandLog(BaseLogEntry):
    event_type: str = "HistoryChanged"
    payload: CommandPayload


class EvaluationPayload(BaseModel):
    outcome: str
    node_ids: List[str] = Field(default_factory=list)
    duration_ms: float = 0.0
    error: Optional[str] = None


class EvaluationLog(BaseLogEntry):
    event_type: str = "GraphEvaluated"
    payload: EvaluationPayload


class EnginePayload(BaseModel):
    status: str
    reason: Optional[str] = None


class EngineLog(BaseLogEntry):
    event_type: str = "EngineStatusChanged"
    payload: EnginePayload
