"""Internal trace events and the externally streamed ``ChunkOutput``."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field

from .base import BaseSchema
from .domain import ErrorContext, NodeId, ToolCall


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TraceKind(str, Enum):
    node_started = "node_started"
    node_finished = "node_finished"
    model_call_started = "model_call_started"
    model_call_finished = "model_call_finished"
    tool_started = "tool_started"
    tool_finished = "tool_finished"


class EventType(str, Enum):
    chat_model_start = "on_chat_model_start"
    chat_model_end = "on_chat_model_end"
    graph_end = "on_graph_end"


class TraceEvent(BaseSchema):
    kind: TraceKind
    node: NodeId
    task_id: Optional[str] = None
    step_id: Optional[str] = None
    content: Any = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utc_now)


class ChunkMetadata(BaseSchema):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    final: bool = False
    error: Optional[ErrorContext] = None
    retry: int = 0
    graph_step: int = 0
    node: Optional[NodeId] = None
    interrupted: bool = False
    cancelled: bool = False
    forced: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None


class ChunkOutput(BaseSchema):
    """One unit of the streamed progress feed; never persisted."""

    event: EventType
    run_id: str
    thread_id: str
    checkpoint_id: Optional[str] = None
    task_id: Optional[str] = None
    step_id: Optional[str] = None
    from_: NodeId = Field(alias="from")
    tools: Optional[List[ToolCall]] = None
    message: Optional[str] = None
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)
    timestamp: datetime = Field(default_factory=_utc_now)
