"""Schemas for the execution engine."""

from .config import ExecutionConfig, ToolConstraint
from .domain import (
    Checkpoint,
    ErrorContext,
    ErrorType,
    ExecuteRequest,
    ExecutionState,
    GraphState,
    Interrupt,
    Message,
    MessageRole,
    NodeId,
    PendingTask,
    RiskLevel,
    Step,
    StepStatus,
    Task,
    TaskStatus,
    Thoughts,
    ToolCall,
    ToolCallRecord,
)
from .streaming import ChunkMetadata, ChunkOutput, EventType, TraceEvent, TraceKind

__all__ = [
    "Checkpoint",
    "ChunkMetadata",
    "ChunkOutput",
    "ErrorContext",
    "ErrorType",
    "EventType",
    "ExecuteRequest",
    "ExecutionConfig",
    "ExecutionState",
    "GraphState",
    "Interrupt",
    "Message",
    "MessageRole",
    "NodeId",
    "PendingTask",
    "RiskLevel",
    "Step",
    "StepStatus",
    "Task",
    "TaskStatus",
    "Thoughts",
    "ToolCall",
    "ToolCallRecord",
    "ToolConstraint",
    "TraceEvent",
    "TraceKind",
]
