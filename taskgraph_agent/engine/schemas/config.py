"""Read-only configuration consumed by the execution graph."""

from __future__ import annotations

from typing import Dict, List

from pydantic import Field

from .base import FrozenSchema


class ToolConstraint(FrozenSchema):
    """Per-tool call rules checked after the ``end_task`` completion rules."""

    prevent_consecutive_duplicates: bool = False
    max_retries: int = Field(default=0, ge=0, description="Max consecutive calls of the tool; 0 disables the check")
    required_precedents: List[str] = Field(default_factory=list)
    blocked_after: List[str] = Field(default_factory=list)


class ExecutionConfig(FrozenSchema):
    """Validated once at construction; the graph never mutates or re-checks it."""

    max_graph_steps: int = Field(default=100, ge=1)
    max_iterations: int = Field(default=50, ge=1)
    max_retries: int = Field(default=3, ge=0)
    model_call_timeout: float = Field(default=60.0, gt=0)
    tool_call_timeout: float = Field(default=30.0, gt=0)
    hitl_threshold: float = Field(default=0.0, ge=0.0, le=1.0)
    history_window: int = Field(default=5, ge=1)
    stream_buffer_size: int = Field(default=64, ge=1)
    inspection_tool: str = "inspect_execution_state"
    tool_fallbacks: Dict[str, str] = Field(default_factory=dict)
    tool_constraints: Dict[str, ToolConstraint] = Field(default_factory=dict)
    recursion_margin: int = Field(default=10, ge=1)
    retrieval_k: int = Field(default=4, ge=1)

    @property
    def recursion_limit(self) -> int:
        return self.max_graph_steps + self.recursion_margin
