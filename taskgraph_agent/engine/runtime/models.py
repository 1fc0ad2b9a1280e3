"""Runtime dependency bundle, per-run context and LangGraph state types.

- ``EngineDeps`` collects the services the graph needs. Everything is
  constructed explicitly and injected; nothing is a module-level singleton.
- ``RunContext`` is scoped to one ``Supervisor.execute`` call. It carries the
  resume reply, the trace buffer and the interrupt-notification latch.
- ``_GraphState`` is the LangGraph channel schema wrapping ``GraphState``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, TypedDict

from ..constraints.manager import ExecutionConstraintsManager
from ..policy.hitl_policy import HitlPolicy
from ..repos.interfaces import CheckpointStore
from ..schemas.config import ExecutionConfig
from ..schemas.domain import GraphState
from ..schemas.streaming import TraceEvent
from ..tools.registry import ToolRegistry
from .interfaces import MemoryRetriever, ModelCaller, NotificationSink


@dataclass(frozen=True)
class EngineDeps:
    """Dependency bundle for ``ExecutionGraph``.

    Typically built by ``engine.factory.build_supervisor``; tests construct it
    directly with in-memory fakes.
    """

    model: ModelCaller
    store: CheckpointStore
    tools: ToolRegistry
    config: ExecutionConfig
    constraints: ExecutionConstraintsManager
    hitl: HitlPolicy

    notifier: Optional[NotificationSink] = None
    memory: Optional[MemoryRetriever] = None


@dataclass
class RunContext:
    run_id: str
    thread_id: str
    user_id: Optional[str] = None
    agent_id: Optional[str] = None
    resume: Optional[str] = None

    interrupt_handled: bool = False
    last_checkpoint_id: Optional[str] = None
    traces: List[TraceEvent] = field(default_factory=list)

    def trace(self, event: TraceEvent) -> None:
        self.traces.append(event)

    def drain(self) -> List[TraceEvent]:
        out, self.traces = self.traces, []
        return out

    def take_resume(self) -> Optional[str]:
        """Hand the resume reply to the paused node exactly once."""
        value, self.resume = self.resume, None
        return value


class _GraphState(TypedDict):
    graph: GraphState
