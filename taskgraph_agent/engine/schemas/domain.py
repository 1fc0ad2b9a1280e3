"""Task/Step data model and the checkpointed graph state."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union
from uuid import uuid4

from pydantic import Field

from .base import BaseSchema, FrozenSchema


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class NodeId(str, Enum):
    planner = "planner"
    executor = "executor"
    tool_runner = "tool_runner"
    validator = "validator"
    human_handler = "human_handler"
    end_graph = "end_graph"


class TaskStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"


class StepStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


class RiskLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class MessageRole(str, Enum):
    system = "system"
    user = "user"
    assistant = "assistant"
    tool = "tool"


class ErrorType(str, Enum):
    validation = "ValidationError"
    token_limit = "TokenLimitError"
    tool_execution = "ToolExecutionError"
    timeout = "TimeoutError"
    interrupt_unhandled = "InterruptUnhandledError"
    execution = "ExecutionError"


class Thoughts(BaseSchema):
    text: str = ""
    reasoning: str = ""
    criticism: str = ""
    speak: str = ""


class ToolCall(BaseSchema):
    """A tool call proposed by the model; ``id`` correlates it with its result."""

    id: str = Field(default_factory=_new_id)
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ToolCallRecord(BaseSchema):
    call_id: str
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    error: Optional[str] = None
    status: StepStatus = StepStatus.pending


class Step(BaseSchema):
    id: str = Field(default_factory=_new_id)
    thoughts: Thoughts = Field(default_factory=Thoughts)
    tool: ToolCallRecord


class Task(BaseSchema):
    id: str = Field(default_factory=_new_id)
    text: str
    reasoning: str = ""
    plan: str = ""
    criticism: str = ""
    speak: str = ""
    steps: List[Step] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.pending

    def with_steps(self, *steps: Step) -> "Task":
        return self.model_copy(update={"steps": [*self.steps, *steps]})

    def with_status(self, status: TaskStatus) -> "Task":
        return self.model_copy(update={"status": status})

    def replace_step(self, step: Step) -> "Task":
        return self.model_copy(update={"steps": [step if s.id == step.id else s for s in self.steps]})


class ExecutionState(FrozenSchema):
    """Rolling tool-call bookkeeping for the active task.

    ``tool_call_history`` is a sliding window, never a full log; its bound is
    enforced by the constraints manager that produces every new value.
    """

    last_tool_call: Optional[str] = None
    tool_call_history: Tuple[str, ...] = ()
    task_completion_attempts: int = 0
    step_in_progress: bool = False


class ErrorContext(BaseSchema):
    type: ErrorType
    message: str
    source: str
    timestamp: datetime = Field(default_factory=_utc_now)


class Message(BaseSchema):
    id: str = Field(default_factory=_new_id)
    role: MessageRole
    content: Union[str, List[Dict[str, Any]], None] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Interrupt(BaseSchema):
    """A paused-for-human-input request; ``value`` is the structured prompt."""

    thread_id: str
    value: Dict[str, Any] = Field(default_factory=dict)
    kind: Literal["human_input"] = "human_input"


class PendingTask(BaseSchema):
    """A node continuation queued in a checkpoint."""

    node: NodeId
    interrupts: List[Interrupt] = Field(default_factory=list)


class GraphState(BaseSchema):
    """The unit of checkpointing.

    Transitions never mutate a state in place; node handlers return a copy.
    ``next_node`` is the routing decision taken by the node that produced this
    state and is where a resumed run re-enters.
    """

    thread_id: str
    messages: List[Message] = Field(default_factory=list)
    tasks: List[Task] = Field(default_factory=list)
    current_graph_step: int = 0
    current_task_index: int = 0
    execution_state: ExecutionState = Field(default_factory=ExecutionState)
    error: Optional[ErrorContext] = None
    retry: int = 0

    last_node: Optional[NodeId] = None
    next_node: NodeId = NodeId.planner
    pending_calls: List[ToolCall] = Field(default_factory=list)
    pending_thoughts: Thoughts = Field(default_factory=Thoughts)
    human_request: Optional[Dict[str, Any]] = None
    interrupt: Optional[Interrupt] = None
    approved_calls: List[ToolCall] = Field(default_factory=list)
    final_message: Optional[str] = None
    forced: Optional[str] = None

    @property
    def active_task(self) -> Optional[Task]:
        if 0 <= self.current_task_index < len(self.tasks):
            return self.tasks[self.current_task_index]
        return None

    def with_active_task(self, task: Task) -> List[Task]:
        """Return the task list with the active task replaced."""
        tasks = list(self.tasks)
        tasks[self.current_task_index] = task
        return tasks

    def with_messages(self, *messages: Message) -> List[Message]:
        return [*self.messages, *messages]


class Checkpoint(BaseSchema):
    thread_id: str
    checkpoint_id: str = Field(default_factory=_new_id)
    graph_state: GraphState
    pending_tasks: List[PendingTask] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)

    @classmethod
    def from_state(cls, thread_id: str, state: GraphState) -> "Checkpoint":
        """Snapshot a state; a pending interrupt is queued as a human-handler continuation."""
        pending: List[PendingTask] = []
        if state.interrupt is not None:
            pending.append(PendingTask(node=NodeId.human_handler, interrupts=[state.interrupt]))
        return cls(thread_id=thread_id, graph_state=state, pending_tasks=pending)

    @property
    def graph_step(self) -> int:
        return self.graph_state.current_graph_step


class ExecuteRequest(BaseSchema):
    """One caller turn: fresh input, or the reply to a pending interrupt."""

    thread_id: str
    input: str
    user_id: Optional[str] = None
    agent_id: Optional[str] = None
