"""Interrupt detection and resume-vs-fresh entry.

``is_interrupt`` is a pure predicate over checkpoint shape. ``prepare_entry``
decides how a caller's text enters the graph:

- latest checkpoint interrupted: the text becomes a :class:`ResumeCommand`
  fed to the node that paused, and the graph counters are left untouched;
- latest checkpoint present but not interrupted (crash recovery): tool calls
  that were dispatched but never finished are marked cancelled, the text is
  appended as a user message and the graph re-enters at the planner;
- no checkpoint: a fresh ``GraphState`` seeded with the text.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..schemas.domain import (
    Checkpoint,
    ExecuteRequest,
    GraphState,
    Message,
    MessageRole,
    NodeId,
    PendingTask,
    StepStatus,
    Task,
)

CANCELLED_STEP_ERROR = "cancelled before the tool call finished"


@dataclass(frozen=True)
class ResumeCommand:
    resume: str
    node: NodeId


def _awaits_human(pending: PendingTask) -> bool:
    return bool(pending.interrupts) and pending.interrupts[0].kind == "human_input"


def is_interrupt(checkpoint: Optional[Checkpoint]) -> bool:
    if checkpoint is None:
        return False
    return any(_awaits_human(p) for p in checkpoint.pending_tasks)


def build_resume_command(checkpoint: Checkpoint, reply: str) -> ResumeCommand:
    paused = next((p for p in checkpoint.pending_tasks if _awaits_human(p)), None)
    if paused is None:
        raise ValueError(f"checkpoint {checkpoint.checkpoint_id} is not interrupted")
    return ResumeCommand(resume=reply, node=paused.node)


def _cancel_unfinished_steps(state: GraphState) -> Tuple[List[Task], List[Message]]:
    """Close out steps left pending by a run that stopped inside ToolRunner."""
    task = state.active_task
    if task is None:
        return list(state.tasks), []
    steps = []
    notes: List[Message] = []
    for step in task.steps:
        if step.tool.status == StepStatus.pending:
            tool = step.tool.model_copy(update={"status": StepStatus.cancelled, "error": CANCELLED_STEP_ERROR})
            step = step.model_copy(update={"tool": tool})
            notes.append(
                Message(
                    role=MessageRole.tool,
                    tool_call_id=tool.call_id,
                    name=tool.name,
                    content=f"error: {CANCELLED_STEP_ERROR}",
                    metadata={"status": StepStatus.cancelled.value},
                )
            )
        steps.append(step)
    if not notes:
        return list(state.tasks), []
    return state.with_active_task(task.model_copy(update={"steps": steps})), notes


def prepare_entry(
    checkpoint: Optional[Checkpoint], request: ExecuteRequest
) -> Tuple[GraphState, Optional[ResumeCommand]]:
    if checkpoint is not None and is_interrupt(checkpoint):
        command = build_resume_command(checkpoint, request.input)
        state = checkpoint.graph_state.model_copy(update={"next_node": command.node, "final_message": None})
        return state, command

    user_message = Message(role=MessageRole.user, content=request.input)
    if checkpoint is not None:
        gs = checkpoint.graph_state
        tasks, notes = _cancel_unfinished_steps(gs)
        state = gs.model_copy(
            update={
                "tasks": tasks,
                "messages": gs.with_messages(*notes, user_message),
                "next_node": NodeId.planner,
                "error": None,
                "final_message": None,
                "forced": None,
                "pending_calls": [],
            }
        )
        return state, None

    return GraphState(thread_id=request.thread_id, messages=[user_message]), None
