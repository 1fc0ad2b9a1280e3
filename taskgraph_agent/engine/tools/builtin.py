"""Built-in tool specs and the state-inspection tool.

``create_task``, ``response_task``, ``end_task`` and ``block_task`` are decision
tools: they are bound to the model but interpreted by the graph nodes instead of
being dispatched. ``inspect_execution_state`` is a real tool and is what the
executor substitutes for rejected calls.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..constraints.manager import END_TASK
from .base import ToolContext, ToolSpec

CREATE_TASK = "create_task"
RESPONSE_TASK = "response_task"
BLOCK_TASK = "block_task"
INSPECT_EXECUTION_STATE = "inspect_execution_state"

DECISION_TOOLS = frozenset({CREATE_TASK, RESPONSE_TASK, END_TASK, BLOCK_TASK})


class CreateTaskArgs(BaseModel):
    text: str = Field(min_length=1, description="What the task must accomplish")
    reasoning: str = ""
    plan: str = ""
    criticism: str = ""
    speak: str = ""


class ResponseTaskArgs(BaseModel):
    text: str = ""
    reasoning: str = ""
    criticism: str = ""
    speak: str = ""
    uncertainty: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class EndTaskArgs(BaseModel):
    summary: str = Field(default="", description="Result reported to the user")
    objective_complete: bool = Field(default=True, description="False when more tasks are needed")
    uncertainty: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class BlockTaskArgs(BaseModel):
    reason: str = Field(min_length=1, description="Why the task cannot proceed without a human")


class InspectExecutionStateArgs(BaseModel):
    blocked_tool: Optional[str] = None
    reason: Optional[str] = None


CREATE_TASK_SPEC = ToolSpec(
    name=CREATE_TASK,
    description="Create the next task toward the objective.",
    input_schema=CreateTaskArgs,
)
RESPONSE_TASK_SPEC = ToolSpec(
    name=RESPONSE_TASK,
    description="Record your thoughts about the current step.",
    input_schema=ResponseTaskArgs,
)
END_TASK_SPEC = ToolSpec(
    name=END_TASK,
    description="Finish the current task and report its result.",
    input_schema=EndTaskArgs,
)
BLOCK_TASK_SPEC = ToolSpec(
    name=BLOCK_TASK,
    description="Stop and ask a human for help when the task cannot proceed.",
    input_schema=BlockTaskArgs,
)
EXECUTOR_DECISION_SPECS = (RESPONSE_TASK_SPEC, END_TASK_SPEC, BLOCK_TASK_SPEC)


class InspectExecutionStateTool:
    """Report the active task, its steps and the remaining step budget."""

    spec = ToolSpec(
        name=INSPECT_EXECUTION_STATE,
        description="Inspect the current task, its steps and the tool-call history.",
        input_schema=InspectExecutionStateArgs,
        outputs=frozenset({"execution_state"}),
    )

    async def execute(self, ctx: ToolContext, *, args: Dict[str, Any]) -> Dict[str, Any]:
        state = ctx.state
        task = state.active_task
        report: Dict[str, Any] = {
            "task": None,
            "execution_state": state.execution_state.model_dump(mode="json"),
            "remaining_graph_steps": max(ctx.config.max_graph_steps - state.current_graph_step, 0),
            "retry": state.retry,
        }
        if task is not None:
            report["task"] = {
                "id": task.id,
                "text": task.text,
                "status": task.status.value,
                "steps": [
                    {"tool": s.tool.name, "status": s.tool.status.value, "result": s.tool.result, "error": s.tool.error}
                    for s in task.steps
                ],
            }
        if args.get("blocked_tool"):
            report["blocked"] = {"tool": args["blocked_tool"], "reason": args.get("reason")}
        return report
