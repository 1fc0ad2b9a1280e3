"""Execution constraints: approve, reject or substitute proposed tool calls.

Everything here is a pure function of its inputs. ``ExecutionState`` values are
immutable; :meth:`ExecutionConstraintsManager.update_execution_state` returns a
new value and never touches the one it was given.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, FrozenSet, Iterable, Mapping, Optional, Sequence

from ..schemas.config import ExecutionConfig, ToolConstraint
from ..schemas.domain import ExecutionState, GraphState, StepStatus, TaskStatus, ToolCall
from .models import ConstraintDecision, Substitution

logger = logging.getLogger(__name__)

END_TASK = "end_task"
MAX_COMPLETION_ATTEMPTS = 2

REASON_ALREADY_COMPLETED = "already completed"
REASON_MAX_ATTEMPTS = "max completion attempts"
REASON_NO_STEPS = "cannot complete without acting"
REASON_ALREADY_ENDING = "already attempted to end"

# steps that ran; pending and cancelled ones never reached a tool
_ACTED = frozenset({StepStatus.completed, StepStatus.failed})

_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")

OutputsLookup = Callable[[str], Optional[FrozenSet[str]]]


class ExecutionConstraintsManager:
    def __init__(
        self,
        *,
        history_window: int = 5,
        inspection_tool: str = "inspect_execution_state",
        tool_fallbacks: Optional[Mapping[str, str]] = None,
        tool_constraints: Optional[Mapping[str, ToolConstraint]] = None,
    ) -> None:
        if history_window < 1:
            raise ValueError("history_window must be >= 1")
        self.history_window = history_window
        self.inspection_tool = inspection_tool
        self.tool_fallbacks: Dict[str, str] = dict(tool_fallbacks or {})
        self.tool_constraints: Dict[str, ToolConstraint] = dict(tool_constraints or {})

    @classmethod
    def from_config(cls, config: ExecutionConfig) -> "ExecutionConstraintsManager":
        return cls(
            history_window=config.history_window,
            inspection_tool=config.inspection_tool,
            tool_fallbacks=config.tool_fallbacks,
            tool_constraints=config.tool_constraints,
        )

    @staticmethod
    def initial_state() -> ExecutionState:
        return ExecutionState()

    def should_allow_task_completion(self, state: GraphState) -> ConstraintDecision:
        """Completion rules for ``end_task``, evaluated in order; the first match wins."""
        task = state.active_task
        es = state.execution_state
        if task is not None and task.status == TaskStatus.completed:
            return ConstraintDecision.reject(REASON_ALREADY_COMPLETED)
        if es.task_completion_attempts >= MAX_COMPLETION_ATTEMPTS:
            return ConstraintDecision.reject(REASON_MAX_ATTEMPTS)
        if task is None or not any(s.tool.status in _ACTED for s in task.steps):
            return ConstraintDecision.reject(REASON_NO_STEPS)
        if es.last_tool_call == END_TASK:
            return ConstraintDecision.reject(REASON_ALREADY_ENDING)
        return ConstraintDecision.allow()

    def validate_tool_call(self, name: str, state: GraphState) -> ConstraintDecision:
        if name == END_TASK:
            return self.should_allow_task_completion(state)
        constraint = self.tool_constraints.get(name)
        if constraint is None:
            return ConstraintDecision.allow()
        return self._check_tool_constraint(name, constraint, state.execution_state)

    def _check_tool_constraint(self, name: str, c: ToolConstraint, es: ExecutionState) -> ConstraintDecision:
        if c.prevent_consecutive_duplicates and es.last_tool_call == name:
            return ConstraintDecision.reject(f"consecutive duplicate call to {name}")
        if c.max_retries > 0 and _trailing_count(es.tool_call_history, name) >= c.max_retries:
            return ConstraintDecision.reject(f"{name} called {c.max_retries} times in a row")
        missing = [p for p in c.required_precedents if p not in es.tool_call_history]
        if missing:
            return ConstraintDecision.reject(f"{name} requires {', '.join(missing)} first")
        if es.last_tool_call is not None and es.last_tool_call in c.blocked_after:
            return ConstraintDecision.reject(f"{name} is not allowed after {es.last_tool_call}")
        return ConstraintDecision.allow()

    def update_execution_state(self, state: ExecutionState, name: str) -> ExecutionState:
        history = (*state.tool_call_history, name)[-self.history_window :]
        return ExecutionState(
            last_tool_call=name,
            tool_call_history=history,
            task_completion_attempts=state.task_completion_attempts + (1 if name == END_TASK else 0),
            step_in_progress=name != END_TASK,
        )

    def substitute(self, call: ToolCall, reason: str, is_available: Callable[[str], bool]) -> Substitution:
        """Replace a rejected call with its configured fallback or the state-inspection tool.

        A fallback receives the original arguments; the inspection tool receives
        the blocked tool name and the rejection reason.
        """
        fallback = self.tool_fallbacks.get(call.name)
        if fallback and fallback != call.name and is_available(fallback):
            replacement = ToolCall(name=fallback, args=dict(call.args))
            alternative = f"Falling back to {fallback}."
        else:
            replacement = ToolCall(name=self.inspection_tool, args={"blocked_tool": call.name, "reason": reason})
            alternative = f"Inspecting execution state with {self.inspection_tool} instead."
        logger.debug(f"substituting {call.name} -> {replacement.name}: {reason}")
        return Substitution(
            original=call,
            call=replacement,
            reason=reason,
            message=f"Tool call blocked ({reason}). {alternative}",
        )

    def are_independent(self, calls: Sequence[ToolCall], outputs_of: OutputsLookup) -> bool:
        """True only when no call consumes another's id or declared outputs.

        A tool with undeclared outputs makes the batch ambiguous, so it is
        serialized.
        """
        if len(calls) < 2:
            return True
        produced: Dict[str, FrozenSet[str]] = {}
        for call in calls:
            declared = outputs_of(call.name)
            if declared is None:
                return False
            produced[call.id] = frozenset(declared) | {call.id}
        for a in calls:
            for b in calls:
                if a.id == b.id:
                    continue
                if (produced[a.id] - {a.id}) & (produced[b.id] - {b.id}):
                    return False
                if _references(b.args, produced[a.id]):
                    return False
        return True


def _trailing_count(history: Iterable[str], name: str) -> int:
    count = 0
    for entry in reversed(tuple(history)):
        if entry != name:
            break
        count += 1
    return count


def _references(value: Any, names: FrozenSet[str]) -> bool:
    if isinstance(value, str):
        if value in names:
            return True
        return any(m in names for m in _PLACEHOLDER.findall(value))
    if isinstance(value, Mapping):
        return any(k in names or _references(v, names) for k, v in value.items())
    if isinstance(value, (list, tuple, set, frozenset)):
        return any(_references(v, names) for v in value)
    return False
