from __future__ import annotations

from typing import FrozenSet, List, Optional

import pytest

from taskgraph_agent.engine.constraints.manager import END_TASK, ExecutionConstraintsManager
from taskgraph_agent.engine.schemas.config import ExecutionConfig, ToolConstraint
from taskgraph_agent.engine.schemas.domain import (
    ExecutionState,
    GraphState,
    Step,
    StepStatus,
    Task,
    TaskStatus,
    ToolCall,
    ToolCallRecord,
)


def _step(name: str = "check_balance", status: StepStatus = StepStatus.completed) -> Step:
    return Step(tool=ToolCallRecord(call_id=f"call-{name}", name=name, status=status))


def _state(
    *,
    steps: int = 1,
    status: TaskStatus = TaskStatus.pending,
    execution_state: Optional[ExecutionState] = None,
) -> GraphState:
    task = Task(text="check balance", steps=[_step() for _ in range(steps)], status=status)
    return GraphState(thread_id="t-1", tasks=[task], execution_state=execution_state or ExecutionState())


@pytest.fixture
def manager() -> ExecutionConstraintsManager:
    return ExecutionConstraintsManager(history_window=5)


def test_end_task_rejected_when_task_already_completed(manager: ExecutionConstraintsManager) -> None:
    d = manager.validate_tool_call(END_TASK, _state(status=TaskStatus.completed))
    assert d.allowed is False
    assert d.reason == "already completed"


def test_end_task_rejected_after_two_completion_attempts(manager: ExecutionConstraintsManager) -> None:
    es = ExecutionState(last_tool_call="check_balance", task_completion_attempts=2)
    d = manager.validate_tool_call(END_TASK, _state(execution_state=es))
    assert d.allowed is False
    assert d.reason == "max completion attempts"


def test_end_task_rejected_without_any_step(manager: ExecutionConstraintsManager) -> None:
    d = manager.validate_tool_call(END_TASK, _state(steps=0))
    assert d.allowed is False
    assert d.reason == "cannot complete without acting"


@pytest.mark.parametrize("status", [StepStatus.pending, StepStatus.cancelled])
def test_end_task_rejected_when_no_step_ran(manager: ExecutionConstraintsManager, status: StepStatus) -> None:
    task = Task(text="check balance", steps=[_step(status=status)])
    state = GraphState(thread_id="t-1", tasks=[task], execution_state=ExecutionState(last_tool_call="check_balance"))
    d = manager.validate_tool_call(END_TASK, state)
    assert d.allowed is False
    assert d.reason == "cannot complete without acting"


def test_failed_step_counts_as_acting(manager: ExecutionConstraintsManager) -> None:
    task = Task(text="check balance", steps=[_step(status=StepStatus.failed)])
    state = GraphState(thread_id="t-1", tasks=[task], execution_state=ExecutionState(last_tool_call="check_balance"))
    assert manager.validate_tool_call(END_TASK, state).allowed is True


def test_end_task_rejected_when_last_call_was_end_task(manager: ExecutionConstraintsManager) -> None:
    es = ExecutionState(last_tool_call=END_TASK, task_completion_attempts=1)
    d = manager.validate_tool_call(END_TASK, _state(execution_state=es))
    assert d.allowed is False
    assert d.reason == "already attempted to end"


def test_end_task_allowed_after_acting(manager: ExecutionConstraintsManager) -> None:
    es = ExecutionState(last_tool_call="check_balance", tool_call_history=("check_balance",))
    d = manager.validate_tool_call(END_TASK, _state(execution_state=es))
    assert d.allowed is True
    assert d.reason is None


def test_first_matching_rule_wins(manager: ExecutionConstraintsManager) -> None:
    es = ExecutionState(last_tool_call=END_TASK, task_completion_attempts=3)
    d = manager.validate_tool_call(END_TASK, _state(steps=0, status=TaskStatus.completed, execution_state=es))
    assert d.reason == "already completed"


def test_end_task_never_succeeds_twice_in_a_row(manager: ExecutionConstraintsManager) -> None:
    state = _state(execution_state=ExecutionState(last_tool_call="check_balance"))
    assert manager.validate_tool_call(END_TASK, state).allowed is True

    es = manager.update_execution_state(state.execution_state, END_TASK)
    second = manager.validate_tool_call(END_TASK, state.model_copy(update={"execution_state": es}))
    assert second.allowed is False


def test_non_terminal_tools_allowed_by_default(manager: ExecutionConstraintsManager) -> None:
    assert manager.validate_tool_call("check_balance", _state(steps=0)).allowed is True


def test_history_is_a_sliding_window() -> None:
    manager = ExecutionConstraintsManager(history_window=5)
    es = manager.initial_state()
    for i in range(100):
        es = manager.update_execution_state(es, f"tool_{i}")
    assert len(es.tool_call_history) == 5
    assert es.tool_call_history == ("tool_95", "tool_96", "tool_97", "tool_98", "tool_99")
    assert es.last_tool_call == "tool_99"


def test_update_returns_new_value_and_counts_only_end_task(manager: ExecutionConstraintsManager) -> None:
    original = ExecutionState()
    after_tool = manager.update_execution_state(original, "check_balance")
    after_end = manager.update_execution_state(after_tool, END_TASK)

    assert original == ExecutionState()
    assert after_tool.task_completion_attempts == 0
    assert after_tool.step_in_progress is True
    assert after_end.task_completion_attempts == 1
    assert after_end.step_in_progress is False
    assert after_end.tool_call_history == ("check_balance", END_TASK)


def test_execution_state_is_immutable() -> None:
    es = ExecutionState()
    with pytest.raises(Exception):
        es.last_tool_call = "x"  # type: ignore[misc]


def test_history_window_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ExecutionConstraintsManager(history_window=0)


def test_from_config_carries_window_and_fallbacks() -> None:
    cfg = ExecutionConfig(history_window=3, tool_fallbacks={"swap": "quote"})
    manager = ExecutionConstraintsManager.from_config(cfg)
    assert manager.history_window == 3
    assert manager.tool_fallbacks == {"swap": "quote"}


class TestToolConstraints:
    def test_consecutive_duplicates_rejected(self) -> None:
        constraint = ToolConstraint(prevent_consecutive_duplicates=True)
        m = ExecutionConstraintsManager(tool_constraints={"swap": constraint})
        state = _state(execution_state=ExecutionState(last_tool_call="swap", tool_call_history=("swap",)))
        d = m.validate_tool_call("swap", state)
        assert d.allowed is False
        assert "consecutive duplicate" in (d.reason or "")

    def test_max_consecutive_calls(self) -> None:
        m = ExecutionConstraintsManager(tool_constraints={"poll": ToolConstraint(max_retries=2)})
        once = ExecutionState(last_tool_call="poll", tool_call_history=("a", "poll"))
        twice = ExecutionState(last_tool_call="poll", tool_call_history=("poll", "poll"))
        assert m.validate_tool_call("poll", _state(execution_state=once)).allowed is True
        assert m.validate_tool_call("poll", _state(execution_state=twice)).allowed is False

    def test_required_precedents(self) -> None:
        constraint = ToolConstraint(required_precedents=["quote"])
        m = ExecutionConstraintsManager(tool_constraints={"transfer": constraint})
        without = ExecutionState(last_tool_call="check_balance", tool_call_history=("check_balance",))
        with_quote = ExecutionState(last_tool_call="quote", tool_call_history=("check_balance", "quote"))
        d = m.validate_tool_call("transfer", _state(execution_state=without))
        assert d.allowed is False
        assert d.reason == "transfer requires quote first"
        assert m.validate_tool_call("transfer", _state(execution_state=with_quote)).allowed is True

    def test_blocked_after(self) -> None:
        constraint = ToolConstraint(blocked_after=["deploy_failed"])
        m = ExecutionConstraintsManager(tool_constraints={"deploy": constraint})
        es = ExecutionState(last_tool_call="deploy_failed", tool_call_history=("deploy_failed",))
        assert m.validate_tool_call("deploy", _state(execution_state=es)).allowed is False


class TestSubstitution:
    def test_inspection_tool_when_no_fallback(self, manager: ExecutionConstraintsManager) -> None:
        original = ToolCall(name=END_TASK, args={"summary": "done"})
        sub = manager.substitute(original, "cannot complete without acting", lambda _name: True)
        assert sub.call.name == "inspect_execution_state"
        assert sub.call.args == {"blocked_tool": END_TASK, "reason": "cannot complete without acting"}
        assert sub.message.startswith("Tool call blocked (cannot complete without acting).")
        assert sub.call.id != original.id

    def test_registered_fallback_receives_original_args(self) -> None:
        m = ExecutionConstraintsManager(tool_fallbacks={"swap": "quote"})
        sub = m.substitute(ToolCall(name="swap", args={"amount": 1}), "blocked", lambda name: name == "quote")
        assert sub.call.name == "quote"
        assert sub.call.args == {"amount": 1}

    def test_unregistered_fallback_uses_inspection(self) -> None:
        m = ExecutionConstraintsManager(tool_fallbacks={"swap": "quote"})
        sub = m.substitute(ToolCall(name="swap"), "blocked", lambda _name: False)
        assert sub.call.name == "inspect_execution_state"


class TestIndependence:
    OUTPUTS = {
        "check_balance": frozenset({"balance"}),
        "get_price": frozenset({"price"}),
        "convert": frozenset({"converted"}),
        "legacy": None,
    }

    def _outputs(self, name: str) -> Optional[FrozenSet[str]]:
        return self.OUTPUTS.get(name)

    def _independent(self, calls: List[ToolCall]) -> bool:
        return ExecutionConstraintsManager().are_independent(calls, self._outputs)

    def test_single_call_is_trivially_independent(self) -> None:
        assert self._independent([ToolCall(name="legacy")]) is True

    def test_disjoint_calls_are_independent(self) -> None:
        calls = [
            ToolCall(name="check_balance", args={"address": "0xA"}),
            ToolCall(name="get_price", args={"symbol": "ETH"}),
        ]
        assert self._independent(calls) is True

    def test_placeholder_reference_to_declared_output(self) -> None:
        calls = [
            ToolCall(name="check_balance", args={"address": "0xA"}),
            ToolCall(name="convert", args={"amount": "${balance}"}),
        ]
        assert self._independent(calls) is False

    def test_reference_to_another_call_id(self) -> None:
        first = ToolCall(id="c-1", name="check_balance", args={"address": "0xA"})
        second = ToolCall(name="convert", args={"source": {"from_call": "c-1"}})
        assert self._independent([first, second]) is False

    def test_undeclared_outputs_serialize_the_batch(self) -> None:
        calls = [ToolCall(name="check_balance", args={"address": "0xA"}), ToolCall(name="legacy")]
        assert self._independent(calls) is False

    def test_shared_declared_outputs_serialize_the_batch(self) -> None:
        calls = [
            ToolCall(name="check_balance", args={"address": "0xA"}),
            ToolCall(name="check_balance", args={"address": "0xB"}),
        ]
        assert self._independent(calls) is False
