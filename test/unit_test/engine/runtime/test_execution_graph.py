from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Sequence, Tuple

import pytest

from engine_fakes import (
    ModelStep,
    RecordingNotifier,
    ScriptedModel,
    StaticMemory,
    balance_tool,
    call,
    create_task,
    respond,
)
from taskgraph_agent.engine.factory import build_engine_deps
from taskgraph_agent.engine.repos.memory import InMemoryCheckpointStore
from taskgraph_agent.engine.runtime.engine import ExecutionGraph
from taskgraph_agent.engine.runtime.interrupt import prepare_entry
from taskgraph_agent.engine.runtime.models import EngineDeps, RunContext
from taskgraph_agent.engine.schemas.config import ExecutionConfig
from taskgraph_agent.engine.schemas.domain import (
    ErrorType,
    ExecuteRequest,
    GraphState,
    MessageRole,
    NodeId,
    RiskLevel,
    StepStatus,
    TaskStatus,
)
from taskgraph_agent.engine.schemas.streaming import ChunkOutput, EventType

THREAD = "t-1"


class RecordingStore(InMemoryCheckpointStore):
    """Keeps the order checkpoints were written in."""

    def __init__(self) -> None:
        super().__init__()
        self.written: List[Tuple[int, Optional[NodeId]]] = []

    async def write(self, thread_id: str, state: GraphState) -> str:
        self.written.append((state.current_graph_step, state.last_node))
        return await super().write(thread_id, state)


def _deps(
    script: Sequence[ModelStep],
    *,
    tools: Sequence[Any] = (),
    config: Optional[ExecutionConfig] = None,
    **kwargs: Any,
) -> Tuple[EngineDeps, ScriptedModel, RecordingStore]:
    model = ScriptedModel(script)
    store = RecordingStore()
    deps = build_engine_deps(model=model, store=store, tools=tools, config=config, **kwargs)
    return deps, model, store


async def _run(deps: EngineDeps, text: str) -> Tuple[GraphState, List[ChunkOutput], RunContext]:
    checkpoint = await deps.store.get_latest(THREAD)
    state, command = prepare_entry(checkpoint, ExecuteRequest(thread_id=THREAD, input=text, user_id="u-1"))
    ctx = RunContext(
        run_id="r-1",
        thread_id=THREAD,
        user_id="u-1",
        resume=command.resume if command is not None else None,
    )
    chunks: List[ChunkOutput] = []

    async def emit(chunk: ChunkOutput) -> None:
        chunks.append(chunk)

    final = await ExecutionGraph(deps).run(state, ctx, emit)
    return final, chunks, ctx


async def test_balance_check_completes_with_two_steps() -> None:
    deps, model, store = _deps(
        [
            create_task(),
            respond(call("check_balance", address="0xA"), content="checking the wallet"),
            respond(call("end_task", summary="The balance is 42 ETH")),
        ],
        tools=[balance_tool()],
    )

    final, chunks, _ = await _run(deps, "What is the balance of 0xA?")

    assert final.error is None
    assert final.final_message == "The balance is 42 ETH"
    task = final.active_task
    assert task is not None
    assert task.status == TaskStatus.completed
    assert [s.tool.name for s in task.steps] == ["check_balance", "end_task"]
    assert all(s.tool.status == StepStatus.completed for s in task.steps)
    assert task.steps[0].thoughts.text == "checking the wallet"
    tool_messages = [m for m in final.messages if m.role == MessageRole.tool and m.name == "check_balance"]
    assert "42 ETH" in tool_messages[0].content
    assert model.remaining == 0

    finals = [c for c in chunks if c.metadata.final]
    assert len(finals) == 1
    assert chunks[-1] is finals[0]
    assert finals[0].event is EventType.graph_end
    assert finals[0].from_ is NodeId.end_graph
    assert finals[0].message == "The balance is 42 ETH"
    model_events = [c.event for c in chunks[:-1]]
    assert model_events == [EventType.chat_model_start, EventType.chat_model_end] * 3


async def test_checkpoint_steps_strictly_increase_one_per_node() -> None:
    deps, _, store = _deps(
        [create_task(), respond(call("check_balance", address="0xA")), respond(call("end_task", summary="done"))],
        tools=[balance_tool()],
    )
    final, _, _ = await _run(deps, "balance?")

    steps = [step for step, _ in store.written]
    assert steps == list(range(1, len(steps) + 1))
    assert [node for _, node in store.written] == [
        NodeId.planner,
        NodeId.executor,
        NodeId.tool_runner,
        NodeId.executor,
        NodeId.validator,
        NodeId.end_graph,
    ]
    assert final.current_graph_step == steps[-1]


async def test_chunks_carry_committed_checkpoint_ids() -> None:
    deps, _, store = _deps(
        [create_task(), respond(call("check_balance", address="0xA")), respond(call("end_task", summary="done"))],
        tools=[balance_tool()],
    )
    _, chunks, ctx = await _run(deps, "balance?")
    known = {c.checkpoint_id for c in await store.list(THREAD)}
    assert all(c.checkpoint_id in known for c in chunks)
    assert chunks[-1].checkpoint_id == ctx.last_checkpoint_id


async def test_premature_end_task_is_replaced_by_state_inspection() -> None:
    deps, _, _ = _deps(
        [
            create_task(),
            respond(call("end_task", summary="all done")),
            respond(call("end_task", summary="Inspected; nothing left to do")),
        ],
    )
    final, _, _ = await _run(deps, "tidy up")

    task = final.active_task
    assert task is not None
    assert task.status == TaskStatus.completed
    assert [s.tool.name for s in task.steps] == ["inspect_execution_state", "end_task"]
    inspect = task.steps[0].tool
    assert inspect.status == StepStatus.completed
    assert inspect.result["blocked"] == {"tool": "end_task", "reason": "cannot complete without acting"}
    notes = [m.content for m in final.messages if m.role == MessageRole.system]
    assert any(n.startswith("Tool call blocked (cannot complete without acting).") for n in notes)
    assert final.final_message == "Inspected; nothing left to do"


async def test_rejected_tool_falls_back_to_configured_alternative() -> None:
    cached = balance_tool("40 ETH", name="cached_balance")
    config = ExecutionConfig(
        tool_constraints={"check_balance": {"required_precedents": ["get_price"]}},
        tool_fallbacks={"check_balance": "cached_balance"},
    )
    deps, _, _ = _deps(
        [
            create_task(),
            respond(call("check_balance", address="0xA")),
            respond(call("end_task", summary="Last known balance is 40 ETH")),
        ],
        tools=[balance_tool(), cached],
        config=config,
    )
    final, _, _ = await _run(deps, "balance?")

    task = final.active_task
    assert task is not None
    [fallback, _] = task.steps
    assert fallback.tool.name == "cached_balance"
    assert fallback.tool.args == {"address": "0xA"}
    assert fallback.tool.result["balance"] == "40 ETH"
    notes = [m.content for m in final.messages if m.role == MessageRole.system]
    assert "Tool call blocked (check_balance requires get_price first). Falling back to cached_balance." in notes


async def test_tool_timeouts_past_retry_budget_end_with_timeout_error() -> None:
    config = ExecutionConfig(tool_call_timeout=0.05, max_retries=1)
    deps, model, _ = _deps(
        [
            create_task(),
            respond(call("check_balance", address="0xA")),
            respond(call("check_balance", address="0xA")),
        ],
        tools=[balance_tool(delay=1.0)],
        config=config,
    )
    final, chunks, _ = await _run(deps, "balance?")

    assert final.error is not None
    assert final.error.type is ErrorType.timeout
    assert final.error.source == NodeId.tool_runner.value
    assert final.active_task is not None and final.active_task.status == TaskStatus.failed
    assert chunks[-1].metadata.error is not None
    assert chunks[-1].metadata.error.type is ErrorType.timeout
    assert model.remaining == 0


async def test_token_limit_is_not_retried() -> None:
    deps, model, _ = _deps(
        [
            create_task(),
            RuntimeError("This model's maximum context length is 8192 tokens"),
            respond(call("end_task", summary="unreachable")),
        ],
    )
    final, chunks, _ = await _run(deps, "summarize everything")

    assert final.error is not None
    assert final.error.type is ErrorType.token_limit
    assert final.error.source == NodeId.executor.value
    assert model.remaining == 1
    assert chunks[-1].message.startswith("Execution failed (TokenLimitError)")


async def test_model_failure_is_retried_and_retry_resets_after_success() -> None:
    deps, model, _ = _deps(
        [
            create_task(),
            RuntimeError("provider flaked"),
            respond(call("check_balance", address="0xA")),
            respond(call("end_task", summary="42 ETH")),
        ],
        tools=[balance_tool()],
    )
    final, _, _ = await _run(deps, "balance?")
    assert final.error is None
    assert final.retry == 0
    assert final.final_message == "42 ETH"
    assert model.remaining == 0


async def test_model_failures_past_retry_budget_end_the_run() -> None:
    deps, _, _ = _deps(
        [create_task(), RuntimeError("down"), RuntimeError("still down")],
        config=ExecutionConfig(max_retries=1),
    )
    final, _, _ = await _run(deps, "balance?")
    assert final.error is not None
    assert final.error.type is ErrorType.execution
    assert "still down" in final.error.message


async def test_decision_without_tool_call_is_retried() -> None:
    deps, _, _ = _deps(
        [
            create_task(),
            respond(content="let me think"),
            respond(call("check_balance", address="0xA")),
            respond(call("end_task", summary="ok")),
        ],
        tools=[balance_tool()],
    )
    final, _, _ = await _run(deps, "balance?")
    assert final.error is None
    assert final.final_message == "ok"


async def test_invalid_tool_arguments_end_with_validation_error() -> None:
    deps, _, _ = _deps(
        [create_task(), respond(call("check_balance", wallet="0xA"))],
        tools=[balance_tool()],
    )
    final, _, _ = await _run(deps, "balance?")
    assert final.error is not None
    assert final.error.type is ErrorType.validation


async def test_planner_answers_directly_without_a_task() -> None:
    deps, _, _ = _deps([respond(content="Hello! Nothing to do.")])
    final, chunks, _ = await _run(deps, "hi")
    assert final.tasks == []
    assert final.final_message == "Hello! Nothing to do."
    assert chunks[-1].message == "Hello! Nothing to do."


async def test_planner_receives_retrieved_context() -> None:
    memory = StaticMemory(["wallet 0xA belongs to the treasury", "ETH is the native token"])
    deps, model, _ = _deps([respond(content="It is the treasury wallet.")], memory=memory)
    await _run(deps, "whose wallet is 0xA?")
    assert memory.queries == [("whose wallet is 0xA?", deps.config.retrieval_k)]
    messages, tool_names = model.calls[0]
    assert tool_names == ["create_task"]
    assert any("wallet 0xA belongs to the treasury" in str(m.content) for m in messages)


async def test_max_graph_steps_forces_end() -> None:
    deps, _, _ = _deps(
        [create_task(), respond(call("check_balance", address="0xA")), respond(call("end_task", summary="x"))],
        tools=[balance_tool()],
        config=ExecutionConfig(max_graph_steps=3),
    )
    final, chunks, _ = await _run(deps, "balance?")
    assert final.forced == "max_graph_steps"
    assert final.error is None
    assert final.final_message == "Reached maximum iterations (3). Ending workflow."
    assert chunks[-1].metadata.forced == "max_graph_steps"


async def test_max_iterations_forces_end() -> None:
    deps, model, _ = _deps(
        [create_task(), respond(call("check_balance", address="0xA"))],
        tools=[balance_tool()],
        config=ExecutionConfig(max_iterations=1),
    )
    final, _, _ = await _run(deps, "balance?")
    assert final.forced == "max_iterations"
    assert final.final_message == "Reached maximum iterations (1). Ending workflow."
    assert final.messages[-1].content == "Reached maximum iterations (1). Ending workflow."
    assert model.remaining == 0


async def test_block_task_pauses_and_resumes_with_counters_intact() -> None:
    notifier = RecordingNotifier()
    deps, model, store = _deps(
        [
            create_task(),
            respond(call("block_task", reason="Which wallet should I check?")),
            respond(call("check_balance", address="0xA")),
            respond(call("end_task", summary="The balance is 42 ETH")),
        ],
        tools=[balance_tool()],
        notifier=notifier,
    )

    paused, chunks, _ = await _run(deps, "check my balance")
    assert paused.interrupt is not None
    assert paused.error is None
    assert chunks[-1].metadata.interrupted is True
    assert chunks[-1].message == "Which wallet should I check?"
    assert len(notifier.calls) == 1
    user_id, _, payload = notifier.calls[0]
    assert user_id == "u-1"
    assert payload["thread_id"] == THREAD
    assert payload["interrupt"]["reason"] == "blocked"

    checkpoint = await store.get_latest(THREAD)
    assert checkpoint is not None
    paused_step = checkpoint.graph_step
    paused_retry = checkpoint.graph_state.retry
    writes_before = len(store.written)

    done, _, _ = await _run(deps, "Use 0xA")
    assert done.error is None
    assert done.interrupt is None
    assert done.final_message == "The balance is 42 ETH"
    first_resumed_step, first_resumed_node = store.written[writes_before]
    assert first_resumed_step == paused_step + 1
    assert first_resumed_node is NodeId.human_handler
    assert done.retry == paused_retry
    assert [s.tool.name for s in done.active_task.steps] == ["block_task", "check_balance", "end_task"]
    assert any(m.role == MessageRole.user and m.content == "Use 0xA" for m in done.messages)
    assert len(notifier.calls) == 1
    assert model.remaining == 0


async def test_interrupt_without_notifier_is_an_error() -> None:
    deps, _, _ = _deps([create_task(), respond(call("block_task", reason="stuck"))])
    final, _, _ = await _run(deps, "do it")
    assert final.error is not None
    assert final.error.type is ErrorType.interrupt_unhandled
    assert final.error.source == NodeId.human_handler.value
    assert final.interrupt is None


async def test_high_risk_tool_waits_for_approval() -> None:
    notifier = RecordingNotifier()
    calls: List[dict] = []
    deps, _, _ = _deps(
        [
            create_task(),
            respond(call("check_balance", address="0xA")),
            respond(call("check_balance", address="0xA")),
            respond(call("end_task", summary="approved and checked")),
        ],
        tools=[balance_tool(risk=RiskLevel.high, calls=calls)],
        config=ExecutionConfig(hitl_threshold=0.1),
        notifier=notifier,
    )
    paused, _, _ = await _run(deps, "balance?")
    assert paused.interrupt is not None
    assert paused.interrupt.value["reason"] == "approval"
    assert calls == []

    done, _, _ = await _run(deps, "approved")
    assert done.final_message == "approved and checked"
    assert calls == [{"address": "0xA"}]


async def test_reply_only_approves_the_calls_the_human_was_shown() -> None:
    notifier = RecordingNotifier()
    transfers: List[dict] = []
    deps, model, _ = _deps(
        [
            create_task("send funds"),
            respond(call("transfer", address="0xA")),
            respond(call("transfer", address="0xEVIL")),
        ],
        tools=[balance_tool(name="transfer", risk=RiskLevel.high, calls=transfers)],
        config=ExecutionConfig(hitl_threshold=0.1),
        notifier=notifier,
    )
    first, _, _ = await _run(deps, "send 1 ETH to 0xA")
    assert first.interrupt is not None
    assert first.interrupt.value["tool_calls"][0]["args"] == {"address": "0xA"}

    second, chunks, _ = await _run(deps, "NO, reject this transfer")
    assert transfers == []
    assert second.interrupt is not None
    assert second.interrupt.value["reason"] == "approval"
    assert second.interrupt.value["tool_calls"][0]["args"] == {"address": "0xEVIL"}
    assert second.approved_calls == []
    assert chunks[-1].metadata.interrupted is True
    assert len(notifier.calls) == 2
    assert model.remaining == 0


async def test_cancellation_writes_no_checkpoint_for_the_step_in_flight() -> None:
    async def _hang(messages: Any, tools: Any) -> Any:
        await asyncio.sleep(30)

    deps, _, store = _deps([create_task(), _hang])
    state, _ = prepare_entry(None, ExecuteRequest(thread_id=THREAD, input="balance?"))
    ctx = RunContext(run_id="r-1", thread_id=THREAD)
    chunks: List[ChunkOutput] = []

    async def emit(chunk: ChunkOutput) -> None:
        chunks.append(chunk)

    task = asyncio.create_task(ExecutionGraph(deps).run(state, ctx, emit))
    while not store.written:
        await asyncio.sleep(0.01)
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert [node for _, node in store.written] == [NodeId.planner]
    assert not any(c.metadata.final for c in chunks)


def test_graph_builds_with_every_node_registered() -> None:
    deps, _, _ = _deps([])
    graph = ExecutionGraph(deps)
    assert graph.deps is deps
