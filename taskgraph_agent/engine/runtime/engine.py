"""LangGraph execution graph.

``ExecutionGraph`` drives one thread's ``GraphState`` through the
Planner -> Executor <-> ToolRunner -> Validator cycle, with HumanHandler and
EndGraph as the pausing and terminal states.

Execution model
---------------

- Every node is registered from one exhaustive ``NodeId -> handler`` table;
  construction fails if a node id has no handler.
- Routing is data-driven: each handler writes ``GraphState.next_node`` and a
  single router maps it to the LangGraph edge. The entry edge uses the same
  router, so a resumed run re-enters the node recorded in its checkpoint.
- Each node update advances ``current_graph_step`` by exactly one.

Commit order per transition
---------------------------

1. The checkpoint is written (and acknowledged).
2. If the committed state is interrupted and this run has not yet notified,
   the notification sink is called once; its failures are logged, never raised.
3. Buffered model-call traces are projected into ``ChunkOutput`` values and
   emitted.

After the graph reaches END the driver emits the run's single final chunk.
Cancellation propagates out of ``run``; a step cancelled in flight writes no
checkpoint.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, START, StateGraph

from ...core import monitoring
from ..errors import EngineError, error_transition
from ..schemas.domain import Checkpoint, GraphState, NodeId
from ..schemas.streaming import ChunkOutput, TraceEvent, TraceKind
from .emitter import StreamingEventEmitter
from .interrupt import is_interrupt
from .models import EngineDeps, RunContext, _GraphState
from .nodes import GraphNodes

logger = logging.getLogger(__name__)

NodeHandler = Callable[[GraphState, RunContext], Awaitable[GraphState]]
Emit = Callable[[ChunkOutput], Awaitable[None]]


def _route(state: _GraphState) -> str:
    return state["graph"].next_node.value


class ExecutionGraph:
    """Orchestrates one thread's run over a compiled LangGraph ``StateGraph``."""

    def __init__(self, deps: EngineDeps, *, emitter: Optional[StreamingEventEmitter] = None) -> None:
        self._deps = deps
        self._nodes = GraphNodes(deps)
        self._emitter = emitter or StreamingEventEmitter()
        self._handlers: Dict[NodeId, NodeHandler] = {
            NodeId.planner: self._nodes.planner,
            NodeId.executor: self._nodes.executor,
            NodeId.tool_runner: self._nodes.tool_runner,
            NodeId.validator: self._nodes.validator,
            NodeId.human_handler: self._nodes.human_handler,
            NodeId.end_graph: self._nodes.end_graph,
        }
        missing = set(NodeId) - set(self._handlers)
        if missing:
            raise RuntimeError(f"no handler for node(s): {sorted(n.value for n in missing)}")
        self._graph = self._build_graph()

    @property
    def deps(self) -> EngineDeps:
        return self._deps

    def _build_graph(self) -> Any:
        """Build and compile the LangGraph state machine."""
        g: StateGraph = StateGraph(_GraphState)
        for node_id, handler in self._handlers.items():
            g.add_node(node_id.value, self._wrap(node_id, handler))

        path_map = {n.value: n.value for n in NodeId}
        g.add_conditional_edges(START, _route, path_map)
        for node_id in NodeId:
            if node_id is NodeId.end_graph:
                g.add_edge(node_id.value, END)
            else:
                g.add_conditional_edges(node_id.value, _route, path_map)
        return g.compile()

    def _wrap(self, node_id: NodeId, handler: NodeHandler):
        max_steps = self._deps.config.max_graph_steps

        async def run_node(state: _GraphState, config: RunnableConfig) -> Dict[str, Any]:
            ctx: RunContext = config["configurable"]["run_context"]
            current = state["graph"]
            ctx.trace(TraceEvent(kind=TraceKind.node_started, node=node_id))
            with monitoring.span("taskgraph.node", node=node_id.value, thread_id=current.thread_id):
                if node_id is not NodeId.end_graph and current.current_graph_step >= max_steps:
                    logger.warning(f"thread {current.thread_id} reached max_graph_steps={max_steps}")
                    result = self._nodes.force_end(current, "max_graph_steps")
                else:
                    try:
                        result = await handler(current, ctx)
                    except EngineError as exc:
                        logger.error(f"{node_id.value} failed on thread {current.thread_id}: {exc}")
                        result = error_transition(current, exc, node_id)
            result = result.model_copy(
                update={"current_graph_step": current.current_graph_step + 1, "last_node": node_id}
            )
            ctx.trace(TraceEvent(kind=TraceKind.node_finished, node=node_id, data={"next": result.next_node.value}))
            return {"graph": result}

        run_node.__name__ = f"node_{node_id.value}"
        return run_node

    async def run(self, state: GraphState, ctx: RunContext, emit: Emit) -> GraphState:
        """Drive the graph until END, committing and emitting every transition.

        Args:
            state: Entry state; ``state.next_node`` is the first node to run.
            ctx: Run-scoped context (resume reply, traces, notification latch).
            emit: Awaitable sink for ``ChunkOutput`` values, in commit order.

        Returns:
            The final committed ``GraphState``.
        """
        config: RunnableConfig = {
            "configurable": {"thread_id": ctx.thread_id, "run_context": ctx},
            "recursion_limit": self._deps.config.recursion_limit,
        }
        final = state
        logger.info(f"run {ctx.run_id} on thread {ctx.thread_id} entering {state.next_node.value}")
        with monitoring.span("taskgraph.run", run_id=ctx.run_id, thread_id=ctx.thread_id):
            async for update in self._graph.astream({"graph": state}, config=config, stream_mode="updates"):
                for payload in update.values():
                    if not payload or "graph" not in payload:
                        continue
                    final = payload["graph"]
                    await self._commit(final, ctx, emit)
            await emit(self._emitter.final_chunk(final, ctx=ctx, checkpoint_id=ctx.last_checkpoint_id))
        logger.info(
            f"run {ctx.run_id} finished: step={final.current_graph_step} "
            f"error={final.error.type.value if final.error else None} interrupted={final.interrupt is not None}"
        )
        return final

    async def _commit(self, state: GraphState, ctx: RunContext, emit: Emit) -> None:
        checkpoint_id = await self._deps.store.write(ctx.thread_id, state)
        ctx.last_checkpoint_id = checkpoint_id

        if not ctx.interrupt_handled and is_interrupt(Checkpoint.from_state(ctx.thread_id, state)):
            ctx.interrupt_handled = True
            await self._notify(state, ctx, checkpoint_id)

        for chunk in self._emitter.project(ctx.drain(), ctx=ctx, state=state, checkpoint_id=checkpoint_id):
            await emit(chunk)

    async def _notify(self, state: GraphState, ctx: RunContext, checkpoint_id: str) -> None:
        if self._deps.notifier is None:
            return
        payload = {
            "thread_id": ctx.thread_id,
            "run_id": ctx.run_id,
            "checkpoint_id": checkpoint_id,
            "interrupt": state.interrupt.value if state.interrupt else {},
        }
        try:
            await self._deps.notifier.notify(ctx.user_id, ctx.agent_id, payload)
        except Exception:
            # the interrupt is already committed; a failed notification must not end the run
            logger.exception(f"notification for thread {ctx.thread_id} checkpoint {checkpoint_id} failed")
