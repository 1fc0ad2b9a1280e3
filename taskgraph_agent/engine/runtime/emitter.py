"""Streaming event emitter.

Projects the graph's trace stream into ``ChunkOutput`` values. Only model-call
start/finish traces are forwarded; every other trace kind is bookkeeping and is
dropped. The emitter never reorders: chunks come out in the order traces were
recorded, one committed transition at a time.
"""

from __future__ import annotations

from typing import Any, List, Optional

from ..schemas.domain import GraphState, NodeId
from ..schemas.streaming import ChunkMetadata, ChunkOutput, EventType, TraceEvent, TraceKind
from .models import RunContext

_FORWARDED = {
    TraceKind.model_call_started: EventType.chat_model_start,
    TraceKind.model_call_finished: EventType.chat_model_end,
}


def extract_message_text(content: Any) -> Optional[str]:
    """Plain-text content, or the first text-typed part of multi-part content."""
    if isinstance(content, str):
        return content or None
    if isinstance(content, list):
        for part in content:
            if isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str):
                return part["text"]
    return None


class StreamingEventEmitter:
    def project(
        self,
        events: List[TraceEvent],
        *,
        ctx: RunContext,
        state: GraphState,
        checkpoint_id: Optional[str],
    ) -> List[ChunkOutput]:
        chunks: List[ChunkOutput] = []
        for event in events:
            chunk = self.to_chunk(event, ctx=ctx, state=state, checkpoint_id=checkpoint_id)
            if chunk is not None:
                chunks.append(chunk)
        return chunks

    def to_chunk(
        self,
        event: TraceEvent,
        *,
        ctx: RunContext,
        state: GraphState,
        checkpoint_id: Optional[str],
    ) -> Optional[ChunkOutput]:
        event_type = _FORWARDED.get(event.kind)
        if event_type is None:
            return None
        tools = None
        message = None
        if event.kind == TraceKind.model_call_finished:
            tools = list(event.tool_calls) or None
            message = extract_message_text(event.content)
        return ChunkOutput(
            event=event_type,
            run_id=ctx.run_id,
            thread_id=ctx.thread_id,
            checkpoint_id=checkpoint_id,
            task_id=event.task_id,
            step_id=event.step_id,
            from_=event.node,
            tools=tools,
            message=message,
            metadata=ChunkMetadata(
                retry=state.retry,
                graph_step=state.current_graph_step,
                node=event.node,
                usage=event.data.get("usage"),
            ),
            timestamp=event.timestamp,
        )

    def final_chunk(self, state: GraphState, *, ctx: RunContext, checkpoint_id: Optional[str]) -> ChunkOutput:
        task = state.active_task
        return ChunkOutput(
            event=EventType.graph_end,
            run_id=ctx.run_id,
            thread_id=ctx.thread_id,
            checkpoint_id=checkpoint_id,
            task_id=task.id if task is not None else None,
            from_=NodeId.end_graph,
            message=state.final_message,
            metadata=ChunkMetadata(
                final=True,
                error=state.error,
                retry=state.retry,
                graph_step=state.current_graph_step,
                node=NodeId.end_graph,
                interrupted=state.interrupt is not None,
                forced=state.forced,
            ),
        )

    def cancelled_chunk(self, *, ctx: RunContext) -> ChunkOutput:
        return ChunkOutput(
            event=EventType.graph_end,
            run_id=ctx.run_id,
            thread_id=ctx.thread_id,
            checkpoint_id=ctx.last_checkpoint_id,
            from_=NodeId.end_graph,
            message="Run cancelled.",
            metadata=ChunkMetadata(final=True, node=NodeId.end_graph, cancelled=True),
        )
