"""Supervisor façade over per-thread execution graphs.

``Supervisor.execute`` is the one entry point callers use:

1. Under a per-thread lock, cancel any in-flight run on the same thread (at most
   one active run per thread) and wait for it to stop. The lock is held through
   steps 2 and 3 until the new run is registered.
2. Read the thread's latest checkpoint and decide resume-vs-fresh input.
3. Start the graph on its own task, pushing ``ChunkOutput`` values into a
   bounded queue; the caller pulls from the async iterator.
4. On a final chunk that is neither interrupted nor cancelled, delete the
   thread's checkpoints before handing the chunk to the caller.

Closing the iterator early cancels the run. A run task that fails with an
unexpected exception re-raises it to the consumer.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, Optional
from uuid import uuid4

from .repos.interfaces import CheckpointStore
from .runtime.emitter import StreamingEventEmitter
from .runtime.engine import ExecutionGraph
from .runtime.interrupt import prepare_entry
from .runtime.models import RunContext
from .schemas.domain import ExecuteRequest
from .schemas.streaming import ChunkOutput

logger = logging.getLogger(__name__)


@dataclass
class _ActiveRun:
    task: asyncio.Task
    ctx: RunContext


async def _next_item(queue: "asyncio.Queue[ChunkOutput]", run_task: asyncio.Task) -> Optional[ChunkOutput]:
    """Next queued chunk, or None once the run task is done and the queue is drained."""
    if not queue.empty():
        return queue.get_nowait()
    getter = asyncio.ensure_future(queue.get())
    try:
        await asyncio.wait({getter, run_task}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        getter.cancel()
        raise
    if getter.done():
        return getter.result()
    getter.cancel()
    if not queue.empty():
        return queue.get_nowait()
    return None


class Supervisor:
    """Own one ``ExecutionGraph`` per thread and relay its event stream."""

    def __init__(
        self,
        *,
        graph_factory: Callable[[str], ExecutionGraph],
        store: CheckpointStore,
        buffer_size: int = 64,
        emitter: Optional[StreamingEventEmitter] = None,
    ) -> None:
        self._graph_factory = graph_factory
        self._store = store
        self._buffer_size = buffer_size
        self._emitter = emitter or StreamingEventEmitter()
        self._graphs: Dict[str, ExecutionGraph] = {}
        self._active: Dict[str, _ActiveRun] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def graph_for(self, thread_id: str) -> ExecutionGraph:
        graph = self._graphs.get(thread_id)
        if graph is None:
            graph = self._graph_factory(thread_id)
            self._graphs[thread_id] = graph
        return graph

    def _lock_for(self, thread_id: str) -> asyncio.Lock:
        return self._locks.setdefault(thread_id, asyncio.Lock())

    def is_running(self, thread_id: str) -> bool:
        run = self._active.get(thread_id)
        return run is not None and not run.task.done()

    async def cancel(self, thread_id: str) -> bool:
        """Cancel the thread's in-flight run and wait for it to stop.

        Returns:
            True if a run was cancelled.
        """
        run = self._active.pop(thread_id, None)
        if run is None or run.task.done():
            return False
        logger.info(f"cancelling run {run.ctx.run_id} on thread {thread_id}")
        run.task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await run.task
        return True

    async def aclose(self) -> None:
        for thread_id in list(self._active):
            await self.cancel(thread_id)

    async def execute(self, request: ExecuteRequest) -> AsyncIterator[ChunkOutput]:
        thread_id = request.thread_id
        async with self._lock_for(thread_id):
            await self.cancel(thread_id)

            graph = self.graph_for(thread_id)
            checkpoint = await self._store.get_latest(thread_id)
            state, command = prepare_entry(checkpoint, request)
            ctx = RunContext(
                run_id=str(uuid4()),
                thread_id=thread_id,
                user_id=request.user_id,
                agent_id=request.agent_id,
                resume=command.resume if command is not None else None,
            )
            logger.info(
                f"execute thread={thread_id} run={ctx.run_id} "
                f"mode={'resume' if command else 'recover' if checkpoint else 'fresh'}"
            )

            queue: asyncio.Queue[ChunkOutput] = asyncio.Queue(maxsize=self._buffer_size)
            run_task = asyncio.create_task(graph.run(state, ctx, queue.put), name=f"taskgraph-run-{ctx.run_id}")
            self._active[thread_id] = _ActiveRun(task=run_task, ctx=ctx)

        try:
            while True:
                chunk = await _next_item(queue, run_task)
                if chunk is None:
                    break
                if chunk.metadata.final and not chunk.metadata.interrupted:
                    await self._store.delete_thread(thread_id)
                    self._graphs.pop(thread_id, None)
                yield chunk

            if run_task.cancelled():
                yield self._emitter.cancelled_chunk(ctx=ctx)
                return
            exc = run_task.exception()
            if exc is not None:
                raise exc
        finally:
            if not run_task.done():
                run_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await run_task
            current = self._active.get(thread_id)
            if current is not None and current.task is run_task:
                del self._active[thread_id]
