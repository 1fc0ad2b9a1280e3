"""In-process checkpoint store for tests and single-process deployments."""

from __future__ import annotations

from typing import Dict, List, Optional

from ..schemas.domain import Checkpoint, GraphState


class InMemoryCheckpointStore:
    def __init__(self) -> None:
        self._threads: Dict[str, List[Checkpoint]] = {}

    async def get_latest(self, thread_id: str) -> Optional[Checkpoint]:
        items = self._threads.get(thread_id)
        if not items:
            return None
        return max(items, key=lambda c: (c.graph_step, c.created_at))

    async def write(self, thread_id: str, state: GraphState) -> str:
        checkpoint = Checkpoint.from_state(thread_id, state.model_copy(deep=True))
        self._threads.setdefault(thread_id, []).append(checkpoint)
        return checkpoint.checkpoint_id

    async def delete_thread(self, thread_id: str) -> None:
        self._threads.pop(thread_id, None)

    async def list(self, thread_id: str) -> List[Checkpoint]:
        return sorted(self._threads.get(thread_id, []), key=lambda c: (c.graph_step, c.created_at))
