"""Checkpoint store contract.

The execution graph depends on this Protocol instead of a concrete
persistence implementation.

Contract guidelines
-------------------

- All methods are async.
- Writes are append-only: a stored checkpoint is never mutated, so concurrent
  reads of historical checkpoints are always safe.
- Only the latest checkpoint of a thread is authoritative for resume.
- Keys are ``(thread_id, checkpoint_id)``; threads share nothing else, so no
  cross-thread locking is required.
"""

from __future__ import annotations

from typing import List, Optional, Protocol

from ..schemas.domain import Checkpoint, GraphState


class CheckpointStore(Protocol):
    """Durable graph-state persistence keyed by thread."""

    async def get_latest(self, thread_id: str) -> Optional[Checkpoint]:
        """
        Retrieve the authoritative checkpoint for a thread.

        Args:
            thread_id: The thread identifier.

        Returns:
            The checkpoint with the highest graph step, or None when the
            thread has no checkpoints (never started, or deleted).
        """
        ...

    async def write(self, thread_id: str, state: GraphState) -> str:
        """
        Append a checkpoint for a state.

        Args:
            thread_id: The thread identifier.
            state: The graph state produced by the transition.

        Returns:
            The new checkpoint id.
        """
        ...

    async def delete_thread(self, thread_id: str) -> None:
        """
        Delete every checkpoint of a thread. Unknown threads are a no-op.

        Args:
            thread_id: The thread identifier.
        """
        ...

    async def list(self, thread_id: str) -> List[Checkpoint]:
        """
        List a thread's checkpoints ordered by graph step, oldest first.

        Args:
            thread_id: The thread identifier.
        """
        ...
