"""SQLAlchemy async checkpoint store.

Usage
-----

- Create an async engine with ``create_engine``.
- Create tables with ``create_all`` (tests and local development).
- Create a session factory with ``create_sessionmaker``.
- Wrap it in ``SqlCheckpointStore``.

Each method opens its own ``AsyncSession`` and commits before returning, so a
checkpoint is durable once ``write`` returns.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ..schemas.domain import Checkpoint, GraphState, PendingTask
from .models import Base, CheckpointRow


def create_engine(db_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Postgres URLs are normalized to the asyncpg driver, e.g. ``postgresql://``
    becomes ``postgresql+asyncpg://``.
    """
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)
    return create_async_engine(url, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _to_domain(row: CheckpointRow) -> Checkpoint:
    return Checkpoint(
        thread_id=row.thread_id,
        checkpoint_id=row.id,
        graph_state=GraphState.model_validate(row.state),
        pending_tasks=[PendingTask.model_validate(p) for p in row.pending_tasks or []],
        created_at=row.created_at,
    )


@dataclass(frozen=True)
class SqlCheckpointStore:
    """SQL implementation of ``CheckpointStore``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def get_latest(self, thread_id: str) -> Optional[Checkpoint]:
        async with self.session_factory() as s:
            stmt = (
                select(CheckpointRow)
                .where(CheckpointRow.thread_id == thread_id)
                .order_by(CheckpointRow.graph_step.desc(), CheckpointRow.created_at.desc())
                .limit(1)
            )
            row = (await s.execute(stmt)).scalars().first()
            return None if row is None else _to_domain(row)

    async def write(self, thread_id: str, state: GraphState) -> str:
        checkpoint = Checkpoint.from_state(thread_id, state)
        async with self.session_factory() as s:
            s.add(
                CheckpointRow(
                    id=checkpoint.checkpoint_id,
                    thread_id=thread_id,
                    graph_step=state.current_graph_step,
                    node=(state.last_node or state.next_node).value,
                    state=state.model_dump(mode="json"),
                    pending_tasks=[p.model_dump(mode="json") for p in checkpoint.pending_tasks],
                    created_at=checkpoint.created_at,
                )
            )
            await s.commit()
        return checkpoint.checkpoint_id

    async def delete_thread(self, thread_id: str) -> None:
        async with self.session_factory() as s:
            await s.execute(delete(CheckpointRow).where(CheckpointRow.thread_id == thread_id))
            await s.commit()

    async def list(self, thread_id: str) -> List[Checkpoint]:
        async with self.session_factory() as s:
            stmt = (
                select(CheckpointRow)
                .where(CheckpointRow.thread_id == thread_id)
                .order_by(CheckpointRow.graph_step.asc(), CheckpointRow.created_at.asc())
            )
            rows = (await s.execute(stmt)).scalars().all()
            return [_to_domain(r) for r in rows]
