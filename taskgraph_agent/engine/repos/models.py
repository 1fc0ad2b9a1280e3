"""SQLAlchemy ORM models for checkpoint persistence.

Checkpoints are append-only rows keyed by ``(thread_id, id)``. ``graph_step``
mirrors ``GraphState.current_graph_step`` so the authoritative checkpoint can
be selected without decoding state.

Table names are prefixed with ``tg_`` to avoid collisions in shared databases.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JsonColumn = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class CheckpointRow(Base):
    """Row model for ``tg_checkpoints``."""

    __tablename__ = "tg_checkpoints"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    thread_id: Mapped[str] = mapped_column(String(128), index=True)
    graph_step: Mapped[int] = mapped_column(Integer, index=True)
    node: Mapped[str] = mapped_column(String(64))

    state: Mapped[Dict[str, Any]] = mapped_column(JsonColumn)
    pending_tasks: Mapped[List[Dict[str, Any]]] = mapped_column(JsonColumn)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
