"""Convenience factories for wiring the engine.

The intent is to keep application wiring and tests concise while still letting
deployments provide their own store, tools and collaborators. Nothing here is
a singleton: every call builds fresh services.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..core.config import Settings
from ..core.logging_config import setup_logging
from ..core.monitoring import initialize_monitoring
from .constraints.manager import ExecutionConstraintsManager
from .policy.hitl_policy import HitlPolicy
from .repos.interfaces import CheckpointStore
from .repos.memory import InMemoryCheckpointStore
from .repos.sql import SqlCheckpointStore, create_all, create_engine, create_sessionmaker
from .runtime.engine import ExecutionGraph
from .runtime.interfaces import MemoryRetriever, ModelCaller, NotificationSink
from .runtime.models import EngineDeps
from .schemas.config import ExecutionConfig
from .supervisor import Supervisor
from .tools.base import Tool
from .tools.builtin import InspectExecutionStateTool
from .tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def build_tool_registry(tools: Iterable[Tool] = (), *, config: Optional[ExecutionConfig] = None) -> ToolRegistry:
    """Build a registry holding ``tools`` plus the built-in state-inspection tool.

    Raises:
        ValueError: If the configured inspection tool is not registered.
    """
    reg = ToolRegistry()
    reg.register(InspectExecutionStateTool())
    for tool in tools:
        reg.register(tool)
    inspection = (config or ExecutionConfig()).inspection_tool
    if not reg.has(inspection):
        raise ValueError(f"inspection tool {inspection!r} is not registered")
    return reg


def build_engine_deps(
    *,
    model: ModelCaller,
    store: CheckpointStore,
    tools: Iterable[Tool] = (),
    config: Optional[ExecutionConfig] = None,
    notifier: Optional[NotificationSink] = None,
    memory: Optional[MemoryRetriever] = None,
) -> EngineDeps:
    config = config or ExecutionConfig()
    registry = build_tool_registry(tools, config=config)
    return EngineDeps(
        model=model,
        store=store,
        tools=registry,
        config=config,
        constraints=ExecutionConstraintsManager.from_config(config),
        hitl=HitlPolicy(config.hitl_threshold, tool_risks=registry.risks()),
        notifier=notifier,
        memory=memory,
    )


def build_supervisor(
    *,
    model: ModelCaller,
    tools: Iterable[Tool] = (),
    config: Optional[ExecutionConfig] = None,
    store: Optional[CheckpointStore] = None,
    notifier: Optional[NotificationSink] = None,
    memory: Optional[MemoryRetriever] = None,
) -> Supervisor:
    """Construct a ``Supervisor`` whose per-thread graphs share one set of dependencies."""
    deps = build_engine_deps(
        model=model,
        store=store or InMemoryCheckpointStore(),
        tools=tools,
        config=config,
        notifier=notifier,
        memory=memory,
    )
    return Supervisor(
        graph_factory=lambda _thread_id: ExecutionGraph(deps),
        store=deps.store,
        buffer_size=deps.config.stream_buffer_size,
    )


async def open_checkpoint_store(settings: Settings, *, create_tables: bool = True) -> CheckpointStore:
    """SQL store for ``TASKGRAPH_DATABASE_URL``, or an in-memory store when it is unset."""
    if not settings.database_url:
        logger.info("TASKGRAPH_DATABASE_URL not set; using in-memory checkpoint store")
        return InMemoryCheckpointStore()
    engine = create_engine(settings.database_url)
    if create_tables:
        await create_all(engine)
    return SqlCheckpointStore(session_factory=create_sessionmaker(engine))


async def build_supervisor_from_settings(
    settings: Settings,
    *,
    model: ModelCaller,
    tools: Iterable[Tool] = (),
    notifier: Optional[NotificationSink] = None,
    memory: Optional[MemoryRetriever] = None,
    configure_logging: bool = True,
) -> Supervisor:
    """Application wiring: logging, monitoring, checkpoint store and supervisor."""
    if configure_logging:
        log = settings.logging
        setup_logging(log.level, log.format, enable_file=log.enable_file, log_file_dir=log.file_dir)
    initialize_monitoring(settings.monitoring)
    store = await open_checkpoint_store(settings)
    return build_supervisor(
        model=model,
        tools=tools,
        config=settings.execution_config(),
        store=store,
        notifier=notifier,
        memory=memory,
    )
