from __future__ import annotations

from typing import Any, Callable, Iterable, Optional, Sequence, Tuple

import pytest

from engine_fakes import ModelStep, RecordingNotifier, ScriptedModel
from settings import TestSettings, test_settings
from taskgraph_agent.engine.factory import build_supervisor
from taskgraph_agent.engine.repos.memory import InMemoryCheckpointStore
from taskgraph_agent.engine.schemas.config import ExecutionConfig
from taskgraph_agent.engine.supervisor import Supervisor
from taskgraph_agent.engine.tools.base import Tool


@pytest.fixture(scope="session")
def test_config() -> TestSettings:
    """Fixture providing test configuration from Pydantic settings model.

    Returns:
        TestSettings: Test configuration with all environment variables loaded
    """
    return test_settings


@pytest.fixture
def store() -> InMemoryCheckpointStore:
    return InMemoryCheckpointStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_supervisor(store: InMemoryCheckpointStore) -> Callable[..., Tuple[Supervisor, ScriptedModel]]:
    """Build a supervisor around a scripted model; the ``store`` fixture is used unless one is passed."""

    def _make(
        script: Sequence[ModelStep],
        *,
        tools: Iterable[Tool] = (),
        config: Optional[ExecutionConfig] = None,
        **kwargs: Any,
    ) -> Tuple[Supervisor, ScriptedModel]:
        model = ScriptedModel(script)
        kwargs.setdefault("store", store)
        sup = build_supervisor(model=model, tools=tools, config=config, **kwargs)
        return sup, model

    return _make
