"""
Monitoring and Tracing Configuration Module.

Integration with Logfire for tracing engine runs. Everything here is a no-op
unless monitoring was initialized with ``LOGFIRE_ENABLED=true`` and a token.

The execution graph opens one span per run and one per node transition via
:func:`span`; checkpoint-store traffic is traced through the SQLAlchemy
instrumentation when enabled.
"""

import contextlib
import logging
from typing import Any, ContextManager, Optional

import logfire

from taskgraph_agent.core.config import MonitoringConfig

logger = logging.getLogger(__name__)

_enabled = False


def initialize_monitoring(config: MonitoringConfig, *, instrument_sqlalchemy: bool = True) -> bool:
    """
    Initialize Logfire for monitoring and tracing.

    Args:
        config: Logfire settings (see ``Settings.monitoring``)
        instrument_sqlalchemy: Also trace checkpoint-store SQL statements

    Returns:
        True when Logfire was configured and spans will be recorded.
    """
    global _enabled

    if not config.enabled:
        logger.info("Logfire monitoring is disabled. Set LOGFIRE_ENABLED=true to enable.")
        _enabled = False
        return False

    if not config.token:
        logger.warning(
            "Logfire is enabled but LOGFIRE_TOKEN is not set. "
            "Monitoring will not work. Set LOGFIRE_TOKEN to enable Logfire."
        )
        _enabled = False
        return False

    logfire.configure(
        token=config.token,
        service_name=config.service_name,
        environment=config.environment,
    )
    if instrument_sqlalchemy:
        logfire.instrument_sqlalchemy()
        logger.info("Logfire: SQLAlchemy instrumentation enabled")

    _enabled = True
    logger.info(f"Logfire monitoring initialized: service={config.service_name}, environment={config.environment}")
    return True


def is_enabled() -> bool:
    return _enabled


def span(name: str, **attributes: Any) -> ContextManager[Optional[Any]]:
    """Open a Logfire span, or a null context when monitoring is off."""
    if not _enabled:
        return contextlib.nullcontext()
    return logfire.span(name, **attributes)
