"""
Configuration Settings.

This module defines the engine configuration using Pydantic's BaseSettings.
All values are loaded from environment variables and the ``.env`` file; the
execution-graph view of them is projected into an immutable
:class:`~taskgraph_agent.engine.schemas.config.ExecutionConfig`.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from taskgraph_agent.engine.schemas.config import ExecutionConfig, ToolConstraint

# =====================================================================
# Grouped Configuration Models
# =====================================================================


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", alias="TASKGRAPH_LOG_LEVEL", description="Root log level")
    format: str = Field(default="detailed", alias="TASKGRAPH_LOG_FORMAT", description="simple, detailed or json")
    file_dir: str = Field(default="logs", alias="TASKGRAPH_LOG_FILE_DIR", description="Directory for log files")
    enable_file: bool = Field(
        default=False, alias="TASKGRAPH_ENABLE_FILE_LOGGING", description="Also write logs to a rotating file"
    )

    model_config = {"populate_by_name": True}


class MonitoringConfig(BaseModel):
    """Logfire monitoring configuration."""

    enabled: bool = Field(default=False, alias="LOGFIRE_ENABLED", description="Enable Logfire tracing")
    token: Optional[str] = Field(default=None, alias="LOGFIRE_TOKEN", description="Logfire write token")
    service_name: str = Field(default="taskgraph-agent", alias="LOGFIRE_SERVICE_NAME", description="Service name")
    environment: str = Field(default="development", alias="LOGFIRE_ENVIRONMENT", description="Deployment environment")

    model_config = {"populate_by_name": True}


# =====================================================================
# Main Settings Class
# =====================================================================


class Settings(BaseSettings):
    """
    Engine settings model.

    All properties are automatically bound from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
    )

    # =====================================================================
    # Execution Graph Limits
    # =====================================================================
    max_graph_steps: int = Field(
        default=100, ge=1, description="Hard cap on graph transitions per thread", alias="TASKGRAPH_MAX_GRAPH_STEPS"
    )
    max_iterations: int = Field(
        default=50, ge=1, description="Maximum executor decisions per task", alias="TASKGRAPH_MAX_ITERATIONS"
    )
    max_retries: int = Field(
        default=3, ge=0, description="Retry budget for timeouts and model failures", alias="TASKGRAPH_MAX_RETRIES"
    )
    model_call_timeout: float = Field(
        default=60.0, gt=0, description="Seconds allowed per model call", alias="TASKGRAPH_MODEL_CALL_TIMEOUT"
    )
    tool_call_timeout: float = Field(
        default=30.0, gt=0, description="Seconds allowed per tool call", alias="TASKGRAPH_TOOL_CALL_TIMEOUT"
    )
    hitl_threshold: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Human-in-the-loop threshold selecting the constraint tier",
        alias="TASKGRAPH_HITL_THRESHOLD",
    )
    history_window: int = Field(
        default=5, ge=1, description="Size of the rolling tool-call history", alias="TASKGRAPH_HISTORY_WINDOW"
    )
    stream_buffer_size: int = Field(
        default=64, ge=1, description="Bound of the per-run event queue", alias="TASKGRAPH_STREAM_BUFFER_SIZE"
    )
    inspection_tool: str = Field(
        default="inspect_execution_state",
        description="Tool substituted for rejected calls",
        alias="TASKGRAPH_INSPECTION_TOOL",
    )
    tool_fallbacks: Dict[str, str] = Field(
        default_factory=dict,
        description="JSON map of tool name to the tool used when it is rejected",
        alias="TASKGRAPH_TOOL_FALLBACKS",
    )
    tool_constraints: Dict[str, ToolConstraint] = Field(
        default_factory=dict,
        description="JSON map of tool name to per-tool constraints",
        alias="TASKGRAPH_TOOL_CONSTRAINTS",
    )

    # =====================================================================
    # Checkpoint Store
    # =====================================================================
    database_url: Optional[str] = Field(
        default=None,
        description="Async SQLAlchemy URL for the checkpoint store; in-memory store when unset",
        alias="TASKGRAPH_DATABASE_URL",
    )

    # =====================================================================
    # Logging / Monitoring (flat fields, grouped below)
    # =====================================================================
    log_level: str = Field(default="INFO", alias="TASKGRAPH_LOG_LEVEL")
    log_format: str = Field(default="detailed", alias="TASKGRAPH_LOG_FORMAT")
    log_file_dir: str = Field(default="logs", alias="TASKGRAPH_LOG_FILE_DIR")
    enable_file_logging: bool = Field(default=False, alias="TASKGRAPH_ENABLE_FILE_LOGGING")
    logfire_enabled: bool = Field(default=False, alias="LOGFIRE_ENABLED")
    logfire_token: Optional[str] = Field(default=None, alias="LOGFIRE_TOKEN")
    logfire_service_name: str = Field(default="taskgraph-agent", alias="LOGFIRE_SERVICE_NAME")
    logfire_environment: str = Field(default="development", alias="LOGFIRE_ENVIRONMENT")

    # =====================================================================
    # Computed Properties (Grouped Configurations)
    # =====================================================================

    @property
    def logging(self) -> LoggingConfig:
        """Get logging configuration from environment variables."""
        return LoggingConfig.model_validate(self.model_dump(by_alias=True))

    @property
    def monitoring(self) -> MonitoringConfig:
        """Get Logfire configuration from environment variables."""
        return MonitoringConfig.model_validate(self.model_dump(by_alias=True))

    def execution_config(self) -> ExecutionConfig:
        """Project the settings into the read-only execution-graph configuration."""
        return ExecutionConfig(
            max_graph_steps=self.max_graph_steps,
            max_iterations=self.max_iterations,
            max_retries=self.max_retries,
            model_call_timeout=self.model_call_timeout,
            tool_call_timeout=self.tool_call_timeout,
            hitl_threshold=self.hitl_threshold,
            history_window=self.history_window,
            stream_buffer_size=self.stream_buffer_size,
            inspection_tool=self.inspection_tool,
            tool_fallbacks=dict(self.tool_fallbacks),
            tool_constraints=dict(self.tool_constraints),
        )


settings = Settings()
