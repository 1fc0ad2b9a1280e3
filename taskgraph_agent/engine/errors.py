"""Engine error taxonomy and the single node-error boundary.

Node handlers raise :class:`EngineError` subclasses for failures they cannot
recover from locally. The graph driver converts them exactly once, through
:func:`error_transition`, into an :class:`ErrorContext` routed to ``EndGraph``.
Any other exception is a defect and propagates out of the run.
"""

from __future__ import annotations

from typing import ClassVar

from .schemas.domain import ErrorContext, ErrorType, GraphState, NodeId

TOKEN_LIMIT_MARKERS = (
    "token limit",
    "tokens exceed",
    "context length",
    "prompt is too long",
    "maximum context length",
)


class EngineError(Exception):
    error_type: ClassVar[ErrorType] = ErrorType.execution
    retryable: ClassVar[bool] = False


class ValidationError(EngineError):
    """Malformed tool-call arguments or missing required configuration."""

    error_type = ErrorType.validation


class TokenLimitError(EngineError):
    """The model context is too large; the caller must shorten it."""

    error_type = ErrorType.token_limit


class ToolExecutionError(EngineError):
    """A tool raised. Recorded on the step as ``failed``; never ends the run by itself."""

    error_type = ErrorType.tool_execution

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(f"{tool_name}: {message}")
        self.tool_name = tool_name


class ExecutionTimeoutError(EngineError):
    error_type = ErrorType.timeout
    retryable = True


class ModelCallError(EngineError):
    """Generic model-call failure, eligible for the retry budget."""

    error_type = ErrorType.execution
    retryable = True


class InterruptUnhandledError(EngineError):
    """The graph paused for a human but no notification sink is configured."""

    error_type = ErrorType.interrupt_unhandled


def is_token_limit_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in TOKEN_LIMIT_MARKERS)


def to_error_context(exc: EngineError, source: NodeId | str) -> ErrorContext:
    src = source.value if isinstance(source, NodeId) else source
    return ErrorContext(type=exc.error_type, message=str(exc) or exc.__class__.__name__, source=src)


def error_transition(state: GraphState, exc: EngineError, source: NodeId) -> GraphState:
    """Route a failed node to ``EndGraph`` carrying the error and an advanced step counter."""
    return state.model_copy(
        update={
            "error": to_error_context(exc, source),
            "next_node": NodeId.end_graph,
            "last_node": source,
            "pending_calls": [],
            "current_graph_step": state.current_graph_step + 1,
        }
    )
