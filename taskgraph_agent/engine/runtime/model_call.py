"""Model-call wrapper: timeout, error classification and trace events."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

from ..errors import EngineError, ExecutionTimeoutError, ModelCallError, TokenLimitError, is_token_limit_message
from ..schemas.domain import Message, NodeId
from ..schemas.streaming import TraceEvent, TraceKind
from ..tools.base import ToolSpec
from .interfaces import ModelCaller, ModelResponse
from .models import RunContext

logger = logging.getLogger(__name__)


async def call_model(
    model: ModelCaller,
    messages: List[Message],
    tools: Sequence[ToolSpec],
    *,
    timeout: float,
    node: NodeId,
    ctx: RunContext,
    task_id: Optional[str] = None,
) -> ModelResponse:
    """Invoke the model once.

    Raises:
        TokenLimitError: The provider rejected the context as too long.
        ExecutionTimeoutError: No response within ``timeout`` seconds.
        ModelCallError: Any other provider failure.
    """
    ctx.trace(TraceEvent(kind=TraceKind.model_call_started, node=node, task_id=task_id))
    try:
        response = await asyncio.wait_for(model.invoke(messages, tools), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise ExecutionTimeoutError(f"model call timed out after {timeout}s") from exc
    except EngineError:
        raise
    except Exception as exc:
        message = f"{type(exc).__name__}: {exc}"
        if is_token_limit_message(str(exc)):
            raise TokenLimitError(message) from exc
        logger.warning(f"model call failed in {node.value}: {message}")
        raise ModelCallError(message) from exc

    ctx.trace(
        TraceEvent(
            kind=TraceKind.model_call_finished,
            node=node,
            task_id=task_id,
            content=response.content,
            tool_calls=list(response.tool_calls),
            data={"usage": response.usage} if response.usage else {},
        )
    )
    return response
