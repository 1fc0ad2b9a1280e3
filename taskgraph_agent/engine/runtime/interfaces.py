"""Collaborator contracts consumed by the execution graph.

The language model, the memory/RAG store and the human-notification channel
are external systems; the graph depends only on these Protocols.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from pydantic import Field

from ..schemas.base import BaseSchema
from ..schemas.domain import Message, ToolCall
from ..tools.base import ToolSpec


class ModelResponse(BaseSchema):
    """One model decision: text content and/or tool calls."""

    content: Union[str, List[Dict[str, Any]], None] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    usage: Optional[Dict[str, Any]] = None


class ModelCaller(Protocol):
    async def invoke(self, messages: List[Message], tools: Sequence[ToolSpec]) -> ModelResponse:
        """
        Ask the model for its next decision.

        Args:
            messages: Conversation so far, oldest first.
            tools: Tools the model may call in this turn.

        Returns:
            The model's response. Raising signals a failed call; messages that
            mention the context length are classified as token-limit errors.
        """
        ...


class MemoryRetriever(Protocol):
    async def retrieve(self, query: str, k: int) -> List[str]:
        """Return up to ``k`` snippets ranked by relevance, best first."""
        ...


class NotificationSink(Protocol):
    async def notify(self, user_id: Optional[str], agent_id: Optional[str], payload: Dict[str, Any]) -> None:
        """Alert a human that a thread is waiting for input."""
        ...
