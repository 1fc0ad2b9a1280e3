"""Tool protocol and descriptors.

A tool is a named, schema-validated async function. The engine only needs its
name, arguments and result; the graph resolves proposed calls through a
``ToolRegistry`` and executes them via the ``ToolRunner``.

Tools should:

- validate nothing themselves (arguments are validated against
  ``ToolSpec.input_schema`` before dispatch),
- raise on failure (the runner records the error on the step),
- avoid making control-flow or human-in-the-loop decisions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Optional, Protocol, Type

from pydantic import BaseModel

from ..schemas.config import ExecutionConfig
from ..schemas.domain import GraphState, RiskLevel


@dataclass(frozen=True)
class ToolSpec:
    """Advertised tool metadata.

    Attributes
    ----------
    name:
        Unique tool name the model calls.
    description:
        Text bound to the model alongside the schema.
    input_schema:
        Pydantic model the arguments must satisfy; ``None`` accepts any mapping.
    outputs:
        Names of the values this tool produces. ``None`` means undeclared, which
        forces any batch containing the tool to run serially.
    risk:
        Inherent risk used by the human-in-the-loop gate.
    """

    name: str
    description: str
    input_schema: Optional[Type[BaseModel]] = None
    outputs: Optional[FrozenSet[str]] = None
    risk: RiskLevel = RiskLevel.low

    def parameters(self) -> Dict[str, Any]:
        if self.input_schema is None:
            return {"type": "object", "properties": {}}
        return self.input_schema.model_json_schema()


@dataclass(frozen=True)
class ToolContext:
    """Execution context passed to tool implementations."""

    thread_id: str
    state: GraphState
    config: ExecutionConfig


class Tool(Protocol):
    """Protocol for tool implementations."""

    spec: ToolSpec

    async def execute(self, ctx: ToolContext, *, args: Dict[str, Any]) -> Any: ...


class FunctionTool:
    """Adapt a plain ``async def fn(**args)`` into a :class:`Tool`."""

    def __init__(self, spec: ToolSpec, fn: Callable[..., Awaitable[Any]]) -> None:
        self.spec = spec
        self._fn = fn

    async def execute(self, ctx: ToolContext, *, args: Dict[str, Any]) -> Any:
        return await self._fn(**args)
