"""Tool registry.

Maps tool names to implementations. The registry is constructed explicitly and
injected into the execution graph; there is no module-level instance.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, List, Optional

from ..schemas.domain import RiskLevel
from .base import Tool, ToolSpec


class ToolRegistry:
    """
    In-memory mapping of tool names to implementations.

    Notes:
        - ``register`` overwrites any existing mapping for the tool name.
        - ``get`` will raise ``KeyError`` if the tool is missing.
    """

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: Dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        self._tools[tool.spec.name] = tool

    def get(self, name: str) -> Tool:
        """
        Retrieve a registered tool by name.

        Raises:
            KeyError: If no tool is registered with the given name.
        """
        return self._tools[name]

    def has(self, name: str) -> bool:
        return name in self._tools

    def specs(self) -> List[ToolSpec]:
        return [t.spec for t in self._tools.values()]

    def outputs_of(self, name: str) -> Optional[FrozenSet[str]]:
        """Declared outputs of a tool; ``None`` for unknown tools or undeclared outputs."""
        tool = self._tools.get(name)
        return None if tool is None else tool.spec.outputs

    def risks(self) -> Dict[str, RiskLevel]:
        return {name: t.spec.risk for name, t in self._tools.items()}
