"""Tools: descriptors, registry, built-ins and the batch runner."""

from .base import FunctionTool, Tool, ToolContext, ToolSpec
from .builtin import InspectExecutionStateTool
from .registry import ToolRegistry
from .runner import BatchResult, ToolRunner

__all__ = [
    "BatchResult",
    "FunctionTool",
    "InspectExecutionStateTool",
    "Tool",
    "ToolContext",
    "ToolRegistry",
    "ToolRunner",
    "ToolSpec",
]
