"""Runtime for the execution graph.

This package holds the LangGraph-based driver and everything it touches per
transition:

- ``ExecutionGraph`` (``engine``): compiles the node table into a
  ``StateGraph`` and commits one checkpoint per transition before emitting.
- ``GraphNodes`` (``nodes``): Planner, Executor, ToolRunner, Validator,
  HumanHandler and EndGraph handlers.
- ``StreamingEventEmitter`` (``emitter``): trace-to-``ChunkOutput`` projection.
- ``is_interrupt`` / ``prepare_entry`` (``interrupt``): pause detection and
  resume-vs-fresh entry.
- ``EngineDeps`` / ``RunContext`` (``models``): injected services and
  run-scoped state.
"""

from .emitter import StreamingEventEmitter, extract_message_text
from .engine import ExecutionGraph
from .interfaces import MemoryRetriever, ModelCaller, ModelResponse, NotificationSink
from .interrupt import ResumeCommand, is_interrupt, prepare_entry
from .models import EngineDeps, RunContext

__all__ = [
    "EngineDeps",
    "ExecutionGraph",
    "MemoryRetriever",
    "ModelCaller",
    "ModelResponse",
    "NotificationSink",
    "ResumeCommand",
    "RunContext",
    "StreamingEventEmitter",
    "extract_message_text",
    "is_interrupt",
    "prepare_entry",
]
