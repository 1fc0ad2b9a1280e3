"""Autonomous task-execution engine.

The engine decomposes an objective into tasks, drives each task through a
bounded loop of tool invocations on top of a LangGraph ``StateGraph``,
checkpoints every transition, and streams ``ChunkOutput`` events to callers.
"""

__version__ = "0.1.0"
