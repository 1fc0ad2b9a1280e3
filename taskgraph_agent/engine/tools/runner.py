"""Tool runner: validate, dispatch and collect one batch of tool calls.

The runner never decides control flow. It reports each call's outcome as a
``ToolCallRecord`` and how many calls timed out; the graph decides what the
outcome means for the run.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import pydantic

from ..constraints.manager import ExecutionConstraintsManager
from ..errors import ToolExecutionError, ValidationError
from ..schemas.domain import NodeId, StepStatus, ToolCall, ToolCallRecord
from ..schemas.streaming import TraceEvent, TraceKind
from .base import ToolContext
from .registry import ToolRegistry

logger = logging.getLogger(__name__)

TraceSink = Callable[[TraceEvent], None]


@dataclass(frozen=True)
class BatchResult:
    records: List[ToolCallRecord]
    timed_out: int
    parallel: bool

    @property
    def all_succeeded(self) -> bool:
        return all(r.status == StepStatus.completed for r in self.records)


def to_result_value(value: Any) -> Any:
    """Coerce a tool result into something a checkpoint can serialize."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, pydantic.BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {str(k): to_result_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_result_value(v) for v in value]
    return str(value)


class ToolRunner:
    def __init__(
        self,
        registry: ToolRegistry,
        constraints: ExecutionConstraintsManager,
        *,
        timeout: float,
    ) -> None:
        self._registry = registry
        self._constraints = constraints
        self._timeout = timeout

    def validate(self, calls: Sequence[ToolCall]) -> List[ToolCall]:
        """Validate arguments against each tool's input schema.

        Unknown tools pass through untouched; they fail at dispatch time as a
        failed step rather than ending the run.

        Raises:
            ValidationError: If any call's arguments do not match its schema.
        """
        out: List[ToolCall] = []
        for call in calls:
            if not self._registry.has(call.name):
                out.append(call)
                continue
            schema = self._registry.get(call.name).spec.input_schema
            if schema is None:
                out.append(call)
                continue
            try:
                parsed = schema.model_validate(call.args)
            except pydantic.ValidationError as exc:
                raise ValidationError(f"invalid arguments for {call.name}: {exc.errors(include_url=False)}") from exc
            out.append(call.model_copy(update={"args": parsed.model_dump()}))
        return out

    async def run(
        self,
        calls: Sequence[ToolCall],
        ctx: ToolContext,
        *,
        trace: Optional[TraceSink] = None,
        step_ids: Optional[Dict[str, str]] = None,
    ) -> BatchResult:
        """Dispatch a batch; every call completes or fails before this returns."""
        calls = self.validate(calls)
        parallel = len(calls) > 1 and self._constraints.are_independent(calls, self._registry.outputs_of)
        step_ids = step_ids or {}

        if parallel:
            outcomes = await asyncio.gather(*(self._invoke(c, ctx, trace, step_ids.get(c.id)) for c in calls))
        else:
            outcomes = []
            for call in calls:
                outcomes.append(await self._invoke(call, ctx, trace, step_ids.get(call.id)))

        records = [record for record, _ in outcomes]
        timed_out = sum(1 for _, was_timeout in outcomes if was_timeout)
        logger.debug(
            f"tool batch finished: calls={len(records)} parallel={parallel} "
            f"failed={sum(r.status == StepStatus.failed for r in records)} timed_out={timed_out}"
        )
        return BatchResult(records=records, timed_out=timed_out, parallel=parallel)

    async def _invoke(
        self,
        call: ToolCall,
        ctx: ToolContext,
        trace: Optional[TraceSink],
        step_id: Optional[str],
    ) -> tuple[ToolCallRecord, bool]:
        record = ToolCallRecord(call_id=call.id, name=call.name, args=call.args)
        if trace is not None:
            trace(_tool_trace(TraceKind.tool_started, call, step_id))

        timed_out = False
        if not self._registry.has(call.name):
            err = ToolExecutionError(call.name, "unknown tool")
            record = record.model_copy(update={"status": StepStatus.failed, "error": str(err)})
        else:
            tool = self._registry.get(call.name)
            try:
                value = await asyncio.wait_for(tool.execute(ctx, args=dict(call.args)), timeout=self._timeout)
            except asyncio.TimeoutError:
                timed_out = True
                err = ToolExecutionError(call.name, f"timed out after {self._timeout}s")
                logger.warning(str(err))
                record = record.model_copy(update={"status": StepStatus.failed, "error": str(err)})
            except Exception as exc:
                err = ToolExecutionError(call.name, f"{type(exc).__name__}: {exc}")
                logger.warning(f"tool failed: {err}")
                record = record.model_copy(update={"status": StepStatus.failed, "error": str(err)})
            else:
                record = record.model_copy(update={"status": StepStatus.completed, "result": to_result_value(value)})

        if trace is not None:
            trace(_tool_trace(TraceKind.tool_finished, call, step_id, status=record.status.value))
        return record, timed_out


def _tool_trace(kind: TraceKind, call: ToolCall, step_id: Optional[str], **data: Any) -> TraceEvent:
    return TraceEvent(kind=kind, node=NodeId.tool_runner, step_id=step_id, tool_calls=[call], data=data)
