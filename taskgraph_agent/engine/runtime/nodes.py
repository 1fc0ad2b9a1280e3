"""Node handlers of the execution graph.

Each handler takes the current ``GraphState`` and returns a new one whose
``next_node`` is the routing decision. Handlers never mutate their input.

Failures a handler cannot recover from are raised as ``EngineError`` and
converted once by the graph driver. Retryable failures (timeouts, generic
model failures, a decision without a tool call) are handled here against the
``retry`` budget; only when the budget is exhausted do they escape.
"""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Tuple, Type, TypeVar

import pydantic

from ..constraints.manager import END_TASK
from ..errors import (
    EngineError,
    ExecutionTimeoutError,
    InterruptUnhandledError,
    ModelCallError,
    ValidationError,
    error_transition,
)
from ..policy.models import TIER_GUIDANCE
from ..schemas.domain import (
    GraphState,
    Interrupt,
    Message,
    MessageRole,
    NodeId,
    Step,
    StepStatus,
    Task,
    TaskStatus,
    Thoughts,
    ToolCall,
    ToolCallRecord,
)
from ..tools.base import ToolContext
from ..tools.builtin import (
    BLOCK_TASK,
    CREATE_TASK,
    CREATE_TASK_SPEC,
    DECISION_TOOLS,
    EXECUTOR_DECISION_SPECS,
    RESPONSE_TASK,
    BlockTaskArgs,
    CreateTaskArgs,
    EndTaskArgs,
    ResponseTaskArgs,
)
from ..tools.runner import ToolRunner
from .emitter import extract_message_text
from .model_call import call_model
from .models import EngineDeps, RunContext

logger = logging.getLogger(__name__)

HUMAN_INPUT = "human_input"

MAX_ITERATIONS_MESSAGE = "Reached maximum iterations ({limit}). Ending workflow."

PLANNER_PROMPT = (
    "You plan work toward the user's objective. If the objective still needs work, call "
    "create_task with the next task. If it is already satisfied, answer in plain text."
)
EXECUTOR_PROMPT = (
    "You execute the current task by calling tools. Call end_task with a summary once the "
    "task is done, or block_task if you cannot proceed without a human."
)

_ArgsT = TypeVar("_ArgsT", bound=pydantic.BaseModel)


def _parse_args(model: Type[_ArgsT], call: ToolCall) -> _ArgsT:
    try:
        return model.model_validate(call.args)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"invalid arguments for {call.name}: {exc.errors(include_url=False)}") from exc


def _find(calls: List[ToolCall], name: str) -> Optional[ToolCall]:
    return next((c for c in calls if c.name == name), None)


def _approved(calls: List[ToolCall], approved: List[ToolCall]) -> bool:
    """True when every call matches, by name and args, one the human was shown."""
    if not calls or not approved:
        return False
    return all(any(c.name == a.name and c.args == a.args for a in approved) for c in calls)


def _result_text(record: ToolCallRecord) -> str:
    if record.status == StepStatus.failed:
        return f"error: {record.error}"
    if isinstance(record.result, str):
        return record.result
    return json.dumps(record.result, default=str)


class GraphNodes:
    """The six node handlers plus the shared transition helpers."""

    def __init__(self, deps: EngineDeps) -> None:
        self._deps = deps
        self._runner = ToolRunner(deps.tools, deps.constraints, timeout=deps.config.tool_call_timeout)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _goto(state: GraphState, node: NodeId, **update: Any) -> GraphState:
        return state.model_copy(update={**update, "next_node": node})

    def _retry_or_raise(self, state: GraphState, exc: EngineError, node: NodeId) -> GraphState:
        """Spend one retry and re-enter ``node``; past the budget, ``exc`` escapes."""
        retry = state.retry + 1
        if retry > self._deps.config.max_retries:
            logger.warning(f"{node.value}: retry budget exhausted ({self._deps.config.max_retries}): {exc}")
            raise exc
        logger.info(f"{node.value}: retry {retry}/{self._deps.config.max_retries} after {exc}")
        return self._goto(state, node, retry=retry)

    def force_end(self, state: GraphState, limit: str) -> GraphState:
        return self._goto(state, NodeId.end_graph, forced=limit, pending_calls=[])

    def _guidance(self) -> str:
        return TIER_GUIDANCE[self._deps.hitl.tier]

    # ------------------------------------------------------------------
    # Planner
    # ------------------------------------------------------------------

    async def planner(self, state: GraphState, ctx: RunContext) -> GraphState:
        task = state.active_task
        if task is not None and task.status == TaskStatus.pending:
            return self._goto(state, NodeId.executor)

        messages = [Message(role=MessageRole.system, content=f"{PLANNER_PROMPT}\n{self._guidance()}")]
        snippets = await self._retrieve(state)
        if snippets:
            context = "\n".join(f"- {s}" for s in snippets)
            messages.append(Message(role=MessageRole.system, content=f"Relevant context:\n{context}"))
        messages.extend(state.messages)

        try:
            response = await call_model(
                self._deps.model,
                messages,
                [CREATE_TASK_SPEC],
                timeout=self._deps.config.model_call_timeout,
                node=NodeId.planner,
                ctx=ctx,
            )
        except EngineError as exc:
            if not exc.retryable:
                raise
            return self._retry_or_raise(state, exc, NodeId.planner)

        ai_message = Message(
            role=MessageRole.assistant,
            content=response.content,
            tool_calls=response.tool_calls,
            metadata={"from": NodeId.planner.value},
        )
        create = _find(response.tool_calls, CREATE_TASK)
        if create is not None:
            args = _parse_args(CreateTaskArgs, create)
            new_task = Task(**args.model_dump())
            tasks = [*state.tasks, new_task]
            ack = Message(
                role=MessageRole.tool,
                tool_call_id=create.id,
                name=CREATE_TASK,
                content=f"Task created: {new_task.text}",
            )
            logger.info(f"planner created task {new_task.id}: {new_task.text}")
            return self._goto(
                state,
                NodeId.executor,
                tasks=tasks,
                current_task_index=len(tasks) - 1,
                execution_state=self._deps.constraints.initial_state(),
                messages=state.with_messages(ai_message, ack),
                retry=0,
            )

        answer = extract_message_text(response.content)
        if answer:
            return self._goto(
                state,
                NodeId.end_graph,
                messages=state.with_messages(ai_message),
                final_message=answer,
            )

        return self._retry_or_raise(
            state.model_copy(update={"messages": state.with_messages(ai_message)}),
            ModelCallError("planner returned neither a task nor an answer"),
            NodeId.planner,
        )

    async def _retrieve(self, state: GraphState) -> List[str]:
        if self._deps.memory is None:
            return []
        query = next(
            (m.content for m in reversed(state.messages) if m.role == MessageRole.user and isinstance(m.content, str)),
            None,
        )
        if not query:
            return []
        return list(await self._deps.memory.retrieve(query, self._deps.config.retrieval_k))

    # ------------------------------------------------------------------
    # Executor
    # ------------------------------------------------------------------

    def _executor_messages(self, state: GraphState, task: Task) -> List[Message]:
        es = state.execution_state
        context = (
            f"Current task: {task.text}\n"
            f"Plan: {task.plan or '-'}\n"
            f"Steps taken: {len(task.steps)}; recent tools: {', '.join(es.tool_call_history) or 'none'}\n"
            f"{self._guidance()}"
        )
        return [
            Message(role=MessageRole.system, content=EXECUTOR_PROMPT),
            *state.messages,
            Message(role=MessageRole.system, content=context),
        ]

    @staticmethod
    def _thoughts(content: Any, calls: List[ToolCall]) -> Tuple[Thoughts, Optional[float]]:
        response_task = _find(calls, RESPONSE_TASK)
        if response_task is not None:
            args = _parse_args(ResponseTaskArgs, response_task)
            return Thoughts(**args.model_dump(exclude={"uncertainty"})), args.uncertainty
        return Thoughts(text=extract_message_text(content) or ""), None

    async def executor(self, state: GraphState, ctx: RunContext) -> GraphState:
        task = state.active_task
        if task is None or task.status != TaskStatus.pending:
            return self._goto(state, NodeId.planner)
        if len(task.steps) >= self._deps.config.max_iterations:
            logger.warning(f"task {task.id} reached max_iterations={self._deps.config.max_iterations}")
            return self.force_end(state, "max_iterations")

        tool_specs = [*self._deps.tools.specs(), *EXECUTOR_DECISION_SPECS]
        try:
            response = await call_model(
                self._deps.model,
                self._executor_messages(state, task),
                tool_specs,
                timeout=self._deps.config.model_call_timeout,
                node=NodeId.executor,
                ctx=ctx,
                task_id=task.id,
            )
        except EngineError as exc:
            if not exc.retryable:
                raise
            return self._retry_or_raise(state, exc, NodeId.executor)

        ai_message = Message(
            role=MessageRole.assistant,
            content=response.content,
            tool_calls=response.tool_calls,
            metadata={"from": NodeId.executor.value, "task_id": task.id},
        )
        state = state.model_copy(update={"messages": state.with_messages(ai_message)})
        thoughts, uncertainty = self._thoughts(response.content, response.tool_calls)
        calls = [c for c in response.tool_calls if c.name != RESPONSE_TASK]

        if not calls:
            return self._retry_or_raise(
                state, ModelCallError("executor decision contained no tool call"), NodeId.executor
            )

        block = _find(calls, BLOCK_TASK)
        if block is not None:
            return self._block(state, task, block, thoughts)

        end = _find(calls, END_TASK)
        dispatch: List[ToolCall] = [c for c in calls if c.name not in DECISION_TOOLS]
        notes: List[Message] = []
        if end is not None:
            decision = self._deps.constraints.validate_tool_call(END_TASK, state)
            if decision.allowed:
                if dispatch:
                    logger.debug(f"dropping {len(dispatch)} tool call(s) proposed alongside end_task")
                return self._end(state, task, end, thoughts)
            sub = self._deps.constraints.substitute(end, decision.reason or "rejected", self._deps.tools.has)
            dispatch = [sub.call]
            notes.append(Message(role=MessageRole.system, content=sub.message, metadata={"blocked": END_TASK}))
        else:
            approved: List[ToolCall] = []
            for call in dispatch:
                decision = self._deps.constraints.validate_tool_call(call.name, state)
                if decision.allowed:
                    approved.append(call)
                    continue
                sub = self._deps.constraints.substitute(call, decision.reason or "rejected", self._deps.tools.has)
                approved.append(sub.call)
                notes.append(Message(role=MessageRole.system, content=sub.message, metadata={"blocked": call.name}))
            dispatch = approved
            if not dispatch:
                return self._retry_or_raise(
                    state, ModelCallError("executor decision contained no executable tool call"), NodeId.executor
                )

        if not _approved(dispatch, state.approved_calls):
            hitl = self._deps.hitl.decide(dispatch, uncertainty=uncertainty)
            if hitl.require_human:
                request = {
                    "reason": "approval",
                    "message": hitl.reason,
                    "task_id": task.id,
                    "tier": hitl.tier.value,
                    "signal": hitl.signal,
                    "tool_calls": [c.model_dump(mode="json") for c in dispatch],
                }
                return self._goto(
                    state, NodeId.human_handler, human_request=request, pending_calls=[], approved_calls=[]
                )

        steps = [
            Step(thoughts=thoughts, tool=ToolCallRecord(call_id=c.id, name=c.name, args=c.args)) for c in dispatch
        ]
        return self._goto(
            state,
            NodeId.tool_runner,
            tasks=state.with_active_task(task.with_steps(*steps)),
            messages=[*state.messages, *notes],
            pending_calls=dispatch,
            pending_thoughts=thoughts,
            approved_calls=[],
        )

    def _block(self, state: GraphState, task: Task, call: ToolCall, thoughts: Thoughts) -> GraphState:
        args = _parse_args(BlockTaskArgs, call)
        step = Step(
            thoughts=thoughts,
            tool=ToolCallRecord(call_id=call.id, name=BLOCK_TASK, args=args.model_dump(), status=StepStatus.completed),
        )
        request = {"reason": "blocked", "message": args.reason, "task_id": task.id, "step_id": step.id}
        logger.info(f"task {task.id} blocked: {args.reason}")
        return self._goto(
            state,
            NodeId.human_handler,
            tasks=state.with_active_task(task.with_steps(step)),
            execution_state=self._deps.constraints.update_execution_state(state.execution_state, BLOCK_TASK),
            human_request=request,
            pending_calls=[],
        )

    def _end(self, state: GraphState, task: Task, call: ToolCall, thoughts: Thoughts) -> GraphState:
        args = _parse_args(EndTaskArgs, call)
        step = Step(
            thoughts=thoughts,
            tool=ToolCallRecord(
                call_id=call.id,
                name=END_TASK,
                args=args.model_dump(),
                result=args.summary,
                status=StepStatus.completed,
            ),
        )
        return self._goto(
            state,
            NodeId.validator,
            tasks=state.with_active_task(task.with_steps(step)),
            execution_state=self._deps.constraints.update_execution_state(state.execution_state, END_TASK),
            pending_calls=[],
        )

    # ------------------------------------------------------------------
    # ToolRunner
    # ------------------------------------------------------------------

    async def tool_runner(self, state: GraphState, ctx: RunContext) -> GraphState:
        task = state.active_task
        calls = list(state.pending_calls)
        if task is None or not calls:
            return self._goto(state, NodeId.executor, pending_calls=[])

        step_ids = {s.tool.call_id: s.id for s in task.steps if s.tool.status == StepStatus.pending}
        batch = await self._runner.run(
            calls,
            ToolContext(thread_id=state.thread_id, state=state, config=self._deps.config),
            trace=ctx.trace,
            step_ids=step_ids,
        )

        by_call = {r.call_id: r for r in batch.records}
        steps = [
            s.model_copy(update={"tool": by_call[s.tool.call_id]}) if s.tool.call_id in by_call else s
            for s in task.steps
        ]
        execution_state = state.execution_state
        for record in batch.records:
            execution_state = self._deps.constraints.update_execution_state(execution_state, record.name)
        tool_messages = [
            Message(
                role=MessageRole.tool,
                tool_call_id=r.call_id,
                name=r.name,
                content=_result_text(r),
                metadata={"status": r.status.value},
            )
            for r in batch.records
        ]
        next_state = self._goto(
            state,
            NodeId.executor,
            tasks=state.with_active_task(task.model_copy(update={"steps": steps})),
            execution_state=execution_state,
            messages=state.with_messages(*tool_messages),
            pending_calls=[],
            retry=0 if not batch.timed_out else state.retry + 1,
        )
        if batch.timed_out and next_state.retry > self._deps.config.max_retries:
            exc = ExecutionTimeoutError(
                f"{batch.timed_out} tool call(s) timed out; retry budget of {self._deps.config.max_retries} exhausted"
            )
            logger.warning(str(exc))
            return error_transition(next_state, exc, NodeId.tool_runner)
        return next_state

    # ------------------------------------------------------------------
    # Validator
    # ------------------------------------------------------------------

    async def validator(self, state: GraphState, ctx: RunContext) -> GraphState:
        task = state.active_task
        end_step = next((s for s in reversed(task.steps) if s.tool.name == END_TASK), None) if task else None
        if task is None or end_step is None:
            return self._goto(state, NodeId.executor)
        args = EndTaskArgs.model_validate(end_step.tool.args)

        end_call = ToolCall(id=end_step.tool.call_id, name=END_TASK, args=end_step.tool.args)
        if not _approved([end_call], state.approved_calls):
            hitl = self._deps.hitl.decide([], uncertainty=args.uncertainty)
            if hitl.require_human:
                request = {
                    "reason": "completion_review",
                    "message": hitl.reason,
                    "task_id": task.id,
                    "step_id": end_step.id,
                    "summary": args.summary,
                    "tier": hitl.tier.value,
                    "signal": hitl.signal,
                    "tool_calls": [end_call.model_dump(mode="json")],
                }
                return self._goto(state, NodeId.human_handler, human_request=request, approved_calls=[])

        summary = args.summary or end_step.thoughts.speak or task.text
        tasks = state.with_active_task(task.with_status(TaskStatus.completed))
        messages = state.with_messages(
            Message(role=MessageRole.assistant, content=summary, metadata={"from": NodeId.validator.value})
        )
        logger.info(f"task {task.id} completed")
        if args.objective_complete:
            return self._goto(
                state, NodeId.end_graph, tasks=tasks, messages=messages, final_message=summary, approved_calls=[]
            )
        return self._goto(state, NodeId.planner, tasks=tasks, messages=messages, approved_calls=[])

    # ------------------------------------------------------------------
    # HumanHandler
    # ------------------------------------------------------------------

    async def human_handler(self, state: GraphState, ctx: RunContext) -> GraphState:
        reply = ctx.take_resume()
        if reply is None:
            if self._deps.notifier is None:
                raise InterruptUnhandledError("human input required but no notification sink is configured")
            value = dict(state.human_request or {"reason": "input", "message": "Human input requested."})
            logger.info(f"thread {state.thread_id} paused for human input: {value.get('reason')}")
            return self._goto(
                state,
                NodeId.end_graph,
                interrupt=Interrupt(thread_id=state.thread_id, value=value),
            )

        shown = (state.human_request or {}).get("tool_calls") or []
        message = Message(
            role=MessageRole.user,
            content=reply,
            metadata={"from": NodeId.human_handler.value, "resume": True},
        )
        return self._goto(
            state,
            NodeId.executor,
            messages=state.with_messages(message),
            execution_state=self._deps.constraints.update_execution_state(state.execution_state, HUMAN_INPUT),
            interrupt=None,
            human_request=None,
            approved_calls=[ToolCall.model_validate(c) for c in shown],
        )

    # ------------------------------------------------------------------
    # EndGraph
    # ------------------------------------------------------------------

    async def end_graph(self, state: GraphState, ctx: RunContext) -> GraphState:
        task = state.active_task
        update: dict[str, Any] = {"pending_calls": []}
        if state.error is not None:
            if task is not None and task.status == TaskStatus.pending:
                update["tasks"] = state.with_active_task(task.with_status(TaskStatus.failed))
            update["final_message"] = f"Execution failed ({state.error.type.value}): {state.error.message}"
        elif state.interrupt is not None:
            update["final_message"] = state.interrupt.value.get("message") or "Human input requested."
        elif state.forced is not None:
            limit = (
                self._deps.config.max_iterations
                if state.forced == "max_iterations"
                else self._deps.config.max_graph_steps
            )
            text = MAX_ITERATIONS_MESSAGE.format(limit=limit)
            update["final_message"] = text
            update["messages"] = state.with_messages(
                Message(role=MessageRole.assistant, content=text, metadata={"from": NodeId.end_graph.value})
            )
        elif state.final_message is None:
            update["final_message"] = self._last_summary(state)
        return self._goto(state, NodeId.end_graph, **update)

    @staticmethod
    def _last_summary(state: GraphState) -> Optional[str]:
        for message in reversed(state.messages):
            if message.role == MessageRole.assistant:
                text = extract_message_text(message.content)
                if text:
                    return text
        return None
