"""Bounded conversation loop for one task execution."""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from taskpilot.core.dispatcher import ToolDispatcher, reminder_text
from taskpilot.core.interpreter import interpret
from taskpilot.core.ports import ActionHistory, AuditRecorder, ChatModel, ExecutionSummary, UserDirectory
from taskpilot.core.prompt import build_system_prompt, corrective_instruction
from taskpilot.core.types import ConversationTurn, ModelReply, TaskResult, TaskStatus, ToolInvocation
from taskpilot.errors import EmptyModelResponseError, UnknownCallerError, is_rate_limited
from taskpilot.logging_utils import task_scope
from taskpilot.tools.registry import ToolRegistry

DEFAULT_MAX_ITERATIONS = 5
DEFAULT_EMPTY_RESPONSE_RETRIES = 3
HISTORY_ROLES = frozenset({"user", "assistant"})

COMPLETED_FALLBACK = "Task completed."
PARTIAL_MESSAGE = "Task partially completed: the maximum number of iterations was reached."
EMPTY_RESPONSE_MESSAGE = (
    "Sorry, the request could not be completed because the model did not produce an answer. "
    "Try rephrasing the request or contact an administrator."
)
RATE_LIMIT_MESSAGE = "The model provider's request limit was exceeded. Check the limits of your API key and try again later."
CANCELLED_MESSAGE = "Task execution was cancelled."


@dataclass
class _ExecutionState:
    task_id: str
    request: str
    caller: str
    conversation_id: str | None
    dispatcher: ToolDispatcher
    turns: list[ConversationTurn] = field(default_factory=list)
    iteration: int = 0
    started: float = field(default_factory=time.monotonic)


class TaskLoop:
    """Drives a bounded model conversation and dispatches the tools it asks for."""

    def __init__(
        self,
        *,
        model: ChatModel,
        registry: ToolRegistry,
        directory: UserDirectory,
        history: ActionHistory,
        recorder: AuditRecorder,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        empty_response_retries: int = DEFAULT_EMPTY_RESPONSE_RETRIES,
        model_timeout_seconds: float | None = None,
        tool_timeout_seconds: float | None = None,
        recent_actions_limit: int = 5,
        known_users_limit: int = 20,
    ) -> None:
        self._model = model
        self._registry = registry
        self._directory = directory
        self._history = history
        self._recorder = recorder
        self._max_iterations = max_iterations
        self._empty_response_retries = empty_response_retries
        self._model_timeout_seconds = model_timeout_seconds
        self._tool_timeout_seconds = tool_timeout_seconds
        self._recent_actions_limit = recent_actions_limit
        self._known_users_limit = known_users_limit

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    async def execute_task(
        self,
        request: str,
        caller: str,
        history: Iterable[Mapping[str, Any]] | None = None,
        conversation_id: str | None = None,
    ) -> TaskResult:
        """Run one task to a terminal result; the result is audited before it is returned."""

        task_id = uuid.uuid4().hex[:12]
        with task_scope(task_id):
            state = _ExecutionState(
                task_id=task_id,
                request=request,
                caller=caller,
                conversation_id=conversation_id,
                dispatcher=ToolDispatcher(self._registry, caller=caller, timeout_seconds=self._tool_timeout_seconds),
            )
            logger.info("task.start caller={} conversation={}", caller, conversation_id)
            try:
                result, error_message = await self._run(state, history)
            except asyncio.CancelledError:
                logger.warning("task.cancelled iteration={}", state.iteration)
                result = self._result(state, "error", CANCELLED_MESSAGE, error=CANCELLED_MESSAGE)
                await self._audit(state, result, CANCELLED_MESSAGE)
                raise

            logger.info(
                "task.finish status={} iterations={} actions={}",
                result.status,
                result.iterations,
                len(result.actions),
            )
            await self._audit(state, result, error_message)
            return result

    async def _run(
        self,
        state: _ExecutionState,
        history: Iterable[Mapping[str, Any]] | None,
    ) -> tuple[TaskResult, str | None]:
        try:
            state.turns = self._seed(state, history)
        except UnknownCallerError as exc:
            logger.warning("task.unknown_caller caller={}", state.caller)
            return self._result(state, "error", str(exc), error=str(exc)), str(exc)
        except Exception as exc:
            logger.exception("task.seed.error")
            message = str(exc) or exc.__class__.__name__
            return self._result(state, "error", f"Task failed: {message}", error=message), message

        while state.iteration < self._max_iterations:
            state.iteration += 1
            logger.info("task.step iteration={}/{}", state.iteration, self._max_iterations)
            try:
                reply = await self._chat(state.turns)
            except TimeoutError:
                message = f"model did not respond within {self._model_timeout_seconds}s"
                logger.error("model.call.timeout iteration={}", state.iteration)
                return self._result(state, "error", f"Task failed: {message}", error=message), message
            except Exception as exc:
                logger.exception("model.call.error")
                if is_rate_limited(exc):
                    return self._result(state, "error", RATE_LIMIT_MESSAGE, error=str(exc)), RATE_LIMIT_MESSAGE
                message = str(exc) or exc.__class__.__name__
                return self._result(state, "error", f"Task failed: {message}", error=message), message

            turn = interpret(reply)
            if turn.is_terminal:
                if turn.text.strip():
                    return self._result(state, "success", turn.text), None
                if state.iteration < min(self._empty_response_retries, self._max_iterations):
                    logger.warning("model.reply.empty iteration={} action=nudge", state.iteration)
                    state.turns.append(ConversationTurn.system(corrective_instruction()))
                    continue
                empty = EmptyModelResponseError(f"model returned empty responses after {state.iteration} iterations")
                logger.error("model.reply.empty iteration={} action=abort", state.iteration)
                return self._result(state, "error", EMPTY_RESPONSE_MESSAGE, error=str(empty)), str(empty)

            logger.info(
                "task.dispatch channel={} invocations={} dropped={}",
                turn.channel,
                len(turn.invocations),
                len(turn.diagnostics),
            )
            for invocation in turn.invocations:
                state.turns.append(await self._dispatch(state.dispatcher, invocation))

        logger.warning("task.max_iterations reached={}", self._max_iterations)
        return self._result(state, "partial_success", PARTIAL_MESSAGE), None

    def _seed(
        self,
        state: _ExecutionState,
        history: Iterable[Mapping[str, Any]] | None,
    ) -> list[ConversationTurn]:
        profile = self._directory.get_profile(state.caller)
        if profile is None:
            raise UnknownCallerError(f"Unknown user: {state.caller}")

        recent = self._history.recent(
            state.caller,
            conversation_id=state.conversation_id,
            limit=self._recent_actions_limit,
        )
        system_prompt = build_system_prompt(
            profile,
            registry=self._registry,
            recent_actions=recent,
            known_users=self._directory.known_identities(self._known_users_limit),
        )
        turns = [ConversationTurn.system(system_prompt)]
        turns.extend(history_turns(history))
        turns.append(ConversationTurn.user(state.request))
        return turns

    async def _chat(self, turns: list[ConversationTurn]) -> ModelReply:
        async with asyncio.timeout(self._model_timeout_seconds):
            return await self._model.chat(list(turns))

    @staticmethod
    async def _dispatch(dispatcher: ToolDispatcher, invocation: ToolInvocation) -> ConversationTurn:
        repeated = dispatcher.seen(invocation)
        outcome = await dispatcher.dispatch(invocation)
        if repeated:
            return ConversationTurn(
                role="tool_result",
                content=reminder_text(outcome),
                invocation=invocation,
                status=outcome.status,
            )
        return ConversationTurn.tool_result(invocation, outcome)

    @staticmethod
    def _result(
        state: _ExecutionState,
        status: TaskStatus,
        text: str,
        *,
        error: str | None = None,
    ) -> TaskResult:
        return TaskResult(
            status=status,
            result_text=text if text.strip() else COMPLETED_FALLBACK,
            actions=state.dispatcher.actions,
            iterations=state.iteration,
            error=error,
        )

    async def _audit(self, state: _ExecutionState, result: TaskResult, error_message: str | None) -> None:
        summary = ExecutionSummary(
            task_id=state.task_id,
            caller=state.caller,
            request=state.request,
            result=result,
            duration_ms=int((time.monotonic() - state.started) * 1000),
            conversation_id=state.conversation_id,
            error_message=error_message,
        )
        try:
            await asyncio.shield(asyncio.to_thread(self._recorder.record, summary, result.actions))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("audit.error task={}", state.task_id)


def history_turns(history: Iterable[Mapping[str, Any]] | None) -> list[ConversationTurn]:
    """Keep prior user and assistant turns that carry content."""
    if not history:
        return []
    turns: list[ConversationTurn] = []
    for item in history:
        role = item.get("role")
        content = item.get("content")
        if role not in HISTORY_ROLES or content is None:
            continue
        turns.append(ConversationTurn(role=role, content=str(content)))
    return turns
