"""Deduplicating tool dispatcher."""

from __future__ import annotations

import asyncio
import json
import time

from loguru import logger
from pydantic import ValidationError

from taskpilot.core.types import ToolInvocation, ToolOutcome
from taskpilot.errors import ToolExecutionError, UnknownToolError
from taskpilot.tools.registry import ToolRegistry


class ToolDispatcher:
    """Executes invocations for one task execution, each distinct one at most once.

    The dispatcher owns two pieces of per-execution state: the set of
    ``(name, raw_arguments)`` keys already attempted, and the ordered list of
    outcomes. It must not be shared between executions.
    """

    def __init__(self, registry: ToolRegistry, *, caller: str, timeout_seconds: float | None = None) -> None:
        self._registry = registry
        self._caller = caller
        self._timeout_seconds = timeout_seconds
        self._attempted: set[tuple[str, str]] = set()
        self._actions: list[ToolOutcome] = []

    @property
    def actions(self) -> tuple[ToolOutcome, ...]:
        return tuple(self._actions)

    def seen(self, invocation: ToolInvocation) -> bool:
        return invocation.key in self._attempted

    def previous_outcome(self, invocation: ToolInvocation) -> ToolOutcome | None:
        if not self.seen(invocation):
            return None
        for outcome in self._actions:
            if outcome.key == invocation.key:
                return outcome
        return None

    async def dispatch(self, invocation: ToolInvocation) -> ToolOutcome:
        """Run one invocation; a repeated key returns the recorded outcome instead."""

        previous = self.previous_outcome(invocation)
        if previous is not None:
            logger.warning("dispatch.duplicate name={} args={}", invocation.name, invocation.raw_arguments)
            return previous

        self._attempted.add(invocation.key)
        start = time.monotonic()
        outcome = await self._run(invocation, start)
        self._actions.append(outcome)
        logger.info("dispatch.outcome name={} status={}", outcome.name, outcome.status)
        return outcome

    async def _run(self, invocation: ToolInvocation, start: float) -> ToolOutcome:
        name = invocation.name
        try:
            arguments = json.loads(invocation.raw_arguments)
        except json.JSONDecodeError as exc:
            return self._failed(invocation, f"could not parse arguments for {name}: {exc.msg}", start)
        if not isinstance(arguments, dict):
            return self._failed(invocation, f"arguments for {name} must be a JSON object", start)

        try:
            async with asyncio.timeout(self._timeout_seconds):
                result = await self._registry.execute(name, arguments=arguments, caller=self._caller)
        except UnknownToolError as exc:
            logger.warning("dispatch.unknown_tool name={}", name)
            return self._failed(invocation, str(exc), start)
        except ValidationError as exc:
            return self._failed(invocation, f"invalid arguments for {name}: {_validation_summary(exc)}", start)
        except TimeoutError:
            return self._failed(invocation, f"tool {name} timed out after {self._timeout_seconds}s", start)
        except ToolExecutionError as exc:
            return self._failed(invocation, str(exc), start)
        except Exception as exc:
            return self._failed(invocation, str(exc) or exc.__class__.__name__, start)

        return ToolOutcome.completed(invocation, result, duration_ms=_elapsed_ms(start))

    @staticmethod
    def _failed(invocation: ToolInvocation, error: str, start: float) -> ToolOutcome:
        return ToolOutcome.failed(invocation, error, duration_ms=_elapsed_ms(start))


def reminder_text(outcome: ToolOutcome) -> str:
    """Short note telling the model a request was already handled."""
    if outcome.ok:
        return f"Tool {outcome.name} was already executed with these arguments. Result: {outcome.text}"
    return f"Tool {outcome.name} was already attempted with these arguments and failed: {outcome.text}"


def _validation_summary(exc: ValidationError) -> str:
    parts: list[str] = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "arguments"
        parts.append(f"{location}: {error.get('msg', 'invalid')}")
    return "; ".join(parts)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
