"""Interfaces of the collaborators the task loop depends on."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from taskpilot.core.types import ConversationTurn, ModelReply, TaskResult, ToolOutcome

if TYPE_CHECKING:
    from taskpilot.audit.records import ExecutionRecord


@dataclass(frozen=True)
class UserProfile:
    """Directory fields used to ground the system prompt."""

    email: str
    first_name: str | None = None
    last_name: str | None = None
    department: str | None = None
    role: str | None = None


@dataclass(frozen=True)
class ExecutionSummary:
    """Everything the audit recorder needs about one finished execution."""

    task_id: str
    caller: str
    request: str
    result: TaskResult
    duration_ms: int
    conversation_id: str | None = None
    error_message: str | None = None


class ChatModel(Protocol):
    async def chat(self, turns: Sequence[ConversationTurn]) -> ModelReply: ...


class UserDirectory(Protocol):
    def get_profile(self, identity: str) -> UserProfile | None: ...

    def known_identities(self, limit: int) -> list[str]: ...

    def exists(self, identity: str) -> bool: ...


class ActionHistory(Protocol):
    def recent(
        self,
        identity: str,
        *,
        conversation_id: str | None = None,
        limit: int = 5,
    ) -> list[ExecutionRecord]: ...


class AuditRecorder(Protocol):
    def record(self, summary: ExecutionSummary, outcomes: Sequence[ToolOutcome]) -> None: ...
