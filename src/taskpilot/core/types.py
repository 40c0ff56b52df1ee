"""Shared core dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["system", "user", "assistant", "tool_result"]
OutcomeStatus = Literal["completed", "failed"]
TaskStatus = Literal["success", "partial_success", "error"]

STATUS_COMPLETED: OutcomeStatus = "completed"
STATUS_FAILED: OutcomeStatus = "failed"


@dataclass(frozen=True)
class ToolInvocation:
    """One requested tool call, identified by name and argument text."""

    name: str
    raw_arguments: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.raw_arguments)


@dataclass(frozen=True)
class ToolOutcome:
    """Result of dispatching one invocation."""

    name: str
    status: OutcomeStatus
    output: dict[str, Any]
    raw_arguments: str = ""
    duration_ms: int | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.raw_arguments)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_COMPLETED

    @property
    def text(self) -> str:
        if self.ok:
            return str(self.output.get("result", ""))
        return str(self.output.get("error", ""))

    @classmethod
    def completed(cls, invocation: ToolInvocation, result: str, *, duration_ms: int | None = None) -> ToolOutcome:
        return cls(
            name=invocation.name,
            status=STATUS_COMPLETED,
            output={"result": result},
            raw_arguments=invocation.raw_arguments,
            duration_ms=duration_ms,
        )

    @classmethod
    def failed(cls, invocation: ToolInvocation, error: str, *, duration_ms: int | None = None) -> ToolOutcome:
        return cls(
            name=invocation.name,
            status=STATUS_FAILED,
            output={"error": error},
            raw_arguments=invocation.raw_arguments,
            duration_ms=duration_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "status": self.status, "output": dict(self.output)}


@dataclass(frozen=True)
class ConversationTurn:
    """One role-tagged message in the model-facing conversation."""

    role: Role
    content: str
    invocation: ToolInvocation | None = None
    status: OutcomeStatus | None = None

    @classmethod
    def system(cls, content: str) -> ConversationTurn:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> ConversationTurn:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> ConversationTurn:
        return cls(role="assistant", content=content)

    @classmethod
    def tool_result(cls, invocation: ToolInvocation, outcome: ToolOutcome) -> ConversationTurn:
        return cls(role="tool_result", content=outcome.text, invocation=invocation, status=outcome.status)


@dataclass(frozen=True)
class StructuredToolCall:
    """Tool call as reported by a provider's native tool-call channel."""

    name: str | None
    arguments: str | dict[str, Any] | None = None
    call_id: str | None = None


@dataclass(frozen=True)
class ModelReply:
    """One model turn: optional text plus optional structured tool calls."""

    text: str | None = None
    tool_calls: list[StructuredToolCall] = field(default_factory=list)


@dataclass(frozen=True)
class TaskResult:
    """Terminal value of one task execution."""

    status: TaskStatus
    result_text: str
    actions: tuple[ToolOutcome, ...] = ()
    iterations: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "result": self.result_text,
            "actions": [action.to_dict() for action in self.actions],
        }
