"""Audit record model."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from taskpilot.core.ports import ExecutionSummary
from taskpilot.core.types import ToolOutcome

TASK_EXECUTION = "task_execution"


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class ExecutionRecord:
    """One audit row: a whole task execution or a single tool outcome."""

    caller: str
    action_type: str
    status: str
    input_data: dict[str, Any] = field(default_factory=dict)
    output_data: dict[str, Any] = field(default_factory=dict)
    conversation_id: str | None = None
    task_id: str | None = None
    error_message: str | None = None
    duration_ms: int | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = field(default_factory=_now)

    @property
    def created(self) -> datetime:
        return datetime.fromisoformat(self.created_at)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "caller": self.caller,
            "conversation_id": self.conversation_id,
            "action_type": self.action_type,
            "status": self.status,
            "input": dict(self.input_data),
            "output": dict(self.output_data),
            "error": self.error_message,
            "duration_ms": self.duration_ms,
            "created_at": self.created_at,
        }

    @classmethod
    def from_payload(cls, payload: object) -> ExecutionRecord | None:
        if not isinstance(payload, dict):
            return None
        caller = payload.get("caller")
        action_type = payload.get("action_type")
        status = payload.get("status")
        record_id = payload.get("id")
        created_at = payload.get("created_at")
        if not all(isinstance(value, str) for value in (caller, action_type, status, record_id, created_at)):
            return None
        input_data = payload.get("input")
        output_data = payload.get("output")
        duration = payload.get("duration_ms")
        return cls(
            id=record_id,
            task_id=payload.get("task_id"),
            caller=caller,
            conversation_id=payload.get("conversation_id"),
            action_type=action_type,
            status=status,
            input_data=dict(input_data) if isinstance(input_data, dict) else {},
            output_data=dict(output_data) if isinstance(output_data, dict) else {},
            error_message=payload.get("error"),
            duration_ms=duration if isinstance(duration, int) else None,
            created_at=created_at,
        )


def build_records(summary: ExecutionSummary, outcomes: Sequence[ToolOutcome]) -> list[ExecutionRecord]:
    """Build the task-level record followed by one record per tool outcome."""

    result = summary.result
    output: dict[str, Any] = {"result": result.result_text, "status": result.status}
    if outcomes:
        output["actions"] = [outcome.to_dict() for outcome in outcomes]

    records = [
        ExecutionRecord(
            task_id=summary.task_id,
            caller=summary.caller,
            conversation_id=summary.conversation_id,
            action_type=TASK_EXECUTION,
            status=result.status,
            input_data={"task": summary.request, "iterations": result.iterations},
            output_data=output,
            error_message=summary.error_message,
            duration_ms=summary.duration_ms,
        )
    ]
    for outcome in outcomes:
        records.append(
            ExecutionRecord(
                task_id=summary.task_id,
                caller=summary.caller,
                conversation_id=summary.conversation_id,
                action_type=outcome.name,
                status=outcome.status,
                input_data={"task": summary.request, "tool": outcome.name, "arguments": outcome.raw_arguments},
                output_data={"status": outcome.status, "output": dict(outcome.output)},
                error_message=None if outcome.ok else outcome.text,
                duration_ms=outcome.duration_ms,
            )
        )
    return records
