"""System prompt assembly."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING

from taskpilot.core.interpreter import ARGS_MARKER, CALL_MARKER
from taskpilot.core.ports import UserProfile
from taskpilot.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from taskpilot.audit.records import ExecutionRecord

MAX_TASK_PREVIEW = 100

CALL_SYNTAX = f'{CALL_MARKER} tool_name\n{ARGS_MARKER} {{"param1": "value1", "param2": "value2"}}'
CALL_EXAMPLE = (
    f"{CALL_MARKER} schedule_meeting\n"
    f'{ARGS_MARKER} {{"title": "Strategy sync", "start_time": "2025-11-14T16:00:00", '
    '"attendees": ["colleague@example.com"]}'
)

RULES = (
    "Rules:",
    "1. Resolve relative dates such as \"tomorrow\" from the current date above.",
    "2. Do not ask for the user's email: use the email from the user information above.",
    "3. Only use email addresses from the known users list. Never invent addresses.",
    "4. If a requested participant is not a known user, tell the user so.",
    "5. Never claim an action is done before calling the matching tool and reading its result.",
    "6. When a tool result arrives, report the outcome to the user in plain language.",
    "7. Do not repeat a tool call that already has a result.",
)


def build_system_prompt(
    profile: UserProfile,
    *,
    registry: ToolRegistry,
    recent_actions: Sequence[ExecutionRecord] = (),
    known_users: Sequence[str] = (),
    now: datetime | None = None,
) -> str:
    """Build the system turn for one execution."""

    blocks = [
        "You are a task agent assisting a business owner. "
        "Turn the user's natural-language request into actions by calling tools.",
        _render_profile(profile),
        f"Current date and time: {(now or datetime.now()).replace(microsecond=0).isoformat()}",
    ]
    if recent := _render_recent_actions(recent_actions):
        blocks.append(recent)
    blocks.append("Available tools:\n" + "\n".join(registry.prompt_rows() or ["(none)"]))
    if known_users:
        blocks.append("Known users (reference only):\n" + "\n".join(f"- {email}" for email in known_users))
    blocks.append("\n".join(RULES))
    blocks.append("Date and time format: ISO 8601 (for example 2025-11-14T15:00:00).")
    blocks.append(_call_contract())
    return "\n\n".join(blocks)


def corrective_instruction() -> str:
    """Nudge sent after an empty model response."""
    return (
        "Your previous response was empty. Answer the user's request now. "
        "If the request needs an action, call the tool immediately using exactly this format:\n"
        f"{CALL_SYNTAX}\n"
        "Do not return an empty response and do not only describe what you plan to do."
    )


def _render_profile(profile: UserProfile) -> str:
    lines = ["User information:", f"- Email: {profile.email}"]
    for label, value in (
        ("First name", profile.first_name),
        ("Last name", profile.last_name),
        ("Department", profile.department),
        ("Role", profile.role),
    ):
        if value:
            lines.append(f"- {label}: {value}")
    lines.append("The user's email is the organizer for any meeting you schedule.")
    return "\n".join(lines)


def _render_recent_actions(records: Sequence[ExecutionRecord]) -> str:
    lines: list[str] = []
    for record in records:
        task = record.input_data.get("task")
        if task is None:
            continue
        task = str(task)
        if len(task) > MAX_TASK_PREVIEW:
            task = task[:MAX_TASK_PREVIEW] + "..."
        lines.append(f"- Task: {task} (status: {record.status})")
    if not lines:
        return ""
    return "Context from the user's previous requests:\n" + "\n".join(lines)


def _call_contract() -> str:
    return (
        "<tool_call_contract>\n"
        "When the request needs an action you MUST call a tool instead of answering with text.\n"
        f"Call format:\n{CALL_SYNTAX}\n\n"
        f"Example:\n{CALL_EXAMPLE}\n\n"
        "Always return content: either a tool call in the format above or a plain-text answer.\n"
        "After a tool result arrives, answer with the outcome instead of calling the tool again.\n"
        "</tool_call_contract>"
    )
