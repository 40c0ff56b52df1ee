"""Model turn interpretation.

A model turn asks for tools through one of two channels: the provider's
structured tool-call list, or plain text following the marker grammar that the
system prompt teaches::

    TOOL_CALL: schedule_meeting
    ARGUMENTS: {"title": "Sync", "start_time": "2025-11-14T16:00:00", "attendees": []}

The argument object may be followed (or preceded) by free-form prose, so its
extent is found by brace-depth counting that ignores braces inside JSON
strings.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Literal

from loguru import logger

from taskpilot.core.types import ModelReply, StructuredToolCall, ToolInvocation
from taskpilot.errors import MalformedToolSyntax

CALL_MARKER = "TOOL_CALL:"
ARGS_MARKER = "ARGUMENTS:"
CODE_FENCE = "```"
EMPTY_ARGUMENTS = "{}"

CALL_LINE_RE = re.compile(rf"^[ \t]*{re.escape(CALL_MARKER)}(?P<name>[^\n]*)$", re.MULTILINE)
ARGS_LINE_RE = re.compile(rf"^[ \t]*{re.escape(ARGS_MARKER)}", re.MULTILINE)
TOOL_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_.-]*")

Channel = Literal["structured", "text", "none"]


@dataclass(frozen=True)
class ParsedToolCalls:
    """Invocations found in text plus diagnostics for dropped markers."""

    invocations: list[ToolInvocation] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class InterpretedTurn:
    """One model turn split into text and requested invocations."""

    text: str
    invocations: list[ToolInvocation]
    diagnostics: list[str]
    channel: Channel

    @property
    def is_terminal(self) -> bool:
        return not self.invocations


def interpret(reply: ModelReply) -> InterpretedTurn:
    """Turn one raw model reply into its text and tool invocations."""

    text = reply.text or ""
    structured, diagnostics = _from_structured(reply.tool_calls)
    if structured:
        return InterpretedTurn(text=text, invocations=structured, diagnostics=diagnostics, channel="structured")

    parsed = parse_tool_calls(text)
    return InterpretedTurn(
        text=text,
        invocations=parsed.invocations,
        diagnostics=[*diagnostics, *parsed.diagnostics],
        channel="text" if parsed.invocations else "none",
    )


def parse_tool_calls(text: str) -> ParsedToolCalls:
    """Scan text for marker-formatted tool calls, left to right."""

    invocations: list[ToolInvocation] = []
    diagnostics: list[str] = []
    position = 0
    while (call := CALL_LINE_RE.search(text, position)) is not None:
        next_call = CALL_LINE_RE.search(text, call.end())
        segment_end = next_call.start() if next_call is not None else len(text)
        try:
            invocation, position = _parse_one(text, call, segment_end)
        except MalformedToolSyntax as exc:
            diagnostics.append(str(exc))
            logger.warning("interpreter.drop reason={}", exc)
            position = call.end()
            continue
        invocations.append(invocation)
    return ParsedToolCalls(invocations=invocations, diagnostics=diagnostics)


def extract_json_object(text: str, start: int, end: int | None = None) -> tuple[str, int]:
    """Return the balanced JSON object beginning at or after start, and the index after it."""

    stop = len(text) if end is None else end
    index = _skip_blank(text, start, stop)
    if text.startswith(CODE_FENCE, index):
        newline = text.find("\n", index, stop)
        index = _skip_blank(text, stop if newline == -1 else newline + 1, stop)
    if index >= stop:
        raise MalformedToolSyntax("empty arguments")
    if text[index] != "{":
        raise MalformedToolSyntax(f"arguments do not start with a JSON object: {text[index:index + 20]!r}")

    depth = 0
    in_string = False
    escaped = False
    for cursor in range(index, stop):
        char = text[cursor]
        if escaped:
            escaped = False
            continue
        if char == "\\":
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[index : cursor + 1], cursor + 1
    raise MalformedToolSyntax("unbalanced braces in arguments")


def _parse_one(text: str, call: re.Match[str], segment_end: int) -> tuple[ToolInvocation, int]:
    name = _tool_name(call.group("name"))
    args_line = ARGS_LINE_RE.search(text, call.end(), segment_end)
    if args_line is None:
        raise MalformedToolSyntax(f"{CALL_MARKER} {name} has no {ARGS_MARKER} line")
    try:
        raw, end = extract_json_object(text, args_line.end(), segment_end)
    except MalformedToolSyntax as exc:
        raise MalformedToolSyntax(f"{CALL_MARKER} {name}: {exc}") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedToolSyntax(f"{CALL_MARKER} {name}: arguments are not valid JSON ({exc.msg})") from exc
    if not isinstance(payload, dict):
        raise MalformedToolSyntax(f"{CALL_MARKER} {name}: arguments must be a JSON object")
    return ToolInvocation(name=name, raw_arguments=raw), end


def _tool_name(raw: str) -> str:
    candidate = raw.strip().strip("`*").strip()
    match = TOOL_NAME_RE.match(candidate)
    if match is None:
        raise MalformedToolSyntax(f"{CALL_MARKER} marker without a tool name")
    return match.group(0)


def _skip_blank(text: str, index: int, stop: int) -> int:
    while index < stop and text[index].isspace():
        index += 1
    return index


def _from_structured(calls: Iterable[StructuredToolCall]) -> tuple[list[ToolInvocation], list[str]]:
    invocations: list[ToolInvocation] = []
    diagnostics: list[str] = []
    for call in calls:
        name = call.name.strip() if isinstance(call.name, str) else ""
        if not name:
            diagnostics.append("structured tool call without a name")
            logger.warning("interpreter.drop reason=structured tool call without a name")
            continue
        invocations.append(ToolInvocation(name=name, raw_arguments=_arguments_text(call.arguments)))
    return invocations, diagnostics


def _arguments_text(arguments: str | dict[str, object] | None) -> str:
    if arguments is None:
        return EMPTY_ARGUMENTS
    if isinstance(arguments, dict):
        return json.dumps(arguments, ensure_ascii=False)
    return arguments.strip() or EMPTY_ARGUMENTS
