"""Republic integration helpers."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

from loguru import logger
from republic import LLM, Tool

from taskpilot.config import Settings
from taskpilot.core.types import ConversationTurn, ModelReply, StructuredToolCall
from taskpilot.errors import RateLimitedError, is_rate_limited
from taskpilot.tools.registry import ToolRegistry


def render_turn(turn: ConversationTurn) -> dict[str, Any]:
    """Render one turn as a chat message; tool results travel as user messages."""

    if turn.role != "tool_result":
        return {"role": turn.role, "content": turn.content}
    name = turn.invocation.name if turn.invocation is not None else "-"
    status = turn.status or "completed"
    return {
        "role": "user",
        "content": f'<tool_result name="{name}" status="{status}">\n{turn.content}\n</tool_result>',
    }


def render_messages(turns: Sequence[ConversationTurn]) -> list[dict[str, Any]]:
    return [render_turn(turn) for turn in turns]


class RepublicChatModel:
    """Chat model backed by a republic LLM client."""

    def __init__(self, llm: Any, *, tools: Sequence[Tool] = (), max_tokens: int = 1024) -> None:
        self._llm = llm
        self._tools = list(tools)
        self._max_tokens = max_tokens

    @property
    def tool_names(self) -> list[str]:
        return [tool.name for tool in self._tools]

    async def chat(self, turns: Sequence[ConversationTurn]) -> ModelReply:
        messages = render_messages(turns)
        try:
            response = await asyncio.to_thread(
                self._llm.chat.raw,
                messages=messages,
                tools=self._tools,
                max_tokens=self._max_tokens,
            )
        except Exception as exc:
            if is_rate_limited(exc):
                raise RateLimitedError(str(exc)) from exc
            raise

        reply = ModelReply(text=extract_text(response), tool_calls=extract_tool_calls(response))
        logger.debug("model.reply text_chars={} tool_calls={}", len(reply.text or ""), len(reply.tool_calls))
        return reply


def extract_text(response: Any) -> str | None:
    if isinstance(response, str):
        return response
    message = _first_message(response)
    if message is None:
        return None
    return getattr(message, "content", None)


def extract_tool_calls(response: Any) -> list[StructuredToolCall]:
    message = _first_message(response)
    if message is None:
        return []
    calls: list[StructuredToolCall] = []
    for idx, tool_call in enumerate(getattr(message, "tool_calls", None) or []):
        function = getattr(tool_call, "function", None)
        if function is None:
            continue
        calls.append(
            StructuredToolCall(
                name=getattr(function, "name", None),
                arguments=getattr(function, "arguments", None),
                call_id=getattr(tool_call, "id", None) or str(idx),
            )
        )
    return calls


def _first_message(response: Any) -> Any:
    choices = getattr(response, "choices", None)
    if not choices:
        return None
    return getattr(choices[0], "message", None)


def build_llm(settings: Settings) -> LLM:
    """Build the republic LLM client from settings."""

    return LLM(
        settings.require_model(),
        api_key=settings.api_key,
        api_base=settings.api_base,
    )


def build_chat_model(settings: Settings, registry: ToolRegistry, llm: Any | None = None) -> RepublicChatModel:
    """Build the chat model; tool schemas are only sent when native tools are enabled."""

    tools = registry.model_tools() if settings.native_tools else []
    return RepublicChatModel(llm or build_llm(settings), tools=tools, max_tokens=settings.max_tokens)
