"""Unified tool registry."""

from __future__ import annotations

import asyncio
import inspect
import json
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger
from pydantic import BaseModel
from republic import Tool

from taskpilot.errors import UnknownToolError

ToolHandler = Callable[[Any, str], str | Awaitable[str]]


ARGUMENT_PREVIEW_WIDTH = 30


def _preview(value: Any, width: int = ARGUMENT_PREVIEW_WIDTH) -> str:
    rendered = json.dumps(value, ensure_ascii=False, default=str)
    if len(rendered) <= width:
        return rendered
    return rendered[: max(width - 3, 0)] + "..."


@dataclass(frozen=True)
class ToolDescriptor:
    """Tool metadata and runtime handle."""

    name: str
    description: str
    handler: ToolHandler
    schema: type[BaseModel] | None = None
    source: str = "builtin"

    def parameters(self) -> dict[str, Any]:
        if self.schema is None:
            return {"type": "object", "properties": {}}
        return self.schema.model_json_schema()

    def parse(self, arguments: dict[str, Any]) -> Any:
        """Validate raw arguments against the declared schema."""
        if self.schema is None:
            return dict(arguments)
        return self.schema.model_validate(arguments)


class ToolRegistry:
    """Name to handler table, populated at startup and read-only afterwards."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDescriptor] = {}

    def register(
        self,
        name: str,
        handler: ToolHandler | None = None,
        schema: type[BaseModel] | None = None,
        *,
        description: str = "",
        source: str = "builtin",
    ) -> Any:
        """Register a handler, or return a decorator when no handler is given."""

        def _register(func: ToolHandler) -> ToolHandler:
            if name in self._tools:
                raise ValueError(f"Duplicate tool name: {name}")
            self._tools[name] = ToolDescriptor(
                name=name,
                description=description or (inspect.getdoc(func) or "").strip(),
                handler=func,
                schema=schema,
                source=source,
            )
            return func

        if handler is None:
            return _register
        _register(handler)
        return handler

    def has(self, name: str) -> bool:
        return name in self._tools

    def get(self, name: str) -> ToolDescriptor | None:
        return self._tools.get(name)

    def resolve(self, name: str) -> ToolDescriptor:
        descriptor = self._tools.get(name)
        if descriptor is None:
            raise UnknownToolError(name)
        return descriptor

    def names(self) -> list[str]:
        return sorted(self._tools)

    def descriptors(self) -> list[ToolDescriptor]:
        return sorted(self._tools.values(), key=lambda item: item.name)

    def prompt_rows(self) -> list[str]:
        rows: list[str] = []
        for index, descriptor in enumerate(self.descriptors(), start=1):
            rows.append(f"{index}. {descriptor.name} - {descriptor.description}")
            properties = descriptor.parameters().get("properties", {})
            if properties:
                rows.append(f"   Parameters: {_render_parameters(properties, descriptor.parameters())}")
        return rows

    def model_tools(self) -> list[Tool]:
        return [
            Tool(
                name=descriptor.name,
                description=descriptor.description,
                parameters=descriptor.parameters(),
                handler=None,
            )
            for descriptor in self.descriptors()
        ]

    async def execute(self, name: str, *, arguments: dict[str, Any], caller: str) -> str:
        descriptor = self.resolve(name)
        params = descriptor.parse(arguments)
        self._log_tool_call(name, arguments, caller)

        start = time.monotonic()
        try:
            if inspect.iscoroutinefunction(descriptor.handler):
                result = await descriptor.handler(params, caller)
            else:
                # A timed-out sync handler keeps running in its worker thread.
                result = await asyncio.to_thread(descriptor.handler, params, caller)
            if inspect.isawaitable(result):
                result = await result
        except Exception:
            logger.exception("tool.call.error name={}", name)
            raise
        finally:
            duration = time.monotonic() - start
            logger.info("tool.call.end name={} duration={:.3f}ms", name, duration * 1000)
        return result if isinstance(result, str) else str(result)

    def _log_tool_call(self, name: str, arguments: dict[str, Any], caller: str) -> None:
        params = ", ".join(f"{key}={_preview(value)}" for key, value in arguments.items())
        logger.info("tool.call.start name={} caller={} {{ {} }}", name, caller, params)


def _render_parameters(properties: dict[str, Any], schema: dict[str, Any]) -> str:
    required = set(schema.get("required", []))
    parts: list[str] = []
    for key, field_schema in properties.items():
        kind = field_schema.get("type", "any")
        if kind == "array":
            item_type = field_schema.get("items", {}).get("type", "any")
            kind = f"array of {item_type}"
        details = [kind]
        if field_schema.get("format"):
            details.append(field_schema["format"])
        if "default" in field_schema:
            details.append(f"default {json.dumps(field_schema['default'], ensure_ascii=False)}")
        elif key not in required:
            details.append("optional")
        parts.append(f"{key} ({', '.join(details)})")
    return ", ".join(parts)
