"""Application-level exception types for taskpilot."""

from __future__ import annotations

import re


class TaskPilotError(Exception):
    """Base exception for taskpilot."""


class ConfigurationError(TaskPilotError):
    """Base exception for configuration and startup validation errors."""


class ModelNotConfiguredError(ConfigurationError):
    """Raised when model configuration is missing."""


class InvalidModelFormatError(ConfigurationError):
    """Raised when model format is not provider:model."""


class UnknownCallerError(TaskPilotError):
    """Raised when the caller identity cannot be resolved to a profile."""


class EmptyModelResponseError(TaskPilotError):
    """Raised when the model keeps answering with no usable content."""


class MalformedToolSyntax(TaskPilotError):
    """Raised when a textual tool call cannot be extracted."""


class UnknownToolError(TaskPilotError, KeyError):
    """Raised when a tool name is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"unknown tool: {self.name}"


class ToolExecutionError(TaskPilotError):
    """Raised by tool handlers for expected, user-reportable failures."""


class RateLimitedError(TaskPilotError):
    """Raised when the model provider rejects a call because of rate limits."""


STATUS_429 = re.compile(r"\b429\b")
RATE_LIMIT_MARKERS = ("rate limit", "rate-limit", "rate_limit", "ratelimit", "too many requests")


def is_rate_limited(exc: BaseException) -> bool:
    """Detect provider rate-limit failures by their message or status code."""
    if isinstance(exc, RateLimitedError):
        return True
    if getattr(exc, "status_code", None) == 429:
        return True
    message = str(exc).lower()
    if STATUS_429.search(message):
        return True
    return any(marker in message for marker in RATE_LIMIT_MARKERS)
