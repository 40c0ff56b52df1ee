"""Application bootstrap helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger

from taskpilot.audit import FileAuditStore
from taskpilot.config import Settings, load_settings
from taskpilot.core.loop import TaskLoop
from taskpilot.core.ports import ChatModel
from taskpilot.directory import InMemoryUserDirectory, load_user_directory
from taskpilot.integrations.republic_client import build_chat_model
from taskpilot.tools.builtin import register_builtin_tools
from taskpilot.tools.registry import ToolRegistry
from taskpilot.tools.services import JitsiMeetingScheduler, OutboxMailer


@dataclass
class AppRuntime:
    """Wired collaborators for one process."""

    settings: Settings
    registry: ToolRegistry
    directory: InMemoryUserDirectory
    audit: FileAuditStore
    meetings: JitsiMeetingScheduler
    mailer: OutboxMailer
    loop: TaskLoop


def build_registry(
    directory: InMemoryUserDirectory,
    meetings: JitsiMeetingScheduler,
    mailer: OutboxMailer,
) -> ToolRegistry:
    registry = ToolRegistry()
    register_builtin_tools(registry, directory=directory, meetings=meetings, mailer=mailer)
    return registry


def build_runtime(
    settings: Settings | None = None,
    *,
    model: ChatModel | None = None,
    llm: Any | None = None,
    **overrides: Any,
) -> AppRuntime:
    """Build the runtime; a ready chat model or raw llm client may be injected."""

    settings = settings or load_settings(**overrides)
    directory = load_user_directory(settings.users_file)
    meetings = JitsiMeetingScheduler()
    mailer = OutboxMailer(settings.outbox_path)
    registry = build_registry(directory, meetings, mailer)
    audit = FileAuditStore(settings.audit_path)
    chat_model = model or build_chat_model(settings, registry, llm=llm)

    loop = TaskLoop(
        model=chat_model,
        registry=registry,
        directory=directory,
        history=audit,
        recorder=audit,
        max_iterations=settings.max_iterations,
        empty_response_retries=settings.empty_response_retries,
        model_timeout_seconds=settings.model_timeout_seconds,
        tool_timeout_seconds=settings.tool_timeout_seconds,
        recent_actions_limit=settings.recent_actions_limit,
        known_users_limit=settings.known_users_limit,
    )
    logger.debug("app.ready tools={} audit={}", registry.names(), audit.path)
    return AppRuntime(
        settings=settings,
        registry=registry,
        directory=directory,
        audit=audit,
        meetings=meetings,
        mailer=mailer,
        loop=loop,
    )
