"""Runtime logging helpers."""

from __future__ import annotations

import contextlib
import os
import sys
from collections.abc import Generator
from contextvars import ContextVar

import loguru
from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<7} | {name}:{function}:{line} | {extra[task]} | {message}"

_task_context: ContextVar[str] = ContextVar("task", default="-")
_CONFIGURED = False


def current_task() -> str:
    """Get the id of the task execution running in this context."""
    return _task_context.get()


@contextlib.contextmanager
def task_scope(task_id: str) -> Generator[str, None, None]:
    token = _task_context.set(task_id)
    try:
        yield task_id
    finally:
        _task_context.reset(token)


def configure_logging(level: str | None = None, *, force: bool = False) -> None:
    """Configure process-level logging once."""

    def inject_context(record: loguru.Record) -> None:
        record["extra"]["task"] = current_task()

    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    resolved = (level or os.getenv("TASKPILOT_LOG_LEVEL", "INFO")).upper()
    logger.remove()
    logger.configure(patcher=inject_context)
    logger.add(
        sys.stderr,
        level=resolved,
        format=LOG_FORMAT,
        backtrace=False,
        diagnose=False,
    )
    _CONFIGURED = True
