from __future__ import annotations

from typing import Any

import pytest
from fakes import CALLER, EchoInput, RecordingAudit

from taskpilot.core.loop import TaskLoop
from taskpilot.core.ports import UserProfile
from taskpilot.directory import InMemoryUserDirectory
from taskpilot.tools.registry import ToolRegistry


@pytest.fixture
def directory() -> InMemoryUserDirectory:
    return InMemoryUserDirectory([
        UserProfile(email=CALLER, first_name="Olga", last_name="Owner", department="Management", role="CEO"),
        UserProfile(email="anna@example.com", first_name="Anna"),
        UserProfile(email="ivan@example.com", first_name="Ivan"),
    ])


@pytest.fixture
def calls() -> list[dict[str, Any]]:
    return []


@pytest.fixture
def registry(calls: list[dict[str, Any]]) -> ToolRegistry:
    registry = ToolRegistry()

    @registry.register("echo", schema=EchoInput, description="Echo text back")
    def echo(params: EchoInput, caller: str) -> str:
        calls.append({"tool": "echo", "text": params.text, "caller": caller})
        return f"echo:{params.text}"

    @registry.register("boom", description="Always fails")
    def boom(params: dict[str, Any], caller: str) -> str:
        calls.append({"tool": "boom", "params": params})
        raise RuntimeError("boom failed")

    return registry


@pytest.fixture
def audit() -> RecordingAudit:
    return RecordingAudit()


@pytest.fixture
def make_loop(registry: ToolRegistry, directory: InMemoryUserDirectory, audit: RecordingAudit):
    def _make(model: Any, **kwargs: Any) -> TaskLoop:
        recorder = kwargs.pop("recorder", audit)
        return TaskLoop(
            model=model,
            registry=kwargs.pop("registry", registry),
            directory=directory,
            history=recorder,
            recorder=recorder,
            **kwargs,
        )

    return _make
