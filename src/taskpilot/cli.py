"""Command line interface for taskpilot."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

from taskpilot.app import build_registry, build_runtime
from taskpilot.audit import FileAuditStore
from taskpilot.config import load_settings
from taskpilot.core.types import TaskResult
from taskpilot.directory import InMemoryUserDirectory
from taskpilot.errors import ConfigurationError
from taskpilot.logging_utils import configure_logging
from taskpilot.tools.services import JitsiMeetingScheduler, OutboxMailer

app = typer.Typer(name="taskpilot", help="Turn natural-language requests into tool actions.", add_completion=False)
console = Console()

STATUS_STYLES = {"success": "green", "completed": "green", "partial_success": "yellow", "error": "red", "failed": "red"}


def _exit_with_error(message: str) -> NoReturn:
    console.print(f"[bold red]Error:[/bold red] {message}")
    raise typer.Exit(1)


def _styled(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _load_history(path: Path | None) -> list[dict[str, Any]] | None:
    if path is None:
        return None
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        _exit_with_error(f"cannot read history file {path}: {exc}")
    if not isinstance(payload, list):
        _exit_with_error(f"history file {path} must contain a JSON list")
    return [item for item in payload if isinstance(item, dict)]


def render_result(result: TaskResult) -> None:
    console.print(f"[bold]Status:[/bold] {_styled(result.status)}")
    console.print(f"[bold]Result:[/bold] {result.result_text}")
    if not result.actions:
        return
    table = Table(title="Actions")
    table.add_column("#", justify="right")
    table.add_column("Tool", style="cyan")
    table.add_column("Status")
    table.add_column("Output")
    for index, action in enumerate(result.actions, start=1):
        table.add_row(str(index), action.name, _styled(action.status), action.text)
    console.print(table)


@app.command()
def run(
    request: str = typer.Argument(..., help="Natural-language task"),
    caller: str = typer.Option(..., "--caller", "-c", help="Email of the requesting user"),
    conversation_id: str | None = typer.Option(None, "--conversation-id", help="Conversation identifier"),
    history: Path | None = typer.Option(None, "--history", help="JSON list of prior {role, content} turns"),
    max_iterations: int | None = typer.Option(None, "--max-iterations", min=1, help="Model round-trip ceiling"),
    model: str | None = typer.Option(None, "--model", help="Model in provider:model form"),
) -> None:
    """Execute one task and print its result."""

    settings = load_settings(max_iterations=max_iterations, model=model)
    configure_logging(settings.log_level)
    prior_turns = _load_history(history)
    try:
        runtime = build_runtime(settings)
    except ConfigurationError as exc:
        _exit_with_error(str(exc))

    result = asyncio.run(
        runtime.loop.execute_task(request, caller, history=prior_turns, conversation_id=conversation_id)
    )
    render_result(result)
    if result.status == "error":
        raise typer.Exit(1)


@app.command("history")
def history_command(
    caller: str = typer.Option(..., "--caller", "-c", help="Email of the user"),
    status: str | None = typer.Option(None, "--status", help="Filter by status"),
    action_type: str | None = typer.Option(None, "--action-type", help="Filter by action type"),
    limit: int = typer.Option(20, "--limit", min=1, help="Maximum records to show"),
) -> None:
    """List audit records for a user, newest first."""

    settings = load_settings()
    configure_logging(settings.log_level)
    records = FileAuditStore(settings.audit_path).history(caller, status=status, action_type=action_type, limit=limit)
    if not records:
        console.print("[dim]No records.[/dim]")
        return

    table = Table(title=f"History for {caller}")
    table.add_column("Created")
    table.add_column("Action", style="cyan")
    table.add_column("Status")
    table.add_column("Input")
    table.add_column("Error")
    for record in records:
        task = record.input_data.get("task", "")
        table.add_row(record.created_at, record.action_type, _styled(record.status), str(task), record.error_message or "")
    console.print(table)


@app.command()
def tools() -> None:
    """List registered tools."""

    settings = load_settings()
    registry = build_registry(InMemoryUserDirectory(), JitsiMeetingScheduler(), OutboxMailer(settings.outbox_path))
    table = Table(title="Tools")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    for descriptor in registry.descriptors():
        table.add_row(descriptor.name, descriptor.description)
    console.print(table)
