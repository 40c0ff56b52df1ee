"""Append-only JSONL audit store."""

from __future__ import annotations

import json
import threading
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger

from taskpilot.audit.records import TASK_EXECUTION, ExecutionRecord, build_records
from taskpilot.core.ports import ExecutionSummary
from taskpilot.core.types import ToolOutcome


class AuditFile:
    """Helper for one JSONL audit file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._read_records: list[ExecutionRecord] = []
        self._read_offset = 0

    def _reset(self) -> None:
        self._read_records = []
        self._read_offset = 0

    def read(self) -> list[ExecutionRecord]:
        with self._lock:
            return self._read_locked()

    def _read_locked(self) -> list[ExecutionRecord]:
        if not self.path.exists():
            self._reset()
            return []

        file_size = self.path.stat().st_size
        if file_size < self._read_offset:
            # The file was truncated or replaced, so cached records are stale.
            self._reset()

        with self.path.open("r", encoding="utf-8", errors="replace") as handle:
            handle.seek(self._read_offset)
            for raw_line in handle:
                line = raw_line.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    continue
                record = ExecutionRecord.from_payload(payload)
                if record is not None:
                    self._read_records.append(record)
            self._read_offset = handle.tell()

        return list(self._read_records)

    def append_many(self, records: Sequence[ExecutionRecord]) -> None:
        if not records:
            return

        with self._lock:
            self._read_locked()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                for record in records:
                    handle.write(json.dumps(record.to_payload(), ensure_ascii=False, default=str) + "\n")
                    self._read_records.append(record)
                self._read_offset = handle.tell()


class FileAuditStore:
    """Audit recorder and action history backed by one JSONL file."""

    def __init__(self, path: Path) -> None:
        self._file = AuditFile(path)

    @property
    def path(self) -> Path:
        return self._file.path

    def record(self, summary: ExecutionSummary, outcomes: Sequence[ToolOutcome]) -> None:
        records = build_records(summary, outcomes)
        self._file.append_many(records)
        logger.debug("audit.recorded task={} records={}", summary.task_id, len(records))

    def records(self) -> list[ExecutionRecord]:
        return self._file.read()

    def recent(
        self,
        identity: str,
        *,
        conversation_id: str | None = None,
        limit: int = 5,
    ) -> list[ExecutionRecord]:
        """Return the caller's latest task records, newest first."""
        if limit <= 0:
            return []
        matches = [
            record
            for record in self._file.read()
            if record.caller == identity
            and record.action_type == TASK_EXECUTION
            and (conversation_id is None or record.conversation_id == conversation_id)
        ]
        return list(reversed(matches))[:limit]

    def history(
        self,
        identity: str,
        *,
        status: str | None = None,
        action_type: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[ExecutionRecord]:
        """Return the caller's records matching every given filter, newest first."""
        matches: list[ExecutionRecord] = []
        for record in reversed(self._file.read()):
            if record.caller != identity:
                continue
            if status is not None and record.status != status:
                continue
            if action_type is not None and record.action_type != action_type:
                continue
            if since is not None and record.created < _aware(since):
                continue
            if until is not None and record.created > _aware(until):
                continue
            matches.append(record)
        return matches[offset : offset + limit]


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
