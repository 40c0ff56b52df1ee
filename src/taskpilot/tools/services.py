"""Meeting and mail collaborators used by the built-in tools."""

from __future__ import annotations

import json
import re
import threading
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

from loguru import logger

DEFAULT_JITSI_BASE = "https://meet.jit.si"
SLUG_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class Meeting:
    """A scheduled meeting."""

    title: str
    start: datetime
    duration_minutes: int
    attendees: list[str]
    organizer: str
    url: str
    description: str = ""

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)


class MeetingScheduler(Protocol):
    def schedule(
        self,
        *,
        title: str,
        start: datetime,
        duration_minutes: int,
        attendees: Sequence[str],
        description: str,
        organizer: str,
    ) -> Meeting: ...


class Mailer(Protocol):
    def send_bulk(self, recipients: Sequence[str], subject: str, body: str) -> None: ...


@dataclass
class JitsiMeetingScheduler:
    """Creates Jitsi room links and keeps scheduled meetings in memory."""

    base_url: str = DEFAULT_JITSI_BASE
    meetings: list[Meeting] = field(default_factory=list)

    def schedule(
        self,
        *,
        title: str,
        start: datetime,
        duration_minutes: int,
        attendees: Sequence[str],
        description: str,
        organizer: str,
    ) -> Meeting:
        slug = SLUG_RE.sub("-", title.lower()).strip("-") or "meeting"
        meeting = Meeting(
            title=title,
            start=start,
            duration_minutes=duration_minutes,
            attendees=list(attendees),
            organizer=organizer,
            url=f"{self.base_url.rstrip('/')}/{slug}-{uuid.uuid4().hex[:8]}",
            description=description,
        )
        self.meetings.append(meeting)
        logger.info("meeting.scheduled title={} attendees={} url={}", title, len(meeting.attendees), meeting.url)
        return meeting


class OutboxMailer:
    """Appends outgoing mail to a JSONL outbox instead of delivering it."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def send_bulk(self, recipients: Sequence[str], subject: str, body: str) -> None:
        sent_at = datetime.now(UTC).isoformat()
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                for recipient in recipients:
                    payload = {"to": recipient, "subject": subject, "body": body, "sent_at": sent_at}
                    handle.write(json.dumps(payload, ensure_ascii=False) + "\n")
        logger.info("mail.queued recipients={} subject={}", len(recipients), subject)
