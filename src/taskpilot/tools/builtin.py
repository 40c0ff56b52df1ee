"""Built-in tool definitions."""

from __future__ import annotations

from datetime import datetime

from loguru import logger
from pydantic import BaseModel, Field

from taskpilot.core.ports import UserDirectory
from taskpilot.directory import normalize_email
from taskpilot.errors import ToolExecutionError
from taskpilot.tools.registry import ToolRegistry
from taskpilot.tools.services import Mailer, MeetingScheduler

MEETING_TIME_FORMAT = "%d.%m.%Y %H:%M"


class ScheduleMeetingInput(BaseModel):
    title: str = Field(..., min_length=1, description="Meeting title")
    start_time: datetime = Field(..., description="Start time, ISO 8601")
    duration_minutes: int = Field(default=60, ge=1, le=24 * 60, description="Duration in minutes")
    attendees: list[str] = Field(..., description="Attendee emails")
    description: str = Field(default="", description="Meeting description")


class SendNotificationInput(BaseModel):
    recipients: list[str] = Field(..., description="Recipient emails")
    subject: str = Field(..., description="Subject line")
    message: str = Field(..., description="Message body")


class ComposeLetterInput(BaseModel):
    recipient: str = Field(..., description="Recipient email")
    subject: str = Field(..., description="Subject line")
    content: str = Field(..., description="Letter body")


def split_known(directory: UserDirectory, emails: list[str]) -> tuple[list[str], list[str]]:
    """Split emails into directory members and unknown addresses, normalized and deduplicated."""
    known: list[str] = []
    unknown: list[str] = []
    for raw in emails:
        email = normalize_email(raw)
        if not email or email in known or email in unknown:
            continue
        if directory.exists(email):
            known.append(email)
        else:
            unknown.append(email)
    return known, unknown


def _unknown_addresses_error(kind: str, unknown: list[str]) -> ToolExecutionError:
    message = f"No valid {kind}. "
    if unknown:
        message += f"These addresses were not found: {', '.join(unknown)}. "
    message += "Make sure the addresses are correct and belong to existing users."
    return ToolExecutionError(message)


def register_builtin_tools(
    registry: ToolRegistry,
    *,
    directory: UserDirectory,
    meetings: MeetingScheduler,
    mailer: Mailer,
) -> None:
    """Register the meeting, notification and letter tools."""

    register = registry.register

    @register(
        "schedule_meeting",
        schema=ScheduleMeetingInput,
        description="Schedule a meeting: create a conference link, add it to the calendar and invite attendees. "
        "The organizer is the current user.",
    )
    def schedule_meeting(params: ScheduleMeetingInput, caller: str) -> str:
        organizer = normalize_email(caller)
        attendees, unknown = split_known(directory, params.attendees)
        unknown = [email for email in unknown if email != organizer]
        if not [email for email in attendees if email != organizer]:
            raise _unknown_addresses_error("attendees for the meeting", unknown)
        if unknown:
            logger.warning("tool.schedule_meeting.excluded attendees={}", unknown)
        if organizer not in attendees:
            attendees.append(organizer)

        meeting = meetings.schedule(
            title=params.title,
            start=params.start_time,
            duration_minutes=params.duration_minutes,
            attendees=attendees,
            description=params.description,
            organizer=organizer,
        )
        summary = (
            f"Meeting '{meeting.title}' scheduled for {meeting.start.strftime(MEETING_TIME_FORMAT)}. "
            f"Link: {meeting.url}. Attendees: {', '.join(meeting.attendees)}"
        )
        if unknown:
            summary += f". Not found and excluded: {', '.join(unknown)}"
        return summary

    @register(
        "send_notification",
        schema=SendNotificationInput,
        description="Send an email notification to one or more users.",
    )
    def send_notification(params: SendNotificationInput, caller: str) -> str:
        recipients, unknown = split_known(directory, params.recipients)
        if not recipients:
            raise _unknown_addresses_error("recipients for the notification", unknown)
        if unknown:
            logger.warning("tool.send_notification.excluded recipients={}", unknown)

        mailer.send_bulk(recipients, params.subject, params.message)
        return f"Notifications sent to {len(recipients)} recipients: {', '.join(recipients)}"

    @register(
        "compose_letter",
        schema=ComposeLetterInput,
        description="Compose the text of a letter without sending it.",
    )
    def compose_letter(params: ComposeLetterInput, caller: str) -> str:
        return f"Letter for {params.recipient}:\nSubject: {params.subject}\n\n{params.content}"
