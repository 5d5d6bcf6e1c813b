"""Notification delivery collaborator.

The engine only needs one capability: ``await notifier.send(recipient,
snapshot)``, which returns on success and raises on failure. Message
formatting lives with the notifier, not with the scheduling core.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from appointment_engine.core.config import settings
from appointment_engine.core.structured_logging import mask_email
from appointment_engine.db.models import Appointment, AppointmentReminder, Client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppointmentSnapshot:
    """Immutable view of an appointment at dispatch time."""

    appointment_id: UUID
    title: str
    description: str | None
    start_time: datetime
    timezone: str
    status: str
    reminder_id: UUID | None = None
    offset_label: str | None = None
    method: str | None = None

    @classmethod
    def from_appointment(
        cls, appointment: Appointment, reminder: AppointmentReminder | None = None
    ) -> "AppointmentSnapshot":
        return cls(
            appointment_id=appointment.id,
            title=appointment.title,
            description=appointment.description,
            start_time=appointment.start_time,
            timezone=appointment.timezone,
            status=appointment.status,
            reminder_id=reminder.id if reminder else None,
            offset_label=reminder.offset_label if reminder else None,
            method=reminder.method if reminder else None,
        )

    @property
    def local_start_time(self) -> datetime:
        """Start time in the appointment's own timezone (UTC if unknown)."""
        try:
            return self.start_time.astimezone(ZoneInfo(self.timezone))
        except (ZoneInfoNotFoundError, ValueError):
            return self.start_time


class Notifier(Protocol):
    async def send(self, recipient: Client, appointment: AppointmentSnapshot) -> None:
        """Deliver a reminder; raise on failure."""
        ...


class LoggingNotifier:
    """Dry-run notifier: logs instead of sending."""

    async def send(self, recipient: Client, appointment: AppointmentSnapshot) -> None:
        logger.info(
            "[DRY RUN] Reminder for appointment=%s client=%s recipient=%s start=%s",
            appointment.appointment_id,
            recipient.id,
            mask_email(recipient.email),
            appointment.local_start_time.isoformat(),
        )


class ResendNotifier:
    """Email notifier backed by the Resend API."""

    def __init__(self, api_key: str, from_address: str):
        self.api_key = api_key
        self.from_address = from_address

    def _build_params(self, recipient: Client, appointment: AppointmentSnapshot) -> dict:
        local_start = appointment.local_start_time
        lines = [
            f"Hello {recipient.name}!",
            "",
            "This is a friendly reminder about your upcoming appointment.",
            f"Title: {appointment.title}",
            f"Date: {local_start:%A, %B %d, %Y}",
            f"Time: {local_start:%I:%M %p %Z}",
        ]
        if appointment.description:
            lines.append(f"Description: {appointment.description}")
        return {
            "from": self.from_address,
            "to": [recipient.email],
            "subject": f"Appointment Reminder: {appointment.title}",
            "text": "\n".join(lines),
        }

    async def send(self, recipient: Client, appointment: AppointmentSnapshot) -> None:
        if not recipient.email:
            raise ValueError(f"Client {recipient.id} has no email address")

        import resend

        resend.api_key = self.api_key
        result = await asyncio.to_thread(
            resend.Emails.send, self._build_params(recipient, appointment)
        )
        logger.info(
            "Reminder email sent for appointment=%s recipient=%s message_id=%s",
            appointment.appointment_id,
            mask_email(recipient.email),
            result.get("id") if isinstance(result, dict) else None,
        )


_notifier: Notifier | None = None


def build_notifier() -> Notifier:
    """Choose a notifier from settings."""
    if settings.RESEND_API_KEY:
        return ResendNotifier(settings.RESEND_API_KEY, settings.EMAIL_FROM)
    logger.warning("RESEND_API_KEY not set - reminders will be logged but not sent")
    return LoggingNotifier()


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = build_notifier()
    return _notifier


def set_notifier(notifier: Notifier | None) -> None:
    """Install a notifier (None resets to the settings-based default)."""
    global _notifier
    _notifier = notifier
