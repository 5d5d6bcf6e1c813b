"""Reminder dispatch job handlers."""

from __future__ import annotations

import logging

from appointment_engine.core.structured_logging import build_log_context
from appointment_engine.jobs.utils import coerce_uuid
from appointment_engine.services import notification_service, reminder_dispatcher

logger = logging.getLogger(__name__)


async def process_reminder_dispatch(db, job) -> None:
    """
    Send one planned reminder at its trigger time.

    Payload:
        - appointment_id: UUID of the appointment
        - reminder_id: UUID of the reminder entry (optional)

    Delivery errors propagate so the worker applies the retry policy. Only a
    retry of this job may send an entry that is already failed; on the first
    attempt anything but a scheduled entry is left alone.
    """
    payload = job.payload or {}
    appointment_id = coerce_uuid(payload.get("appointment_id"))
    reminder_id = coerce_uuid(payload.get("reminder_id"))
    if not appointment_id and not reminder_id:
        raise Exception("Missing appointment_id or reminder_id in reminder dispatch payload")

    outcome = await reminder_dispatcher.dispatch_reminder(
        db,
        notification_service.get_notifier(),
        appointment_id=appointment_id,
        reminder_id=reminder_id,
        raise_on_error=True,
        resend_failed=(job.attempts or 0) > 1,
    )
    logger.info(
        "Reminder dispatch job finished: %s",
        outcome.value,
        extra=build_log_context(
            appointment_id=appointment_id, reminder_id=reminder_id, job_id=job.id
        ),
    )


def on_reminder_dispatch_exhausted(db, job, error: str) -> None:
    """Retries used up: leave the entry failed."""
    reminder_id = coerce_uuid((job.payload or {}).get("reminder_id"))
    if reminder_id:
        reminder_dispatcher.mark_reminder_failed_permanently(db, reminder_id, error)
