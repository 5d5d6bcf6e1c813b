"""Reminder dispatch: send one planned reminder and record the outcome."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from appointment_engine.core.config import settings
from appointment_engine.core.exceptions import MissingRelationError, TransientDeliveryError
from appointment_engine.core.structured_logging import build_log_context
from appointment_engine.db.enums import ReminderStatus
from appointment_engine.db.models import Appointment, AppointmentReminder, Client
from appointment_engine.db.types import utc_now
from appointment_engine.services.notification_service import AppointmentSnapshot, Notifier

logger = logging.getLogger(__name__)

IMMEDIATE_OFFSET_LABEL = "immediate"


class DispatchOutcome(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


def _load_reminder(db: Session, reminder_id: UUID) -> AppointmentReminder | None:
    return db.execute(
        select(AppointmentReminder)
        .where(AppointmentReminder.id == reminder_id)
        .with_for_update()
    ).scalar_one_or_none()


def _load_client(db: Session, appointment: Appointment) -> Client | None:
    if appointment.client_id is None:
        return None
    return db.get(Client, appointment.client_id)


def mark_reminder(
    db: Session,
    reminder: AppointmentReminder,
    status: ReminderStatus,
    now: datetime | None = None,
) -> AppointmentReminder:
    """Record a terminal outcome and commit."""
    reminder.status = status.value
    reminder.sent_at = now or utc_now()
    db.commit()
    return reminder


async def dispatch_reminder(
    db: Session,
    notifier: Notifier,
    appointment_id: UUID | None = None,
    reminder_id: UUID | None = None,
    raise_on_error: bool = True,
    now: datetime | None = None,
    resend_failed: bool = False,
) -> DispatchOutcome:
    """
    Dispatch one reminder.

    At least one of appointment_id / reminder_id is required. A vanished
    appointment, a vanished entry (stale job after a replan) or an entry that
    is no longer scheduled is a no-op. The one exception is resend_failed,
    set by a dispatch job's own retry, which may send a failed entry again.
    A missing client marks the entry failed without retry. A send error marks
    the entry failed and, when raise_on_error is set (async path), re-raises
    as TransientDeliveryError so the job retry policy sees it.
    """
    if appointment_id is None and reminder_id is None:
        raise ValueError("dispatch_reminder requires appointment_id or reminder_id")

    reminder: AppointmentReminder | None = None
    if reminder_id is not None:
        reminder = _load_reminder(db, reminder_id)
        if reminder is None:
            logger.info(
                "Reminder entry no longer exists, skipping",
                extra=build_log_context(appointment_id=appointment_id, reminder_id=reminder_id),
            )
            return DispatchOutcome.SKIPPED
        appointment_id = appointment_id or reminder.appointment_id

    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        logger.info(
            "Appointment no longer exists, skipping reminder",
            extra=build_log_context(appointment_id=appointment_id, reminder_id=reminder_id),
        )
        return DispatchOutcome.SKIPPED

    if reminder is not None and reminder.status != ReminderStatus.SCHEDULED.value:
        retryable = resend_failed and reminder.status == ReminderStatus.FAILED.value
        if not retryable:
            logger.info(
                "Reminder already %s, skipping",
                reminder.status,
                extra=build_log_context(appointment_id=appointment.id, reminder_id=reminder.id),
            )
            return DispatchOutcome.SKIPPED

    if reminder is None:
        reminder = AppointmentReminder(
            appointment_id=appointment.id,
            trigger_at=now or utc_now(),
            offset_label=IMMEDIATE_OFFSET_LABEL,
            method=settings.DEFAULT_REMINDER_METHOD,
            status=ReminderStatus.SCHEDULED.value,
        )
        db.add(reminder)
        db.flush()

    log_context = build_log_context(
        appointment_id=appointment.id,
        reminder_id=reminder.id,
        client_id=appointment.client_id,
        offset=reminder.offset_label,
    )

    client = _load_client(db, appointment)
    if client is None:
        logger.error(
            "%s",
            MissingRelationError(f"Client not found for appointment {appointment.id}"),
            extra=log_context,
        )
        mark_reminder(db, reminder, ReminderStatus.FAILED, now)
        return DispatchOutcome.FAILED

    snapshot = AppointmentSnapshot.from_appointment(appointment, reminder)
    try:
        await asyncio.wait_for(
            notifier.send(client, snapshot),
            timeout=settings.NOTIFICATION_SEND_TIMEOUT_SECONDS,
        )
    except Exception as exc:
        logger.error(
            "Failed to send appointment reminder: %s",
            type(exc).__name__,
            extra=log_context,
        )
        mark_reminder(db, reminder, ReminderStatus.FAILED, now)
        if raise_on_error:
            raise TransientDeliveryError(
                reminder.id, f"Reminder {reminder.id} delivery failed: {exc}"
            ) from exc
        return DispatchOutcome.FAILED

    mark_reminder(db, reminder, ReminderStatus.SENT, now)
    logger.info("Appointment reminder sent successfully", extra=log_context)
    return DispatchOutcome.SENT


def mark_reminder_failed_permanently(
    db: Session, reminder_id: UUID, error: str | None = None
) -> AppointmentReminder | None:
    """Final failure hook: leave the entry failed once retries are exhausted."""
    reminder = db.get(AppointmentReminder, reminder_id)
    if reminder is None:
        return None
    logger.error(
        "Reminder dispatch failed permanently: %s",
        error or "unknown error",
        extra=build_log_context(appointment_id=reminder.appointment_id, reminder_id=reminder.id),
    )
    if reminder.status == ReminderStatus.SENT.value:
        return reminder
    reminder.status = ReminderStatus.FAILED.value
    reminder.sent_at = reminder.sent_at or utc_now()
    db.commit()
    return reminder
