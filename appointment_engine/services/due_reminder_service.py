"""Catch-up sweep for overdue reminders missed by the delayed-dispatch path."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from appointment_engine.core.config import settings
from appointment_engine.core.exceptions import SafetyLimitExceeded
from appointment_engine.core.structured_logging import build_log_context
from appointment_engine.db.enums import ReminderStatus
from appointment_engine.db.models import AppointmentReminder
from appointment_engine.db.types import utc_now
from appointment_engine.services import reminder_dispatcher, reminder_service
from appointment_engine.services.notification_service import Notifier
from appointment_engine.services.reminder_dispatcher import DispatchOutcome

logger = logging.getLogger(__name__)


def _mark_failed_by_id(db: Session, reminder_id, now: datetime) -> None:
    reminder = db.get(AppointmentReminder, reminder_id)
    if reminder is not None and reminder.status == ReminderStatus.SCHEDULED.value:
        reminder_dispatcher.mark_reminder(db, reminder, ReminderStatus.FAILED, now)


async def process_due_reminders(
    db: Session,
    notifier: Notifier,
    limit: int | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Dispatch scheduled reminders whose trigger time has passed.

    Each item is isolated: a missing appointment/client or a send error marks
    that entry failed and the sweep moves on. No queue-level retry here.

    Returns summary stats: {found, processed, skipped, errors, limit_reached}.
    """
    limit = limit or settings.DUE_REMINDER_BATCH_LIMIT
    now = now or utc_now()

    due = reminder_service.list_due_reminders(db, limit=limit, now=now)
    if not due:
        logger.info("No due reminders found")
        return {"found": 0, "processed": 0, "skipped": 0, "errors": 0, "limit_reached": False}

    # Ids are captured up front; per-item rollbacks expire loaded rows
    items = [(reminder.id, reminder.appointment_id) for reminder in due]
    processed = 0
    skipped = 0
    errors = 0

    for reminder_id, appointment_id in items:
        log_context = build_log_context(appointment_id=appointment_id, reminder_id=reminder_id)
        try:
            reminder = db.get(AppointmentReminder, reminder_id)
            appointment = reminder.appointment if reminder else None
            if appointment is None or appointment.client is None:
                logger.warning(
                    "Skipping reminder: missing appointment or client", extra=log_context
                )
                _mark_failed_by_id(db, reminder_id, now)
                errors += 1
                continue

            outcome = await reminder_dispatcher.dispatch_reminder(
                db,
                notifier,
                appointment_id=appointment.id,
                reminder_id=reminder_id,
                raise_on_error=False,
                now=now,
            )
            if outcome == DispatchOutcome.SENT:
                processed += 1
            elif outcome == DispatchOutcome.SKIPPED:
                skipped += 1
            else:
                errors += 1
        except Exception as exc:
            db.rollback()
            logger.error(
                "Failed to process due reminder: %s", type(exc).__name__, extra=log_context
            )
            _mark_failed_by_id(db, reminder_id, now)
            errors += 1

    limit_reached = len(due) >= limit
    if limit_reached:
        logger.warning(
            "%s; remaining reminders wait for the next sweep",
            SafetyLimitExceeded(limit, "Due reminder sweep"),
        )

    logger.info(
        "Due reminders processing completed (found=%s processed=%s skipped=%s errors=%s)",
        len(due),
        processed,
        skipped,
        errors,
    )
    return {
        "found": len(due),
        "processed": processed,
        "skipped": skipped,
        "errors": errors,
        "limit_reached": limit_reached,
    }
