"""Due reminder catch-up sweep job handler."""

from __future__ import annotations

import logging

from appointment_engine.core.config import settings
from appointment_engine.jobs.utils import coerce_positive_int
from appointment_engine.services import due_reminder_service, notification_service

logger = logging.getLogger(__name__)


async def process_due_reminder_sweep(db, job) -> None:
    """
    Send scheduled reminders whose trigger time already passed.

    Payload:
        - limit: max entries per sweep (defaults to DUE_REMINDER_BATCH_LIMIT)
    """
    payload = job.payload or {}
    limit = coerce_positive_int(payload.get("limit"), settings.DUE_REMINDER_BATCH_LIMIT)

    result = await due_reminder_service.process_due_reminders(
        db, notification_service.get_notifier(), limit=limit
    )
    job.payload = {**payload, "result": result}
