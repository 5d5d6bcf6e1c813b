"""Recurring instance expansion job handler."""

from __future__ import annotations

import logging

from appointment_engine.core.config import settings
from appointment_engine.jobs.utils import coerce_positive_int
from appointment_engine.services import instance_service

logger = logging.getLogger(__name__)


async def process_recurrence_expansion(db, job) -> None:
    """
    Materialize instances of every master recurring appointment.

    Payload:
        - days: look-ahead horizon in days (defaults to RECURRENCE_HORIZON_DAYS)
    """
    payload = job.payload or {}
    days = coerce_positive_int(payload.get("days"), settings.RECURRENCE_HORIZON_DAYS)

    logger.info(f"Starting recurring expansion: days={days}")
    result = instance_service.expand_all_masters(db, days_ahead=days)
    logger.info(
        f"Recurring expansion finished: masters={result['masters_processed']}, "
        f"created={result['instances_created']}, invalid={result['invalid_rules']}, "
        f"errors={len(result['errors'])}"
    )
    job.payload = {**payload, "result": result}
