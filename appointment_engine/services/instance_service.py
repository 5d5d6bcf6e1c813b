"""Recurring instance materialization.

Turns occurrences of a master appointment into persisted instance rows,
deduplicated on (parent_appointment_id, start_time). Instances are created
through appointment_service.create_appointment, so each one gets its reminder
plan the same way a manually created appointment does.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from appointment_engine.core.config import settings
from appointment_engine.core.exceptions import RuleParseError
from appointment_engine.core.structured_logging import build_log_context
from appointment_engine.db.enums import AppointmentStatus
from appointment_engine.db.models import Appointment
from appointment_engine.db.types import utc_now
from appointment_engine.services import appointment_service
from appointment_engine.services.occurrence_service import (
    compute_horizon_end,
    generate_occurrences,
    step_after,
)
from appointment_engine.services.recurrence_parser import parse_recurrence_rule

logger = logging.getLogger(__name__)


@dataclass
class MaterializeResult:
    created: int = 0
    existing: int = 0
    cap_reached: bool = False
    invalid_rule: bool = False


def materialize_instances(
    db: Session,
    master: Appointment,
    occurrences: Iterable[datetime],
    now: datetime | None = None,
) -> MaterializeResult:
    """Create an instance for every occurrence that does not exist yet."""
    result = MaterializeResult()
    # Plain values up front: a rollback below expires the master row
    master_id = master.id
    template = {
        "owner_id": master.owner_id,
        "client_id": master.client_id,
        "title": master.title,
        "description": master.description,
        "timezone": master.timezone,
        "reminder_offsets": list(master.reminder_offsets) if master.reminder_offsets else None,
    }

    for occurrence in occurrences:
        if appointment_service.find_instance(db, master_id, occurrence) is not None:
            result.existing += 1
            continue
        try:
            appointment_service.create_appointment(
                db,
                start_time=occurrence,
                status=AppointmentStatus.SCHEDULED.value,
                is_recurring=False,
                parent_appointment_id=master_id,
                now=now,
                **template,
            )
        except IntegrityError:
            # Created concurrently by another expansion run
            db.rollback()
            result.existing += 1
            continue
        result.created += 1

    return result


def expand_master(
    db: Session,
    master: Appointment,
    days_ahead: int | None = None,
    now: datetime | None = None,
) -> MaterializeResult:
    """Parse the master's rule, generate occurrences and persist new instances."""
    log_context = build_log_context(appointment_id=master.id)
    try:
        rule = parse_recurrence_rule(master.recurrence_rule)
    except RuleParseError as exc:
        logger.warning("Skipping master with invalid recurrence rule: %s", exc, extra=log_context)
        return MaterializeResult(invalid_rule=True)

    # Resume after the latest instance; periods before the current one are not backfilled
    now = now or utc_now()
    start_step = max(step_after(rule, master.start_time, now) - 1, 0)
    latest = appointment_service.latest_instance_start(db, master.id)
    if latest is not None:
        start_step = max(start_step, step_after(rule, master.start_time, latest))

    run = generate_occurrences(
        rule,
        master.start_time,
        horizon_end=compute_horizon_end(days_ahead, now),
        max_occurrences=settings.RECURRENCE_MAX_OCCURRENCES,
        start_step=start_step,
    )
    result = materialize_instances(db, master, run, now=now)
    result.cap_reached = run.cap_reached
    logger.info(
        "Expanded recurring appointment: from_step=%s generated=%s created=%s existing=%s",
        start_step,
        run.generated,
        result.created,
        result.existing,
        extra=log_context,
    )
    return result


def expand_all_masters(
    db: Session,
    days_ahead: int | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Expand every master recurring appointment, one at a time.

    A failure in one master is logged and recorded; the rest still run.

    Returns summary stats: {masters_processed, instances_created,
    invalid_rules, capped, errors}.
    """
    now = now or utc_now()
    masters = appointment_service.list_master_recurring(db)
    master_ids = [master.id for master in masters]

    instances_created = 0
    invalid_rules = 0
    capped = 0
    errors = []

    for master_id in master_ids:
        try:
            master = appointment_service.get_appointment(db, master_id)
            if master is None:
                continue
            result = expand_master(db, master, days_ahead=days_ahead, now=now)
            instances_created += result.created
            if result.invalid_rule:
                invalid_rules += 1
            if result.cap_reached:
                capped += 1
        except Exception as e:
            db.rollback()
            logger.error(
                "Recurring expansion failed: %s",
                type(e).__name__,
                extra=build_log_context(appointment_id=master_id),
            )
            errors.append({"appointment_id": str(master_id), "error": str(e)})

    return {
        "masters_processed": len(master_ids),
        "instances_created": instances_created,
        "invalid_rules": invalid_rules,
        "capped": capped,
        "errors": errors,
    }
