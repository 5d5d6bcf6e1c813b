"""Reminder planning: compute trigger times and (re)create the reminder plan.

Called explicitly by the appointment use cases after every create/update
(``replan``) and before every delete (``delete_reminders``).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from appointment_engine.core.config import settings
from appointment_engine.core.exceptions import OffsetParseError
from appointment_engine.core.structured_logging import build_log_context
from appointment_engine.db.enums import (
    DEFAULT_OFFSET_LABEL,
    JobType,
    ReminderStatus,
)
from appointment_engine.db.models import Appointment, AppointmentReminder
from appointment_engine.db.types import utc_now
from appointment_engine.services import job_service

logger = logging.getLogger(__name__)

OFFSET_PATTERN = re.compile(r"^(\d+)\s+(minute|minutes|hour|hours|day|days|week|weeks)$")
OFFSET_LABEL_MAX_LENGTH = 50


@dataclass(frozen=True)
class ReminderOffset:
    label: str
    delta: timedelta


def default_offset() -> timedelta:
    return timedelta(minutes=settings.DEFAULT_REMINDER_OFFSET_MINUTES)


def _normalize(raw: str) -> str:
    return " ".join(raw.strip().lower().split())


def parse_offset(raw: str) -> ReminderOffset:
    """Parse ``"<n> <minute|hour|day|week>[s]"`` into a ReminderOffset."""
    if not isinstance(raw, str):
        raise OffsetParseError(raw)
    normalized = _normalize(raw)
    match = OFFSET_PATTERN.match(normalized)
    if not match:
        raise OffsetParseError(raw)
    amount = int(match.group(1))
    unit = match.group(2).rstrip("s")
    return ReminderOffset(label=normalized, delta=timedelta(**{f"{unit}s": amount}))


def resolve_offset(raw, appointment_id: UUID | None = None) -> ReminderOffset:
    """Parse an offset, falling back to the default lead time when malformed."""
    try:
        return parse_offset(raw)
    except OffsetParseError:
        logger.warning(
            "Invalid reminder offset format %r, using default lead time",
            raw,
            extra=build_log_context(appointment_id=appointment_id),
        )
        label = _normalize(str(raw)) or DEFAULT_OFFSET_LABEL
        return ReminderOffset(label=label[:OFFSET_LABEL_MAX_LENGTH], delta=default_offset())


def _lock_appointment(db: Session, appointment_id: UUID) -> None:
    # Serializes concurrent replans of the same appointment (row lock)
    db.execute(
        select(Appointment.id).where(Appointment.id == appointment_id).with_for_update()
    ).scalar_one_or_none()


def _add_entry(
    db: Session,
    appointment: Appointment,
    trigger_at: datetime,
    label: str,
    status: ReminderStatus,
) -> AppointmentReminder:
    entry = AppointmentReminder(
        appointment_id=appointment.id,
        trigger_at=trigger_at,
        offset_label=label,
        method=settings.DEFAULT_REMINDER_METHOD,
        status=status.value,
    )
    db.add(entry)
    return entry


def _schedule_dispatch(db: Session, entry: AppointmentReminder) -> None:
    job_service.schedule_job(
        db,
        job_type=JobType.REMINDER_DISPATCH,
        payload={
            "appointment_id": str(entry.appointment_id),
            "reminder_id": str(entry.id),
        },
        run_at=entry.trigger_at,
        max_attempts=settings.REMINDER_MAX_ATTEMPTS,
        backoff_seconds=settings.REMINDER_RETRY_BACKOFF_SECONDS,
        idempotency_key=f"reminder_dispatch:{entry.id}",
        commit=False,
    )


def _expire_reminder_collection(db: Session, appointment_id: UUID) -> None:
    appointment = db.identity_map.get(db.identity_key(Appointment, appointment_id))
    if appointment is not None:
        db.expire(appointment, ["reminders"])


def clear_scheduled_reminders(db: Session, appointment_id: UUID) -> int:
    """Delete live (scheduled) entries; sent/failed history stays."""
    removed = (
        db.query(AppointmentReminder)
        .filter(
            AppointmentReminder.appointment_id == appointment_id,
            AppointmentReminder.status == ReminderStatus.SCHEDULED.value,
        )
        .delete(synchronize_session="fetch")
    )
    _expire_reminder_collection(db, appointment_id)
    return removed


def replan(
    db: Session,
    appointment: Appointment,
    now: datetime | None = None,
    commit: bool = True,
) -> list[AppointmentReminder]:
    """
    Replace the appointment's scheduled reminders with a fresh plan.

    Custom offsets: one scheduled entry per offset whose trigger time is still
    in the future; past ones are dropped. No offsets: a single default entry,
    scheduled if in the future, otherwise recorded as failed right away.
    Every scheduled entry gets a delayed dispatch job at its trigger time.
    """
    now = now or utc_now()
    log_context = build_log_context(appointment_id=appointment.id)

    _lock_appointment(db, appointment.id)
    removed = clear_scheduled_reminders(db, appointment.id)
    if removed:
        logger.info("Removed %s stale scheduled reminders", removed, extra=log_context)

    created: list[AppointmentReminder] = []
    start_time = appointment.start_time

    if appointment.reminder_offsets:
        seen: set[str] = set()
        for raw_offset in appointment.reminder_offsets:
            offset = resolve_offset(raw_offset, appointment.id)
            if offset.label in seen:
                logger.info("Duplicate reminder offset %r ignored", offset.label, extra=log_context)
                continue
            seen.add(offset.label)

            trigger_at = start_time - offset.delta
            if trigger_at > now:
                created.append(
                    _add_entry(db, appointment, trigger_at, offset.label, ReminderStatus.SCHEDULED)
                )
                logger.info(
                    "Scheduled custom appointment reminder at %s",
                    trigger_at.isoformat(),
                    extra={**log_context, "offset": offset.label},
                )
            else:
                logger.warning(
                    "Custom reminder time has passed (%s), skipping",
                    trigger_at.isoformat(),
                    extra={**log_context, "offset": offset.label},
                )
    else:
        trigger_at = start_time - default_offset()
        if trigger_at > now:
            created.append(
                _add_entry(db, appointment, trigger_at, DEFAULT_OFFSET_LABEL, ReminderStatus.SCHEDULED)
            )
            logger.info(
                "Scheduled default appointment reminder at %s",
                trigger_at.isoformat(),
                extra=log_context,
            )
        else:
            created.append(
                _add_entry(db, appointment, trigger_at, DEFAULT_OFFSET_LABEL, ReminderStatus.FAILED)
            )
            logger.warning(
                "Default reminder time has passed (%s), recorded as failed",
                trigger_at.isoformat(),
                extra=log_context,
            )

    db.flush()
    for entry in created:
        if entry.status == ReminderStatus.SCHEDULED.value:
            _schedule_dispatch(db, entry)

    if commit:
        db.commit()
    return created


def delete_reminders(db: Session, appointment: Appointment, commit: bool = False) -> int:
    """Delete every reminder entry of an appointment (before deleting it).

    Pending dispatch jobs are left in place; they find nothing to send.
    """
    deleted = (
        db.query(AppointmentReminder)
        .filter(AppointmentReminder.appointment_id == appointment.id)
        .delete(synchronize_session="fetch")
    )
    _expire_reminder_collection(db, appointment.id)
    logger.info(
        "Deleted %s reminders for appointment",
        deleted,
        extra=build_log_context(appointment_id=appointment.id),
    )
    if commit:
        db.commit()
    return deleted
