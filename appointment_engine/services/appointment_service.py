"""Appointment service - create/update/delete use cases with reminder hooks.

Every create and update ends with ``reminder_planner.replan``; every delete
starts with ``reminder_planner.delete_reminders``. These are plain calls, not
ORM event listeners.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import func
from sqlalchemy.orm import Session

from appointment_engine.core.exceptions import (
    AppointmentNotFoundError,
    AppointmentValidationError,
    RuleParseError,
)
from appointment_engine.core.structured_logging import build_log_context
from appointment_engine.db.enums import AppointmentStatus, DEFAULT_APPOINTMENT_STATUS
from appointment_engine.db.models import Appointment
from appointment_engine.services import reminder_planner
from appointment_engine.services.recurrence_parser import parse_recurrence_rule

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset(
    {
        "client_id",
        "title",
        "description",
        "start_time",
        "timezone",
        "status",
        "is_recurring",
        "recurrence_rule",
        "reminder_offsets",
    }
)


# =============================================================================
# Validation
# =============================================================================


def _as_utc(value: datetime) -> datetime:
    # Naive datetimes are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _validate(appointment: Appointment) -> None:
    if not appointment.title or not appointment.title.strip():
        raise AppointmentValidationError("title is required")

    if not isinstance(appointment.start_time, datetime):
        raise AppointmentValidationError("start_time must be a datetime")
    appointment.start_time = _as_utc(appointment.start_time)

    try:
        ZoneInfo(appointment.timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise AppointmentValidationError(f"unknown timezone {appointment.timezone!r}") from exc

    if appointment.status not in {s.value for s in AppointmentStatus}:
        raise AppointmentValidationError(f"unknown status {appointment.status!r}")

    offsets = appointment.reminder_offsets
    if offsets is not None:
        if not isinstance(offsets, list) or not all(isinstance(o, str) for o in offsets):
            raise AppointmentValidationError("reminder_offsets must be a list of strings")

    if appointment.parent_appointment_id is not None and appointment.is_recurring:
        raise AppointmentValidationError("instances of a recurring appointment cannot recur")

    if appointment.is_recurring:
        try:
            parse_recurrence_rule(appointment.recurrence_rule)
        except RuleParseError as exc:
            raise AppointmentValidationError(str(exc)) from exc


# =============================================================================
# Queries
# =============================================================================


def get_appointment(db: Session, appointment_id: UUID) -> Appointment | None:
    return db.get(Appointment, appointment_id)


def list_master_recurring(db: Session) -> list[Appointment]:
    """Recurring appointments without a parent (the ones that get expanded)."""
    return (
        db.query(Appointment)
        .filter(
            Appointment.is_recurring.is_(True),
            Appointment.parent_appointment_id.is_(None),
        )
        .order_by(Appointment.created_at)
        .all()
    )


def list_instances(db: Session, master_id: UUID) -> list[Appointment]:
    return (
        db.query(Appointment)
        .filter(Appointment.parent_appointment_id == master_id)
        .order_by(Appointment.start_time)
        .all()
    )


def latest_instance_start(db: Session, master_id: UUID) -> datetime | None:
    latest = (
        db.query(func.max(Appointment.start_time))
        .filter(Appointment.parent_appointment_id == master_id)
        .scalar()
    )
    return _as_utc(latest) if latest is not None else None


def find_instance(db: Session, master_id: UUID, start_time: datetime) -> Appointment | None:
    """Look up an instance by its dedup key (parent, start_time)."""
    return (
        db.query(Appointment)
        .filter(
            Appointment.parent_appointment_id == master_id,
            Appointment.start_time == _as_utc(start_time),
        )
        .first()
    )


# =============================================================================
# Use cases
# =============================================================================


def create_appointment(
    db: Session,
    *,
    owner_id: UUID,
    title: str,
    start_time: datetime,
    client_id: UUID | None = None,
    description: str | None = None,
    timezone: str = "UTC",
    status: str = DEFAULT_APPOINTMENT_STATUS.value,
    is_recurring: bool = False,
    recurrence_rule: str | None = None,
    parent_appointment_id: UUID | None = None,
    reminder_offsets: list[str] | None = None,
    now: datetime | None = None,
) -> Appointment:
    """Create an appointment and plan its reminders."""
    appointment = Appointment(
        owner_id=owner_id,
        client_id=client_id,
        title=title,
        description=description,
        start_time=start_time,
        timezone=timezone,
        status=status,
        is_recurring=is_recurring,
        recurrence_rule=recurrence_rule,
        parent_appointment_id=parent_appointment_id,
        reminder_offsets=list(reminder_offsets) if reminder_offsets else None,
    )
    _validate(appointment)

    db.add(appointment)
    db.flush()
    reminder_planner.replan(db, appointment, now=now, commit=False)
    db.commit()
    db.refresh(appointment)

    logger.info(
        "Created appointment (recurring=%s instance=%s)",
        appointment.is_recurring,
        appointment.parent_appointment_id is not None,
        extra=build_log_context(appointment_id=appointment.id),
    )
    return appointment


def update_appointment(
    db: Session,
    appointment_id: UUID,
    now: datetime | None = None,
    **fields,
) -> Appointment:
    """Update fields and replan reminders when anything changed."""
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise AppointmentValidationError(f"cannot update fields: {sorted(unknown)}")

    appointment = get_appointment(db, appointment_id)
    if appointment is None:
        raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")

    changed = False
    for name, value in fields.items():
        if name == "start_time" and isinstance(value, datetime):
            value = _as_utc(value)
        if name == "reminder_offsets" and value is not None:
            value = list(value)
        if getattr(appointment, name) != value:
            setattr(appointment, name, value)
            changed = True

    if not changed:
        return appointment

    try:
        _validate(appointment)
    except AppointmentValidationError:
        db.rollback()
        raise

    db.flush()
    reminder_planner.replan(db, appointment, now=now, commit=False)
    db.commit()
    db.refresh(appointment)
    return appointment


def _delete_one(db: Session, appointment: Appointment) -> None:
    reminder_planner.delete_reminders(db, appointment)
    db.delete(appointment)


def delete_appointment(db: Session, appointment_id: UUID) -> None:
    """Delete an appointment and its reminders; a master takes its instances along."""
    appointment = get_appointment(db, appointment_id)
    if appointment is None:
        raise AppointmentNotFoundError(f"Appointment {appointment_id} not found")

    instances = list_instances(db, appointment.id) if appointment.is_master else []
    for instance in instances:
        _delete_one(db, instance)
    if instances:
        db.flush()
    _delete_one(db, appointment)
    db.commit()

    logger.info(
        "Deleted appointment (instances=%s)",
        len(instances),
        extra=build_log_context(appointment_id=appointment_id),
    )
