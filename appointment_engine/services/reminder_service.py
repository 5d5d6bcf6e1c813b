"""Reminder plan queries."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from appointment_engine.db.enums import ReminderStatus
from appointment_engine.db.models import AppointmentReminder
from appointment_engine.db.types import utc_now


def list_reminders_for_appointment(
    db: Session,
    appointment_id: UUID,
    status: ReminderStatus | None = None,
) -> list[AppointmentReminder]:
    """All entries of an appointment (history included), oldest trigger first."""
    query = db.query(AppointmentReminder).filter(
        AppointmentReminder.appointment_id == appointment_id
    )
    if status:
        query = query.filter(AppointmentReminder.status == status.value)
    return query.order_by(AppointmentReminder.trigger_at, AppointmentReminder.created_at).all()


def list_due_reminders(
    db: Session,
    limit: int = 100,
    now: datetime | None = None,
) -> list[AppointmentReminder]:
    """Scheduled entries whose trigger time has passed, bounded by limit."""
    now = now or utc_now()
    stmt = (
        select(AppointmentReminder)
        .where(
            AppointmentReminder.status == ReminderStatus.SCHEDULED.value,
            AppointmentReminder.trigger_at <= now,
        )
        .order_by(AppointmentReminder.trigger_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    return list(db.execute(stmt).scalars().all())


def count_by_status(db: Session, appointment_id: UUID | None = None) -> dict[str, int]:
    """Count entries per status, optionally for one appointment."""
    stmt = select(AppointmentReminder.status, func.count()).group_by(AppointmentReminder.status)
    if appointment_id:
        stmt = stmt.where(AppointmentReminder.appointment_id == appointment_id)
    counts = {status.value: 0 for status in ReminderStatus}
    for status, count in db.execute(stmt).all():
        counts[status] = count
    return counts
