"""Reminder plan models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from appointment_engine.db.base import Base
from appointment_engine.db.enums import DEFAULT_REMINDER_STATUS, ReminderMethod
from appointment_engine.db.types import utc_now

if TYPE_CHECKING:
    from appointment_engine.db.models.appointments import Appointment


class AppointmentReminder(Base):
    """
    One planned reminder for an appointment.

    Status flow: scheduled → sent | failed. At most one live (scheduled) row
    per (appointment_id, offset_label); sent/failed rows are kept as history.
    """

    __tablename__ = "appointment_reminders"
    __table_args__ = (
        Index("idx_appointment_reminders_due", "status", "trigger_at"),
        Index(
            "uq_appointment_reminders_live",
            "appointment_id",
            "offset_label",
            unique=True,
            postgresql_where=text("status = 'scheduled'"),
            sqlite_where=text("status = 'scheduled'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )

    trigger_at: Mapped[datetime] = mapped_column(nullable=False)
    offset_label: Mapped[str] = mapped_column(String(50), nullable=False)  # "1 day", "default"
    method: Mapped[str] = mapped_column(
        String(10), default=ReminderMethod.EMAIL.value, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_REMINDER_STATUS.value, nullable=False
    )
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    appointment: Mapped["Appointment"] = relationship(back_populates="reminders")
