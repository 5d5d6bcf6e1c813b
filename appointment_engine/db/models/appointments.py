"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from appointment_engine.db.base import Base
from appointment_engine.db.enums import DEFAULT_APPOINTMENT_STATUS
from appointment_engine.db.types import utc_now

if TYPE_CHECKING:
    from appointment_engine.db.models.clients import Client
    from appointment_engine.db.models.reminders import AppointmentReminder


class Appointment(Base):
    """
    Scheduled appointment.

    A master is a recurring appointment with no parent; its rule is expanded
    into instances (non-recurring rows pointing back at the master through
    parent_appointment_id). The parent link is a plain indexed foreign key.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_owner_start", "owner_id", "start_time"),
        Index("idx_appointments_parent", "parent_appointment_id"),
        Index("idx_appointments_master", "is_recurring", "parent_appointment_id"),
        # Instance dedup key; NULL parents (masters, one-off) never collide
        UniqueConstraint(
            "parent_appointment_id", "start_time", name="uq_appointment_instance_start"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    client_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Stored in UTC; timezone is the display zone of the client
    start_time: Mapped[datetime] = mapped_column(nullable=False)
    timezone: Mapped[str] = mapped_column(String(50), default="UTC", nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_APPOINTMENT_STATUS.value, nullable=False
    )

    # Recurrence
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurrence_rule: Mapped[str | None] = mapped_column(String(255), nullable=True)
    parent_appointment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=True
    )

    # Ordered offset strings, e.g. ["1 day", "2 hours"]
    reminder_offsets: Mapped[list | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )

    # Relationships
    client: Mapped["Client | None"] = relationship(back_populates="appointments")
    reminders: Mapped[list["AppointmentReminder"]] = relationship(
        back_populates="appointment",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="AppointmentReminder.trigger_at",
    )

    @property
    def is_master(self) -> bool:
        return bool(self.is_recurring) and self.parent_appointment_id is None

    @property
    def is_instance(self) -> bool:
        return self.parent_appointment_id is not None
