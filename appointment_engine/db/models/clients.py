"""Client model (reminder recipient)."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from appointment_engine.db.base import Base
from appointment_engine.db.types import utc_now

if TYPE_CHECKING:
    from appointment_engine.db.models.appointments import Appointment


class Client(Base):
    """A person who receives appointment reminders."""

    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    appointments: Mapped[list["Appointment"]] = relationship(back_populates="client")
