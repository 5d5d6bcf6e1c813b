"""SQLAlchemy ORM models."""

from appointment_engine.db.models.appointments import Appointment
from appointment_engine.db.models.clients import Client
from appointment_engine.db.models.jobs import Job
from appointment_engine.db.models.reminders import AppointmentReminder

__all__ = [
    "Appointment",
    "AppointmentReminder",
    "Client",
    "Job",
]
