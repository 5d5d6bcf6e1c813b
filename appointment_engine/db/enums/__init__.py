"""Enum definitions for application constants."""

from appointment_engine.db.enums.appointments import (
    AppointmentStatus,
    DEFAULT_APPOINTMENT_STATUS,
    RecurrenceFrequency,
)
from appointment_engine.db.enums.jobs import JobStatus, JobType
from appointment_engine.db.enums.reminders import (
    DEFAULT_OFFSET_LABEL,
    ReminderMethod,
    ReminderStatus,
)

DEFAULT_JOB_STATUS = JobStatus.PENDING
DEFAULT_REMINDER_STATUS = ReminderStatus.SCHEDULED

__all__ = [
    "AppointmentStatus",
    "DEFAULT_APPOINTMENT_STATUS",
    "DEFAULT_JOB_STATUS",
    "DEFAULT_OFFSET_LABEL",
    "DEFAULT_REMINDER_STATUS",
    "JobStatus",
    "JobType",
    "RecurrenceFrequency",
    "ReminderMethod",
    "ReminderStatus",
]
