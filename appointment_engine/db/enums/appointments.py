"""Appointment and recurrence enums."""

from enum import Enum


class AppointmentStatus(str, Enum):
    """
    Appointment lifecycle status.

    Flow: scheduled → completed
              ↘ cancelled
              ↘ missed
    """

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    MISSED = "missed"


class RecurrenceFrequency(str, Enum):
    """Supported FREQ values (stored lowercase)."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


# Default appointment status
DEFAULT_APPOINTMENT_STATUS = AppointmentStatus.SCHEDULED
