"""Reminder plan enums."""

from enum import Enum


class ReminderStatus(str, Enum):
    """
    Reminder plan entry status.

    Flow: scheduled → sent
              ↘ failed
    sent and failed are terminal.
    """

    SCHEDULED = "scheduled"
    SENT = "sent"
    FAILED = "failed"


class ReminderMethod(str, Enum):
    """Delivery channel for a reminder."""

    EMAIL = "email"
    SMS = "sms"


# Label used for the single default reminder (no custom offsets)
DEFAULT_OFFSET_LABEL = "default"
