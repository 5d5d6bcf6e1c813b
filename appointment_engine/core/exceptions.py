"""Error taxonomy for recurrence expansion and reminder delivery."""

from __future__ import annotations


class ReminderEngineError(Exception):
    """Base exception for scheduling engine errors."""

    pass


class RuleParseError(ReminderEngineError, ValueError):
    """Malformed recurrence rule string."""

    def __init__(self, rule: str | None, reason: str):
        self.rule = rule
        self.reason = reason
        super().__init__(f"Invalid recurrence rule {rule!r}: {reason}")


class OffsetParseError(ReminderEngineError, ValueError):
    """Malformed reminder offset string."""

    def __init__(self, offset: str | None):
        self.offset = offset
        super().__init__(f"Invalid reminder offset {offset!r}")


class MissingRelationError(ReminderEngineError):
    """Appointment or client vanished between planning and dispatch."""

    pass


class TransientDeliveryError(ReminderEngineError):
    """Notification send failed; the async path retries it."""

    def __init__(self, reminder_id, message: str):
        self.reminder_id = reminder_id
        super().__init__(message)


class SafetyLimitExceeded(ReminderEngineError):
    """A generation run or sweep batch hit its bound."""

    def __init__(self, limit: int, what: str):
        self.limit = limit
        self.what = what
        super().__init__(f"{what} stopped at safety limit ({limit})")


class AppointmentValidationError(ReminderEngineError, ValueError):
    """Appointment fields failed validation."""

    pass


class AppointmentNotFoundError(ReminderEngineError):
    """Appointment not found."""

    pass
