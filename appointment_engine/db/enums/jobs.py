"""Job-related enums."""

from enum import Enum


class JobType(str, Enum):
    """Types of background jobs."""

    REMINDER_DISPATCH = "reminder_dispatch"  # Delayed send of one reminder entry
    RECURRENCE_EXPANSION = "recurrence_expansion"  # Daily instance generation
    DUE_REMINDER_SWEEP = "due_reminder_sweep"  # Catch-up for overdue reminders


class JobStatus(str, Enum):
    """Status of background jobs."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
