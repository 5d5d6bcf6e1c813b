"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from appointment_engine.db.enums import JobType
from appointment_engine.jobs.handlers import recurrence, reminders, sweeps

JobHandler = Callable[[object, object], Awaitable[None]]
FailureHook = Callable[[object, object, str], None]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.REMINDER_DISPATCH.value: reminders.process_reminder_dispatch,
    JobType.RECURRENCE_EXPANSION.value: recurrence.process_recurrence_expansion,
    JobType.DUE_REMINDER_SWEEP.value: sweeps.process_due_reminder_sweep,
}

# Called once a job has used up all its attempts
JOB_FAILURE_HOOKS: Mapping[str, FailureHook] = {
    JobType.REMINDER_DISPATCH.value: reminders.on_reminder_dispatch_exhausted,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job_type}")
    return handler


def resolve_failure_hook(job_type: str) -> FailureHook | None:
    return JOB_FAILURE_HOOKS.get(job_type)
