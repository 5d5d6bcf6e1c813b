"""
Periodic task scheduler.

Recurring maintenance work is declared in PERIODIC_TASKS. The scheduler does
not run the work itself: when a task is due it enqueues a job, and the worker
processes it like any other job. Job idempotency keys are derived from the
task name and due slot, so several scheduler processes enqueue each slot once.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from appointment_engine.core.config import settings
from appointment_engine.db.enums import JobType
from appointment_engine.db.session import SessionLocal
from appointment_engine.db.types import utc_now
from appointment_engine.services import job_service

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class EveryInterval:
    """Run on fixed slots aligned to the epoch; the current slot runs at startup."""

    interval: timedelta

    def _slot(self, moment: datetime) -> datetime:
        slots = (moment - _EPOCH) // self.interval
        return _EPOCH + slots * self.interval

    def first_run(self, now: datetime) -> datetime:
        return self._slot(now)

    def next_after(self, moment: datetime) -> datetime:
        return self._slot(moment) + self.interval


@dataclass(frozen=True)
class DailyAt:
    """Run once a day at hour:minute UTC."""

    hour: int
    minute: int = 0

    def first_run(self, now: datetime) -> datetime:
        return self.next_after(now)

    def next_after(self, moment: datetime) -> datetime:
        candidate = moment.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if candidate <= moment:
            candidate += timedelta(days=1)
        return candidate


@dataclass(frozen=True)
class PeriodicTask:
    name: str
    job_type: JobType
    cadence: EveryInterval | DailyAt
    params: dict = field(default_factory=dict)


def build_periodic_tasks() -> list[PeriodicTask]:
    return [
        PeriodicTask(
            name="generate_recurring_instances",
            job_type=JobType.RECURRENCE_EXPANSION,
            cadence=DailyAt(settings.RECURRENCE_EXPANSION_HOUR, settings.RECURRENCE_EXPANSION_MINUTE),
            params={"days": settings.RECURRENCE_HORIZON_DAYS},
        ),
        PeriodicTask(
            name="process_due_reminders",
            job_type=JobType.DUE_REMINDER_SWEEP,
            cadence=EveryInterval(timedelta(minutes=settings.DUE_REMINDER_SWEEP_MINUTES)),
            params={"limit": settings.DUE_REMINDER_BATCH_LIMIT},
        ),
    ]


PERIODIC_TASKS: list[PeriodicTask] = build_periodic_tasks()


class PeriodicScheduler:
    def __init__(
        self,
        tasks: list[PeriodicTask] | None = None,
        session_factory=SessionLocal,
        tick_seconds: float = 30.0,
    ) -> None:
        self.tasks = list(PERIODIC_TASKS if tasks is None else tasks)
        self.session_factory = session_factory
        self.tick_seconds = tick_seconds
        self._next_run: dict[str, datetime] = {}
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None

    def next_run(self, name: str) -> datetime | None:
        return self._next_run.get(name)

    def enqueue_due(self, db: Session, now: datetime | None = None) -> list[str]:
        """Enqueue a job for every task whose slot has come. Returns task names."""
        now = now or utc_now()
        enqueued = []
        for task in self.tasks:
            due = self._next_run.setdefault(task.name, task.cadence.first_run(now))
            if due > now:
                continue
            try:
                job_service.schedule_job(
                    db,
                    job_type=task.job_type,
                    payload=dict(task.params),
                    run_at=now,
                    max_attempts=1,
                    idempotency_key=f"periodic:{task.name}:{due.isoformat()}",
                )
                enqueued.append(task.name)
                logger.info("Enqueued periodic task %s (slot %s)", task.name, due.isoformat())
            except IntegrityError:
                db.rollback()
                logger.info("Periodic task %s already enqueued for %s", task.name, due.isoformat())
            self._next_run[task.name] = task.cadence.next_after(now)
        return enqueued

    async def run(self) -> None:
        stop_event = self._stop_event or asyncio.Event()
        self._stop_event = stop_event
        logger.info("Periodic scheduler starting (%s tasks)", len(self.tasks))
        while not stop_event.is_set():
            with self.session_factory() as db:
                try:
                    self.enqueue_due(db)
                except Exception as e:
                    db.rollback()
                    logger.error(f"Error in periodic scheduler: {e}")
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=self.tick_seconds)
        logger.info("Periodic scheduler stopped")

    def start(self) -> asyncio.Task:
        if self._task and not self._task.done():
            return self._task
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
