import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from appointment_engine.db.enums import JobStatus, JobType
from appointment_engine.scheduler import (
    DailyAt,
    EveryInterval,
    PERIODIC_TASKS,
    PeriodicScheduler,
    PeriodicTask,
)
from appointment_engine.services import job_service


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_periodic_task_table():
    by_name = {task.name: task for task in PERIODIC_TASKS}

    expansion = by_name["generate_recurring_instances"]
    assert expansion.job_type == JobType.RECURRENCE_EXPANSION
    assert expansion.cadence == DailyAt(0, 30)
    assert expansion.params == {"days": 30}

    sweep = by_name["process_due_reminders"]
    assert sweep.job_type == JobType.DUE_REMINDER_SWEEP
    assert sweep.cadence == EveryInterval(timedelta(minutes=5))
    assert sweep.params == {"limit": 100}


def test_daily_cadence():
    cadence = DailyAt(0, 30)

    assert cadence.first_run(_utc(2024, 6, 1, 0, 10)) == _utc(2024, 6, 1, 0, 30)
    assert cadence.first_run(_utc(2024, 6, 1, 12, 0)) == _utc(2024, 6, 2, 0, 30)
    assert cadence.next_after(_utc(2024, 6, 1, 0, 30)) == _utc(2024, 6, 2, 0, 30)


def test_interval_cadence_is_slot_aligned():
    cadence = EveryInterval(timedelta(minutes=5))

    assert cadence.first_run(_utc(2024, 6, 1, 12, 7, 30)) == _utc(2024, 6, 1, 12, 5)
    assert cadence.next_after(_utc(2024, 6, 1, 12, 7, 30)) == _utc(2024, 6, 1, 12, 10)


def test_enqueue_due_follows_cadence(db):
    scheduler = PeriodicScheduler(
        tasks=[
            PeriodicTask("sweep", JobType.DUE_REMINDER_SWEEP, EveryInterval(timedelta(minutes=5)), {"limit": 7}),
            PeriodicTask("expand", JobType.RECURRENCE_EXPANSION, DailyAt(0, 30), {"days": 30}),
        ]
    )
    start = _utc(2024, 6, 1, 0, 2)

    assert scheduler.enqueue_due(db, now=start) == ["sweep"]
    assert scheduler.enqueue_due(db, now=start + timedelta(minutes=1)) == []
    assert scheduler.next_run("sweep") == _utc(2024, 6, 1, 0, 5)
    assert scheduler.next_run("expand") == _utc(2024, 6, 1, 0, 30)

    assert scheduler.enqueue_due(db, now=_utc(2024, 6, 1, 0, 30)) == ["sweep", "expand"]

    jobs = job_service.list_jobs(db)
    assert len(jobs) == 3
    sweep_jobs = [job for job in jobs if job.job_type == JobType.DUE_REMINDER_SWEEP.value]
    assert all(job.payload == {"limit": 7} for job in sweep_jobs)
    assert all(job.max_attempts == 1 for job in jobs)


def test_two_schedulers_enqueue_each_slot_once(db):
    tasks = [PeriodicTask("sweep", JobType.DUE_REMINDER_SWEEP, EveryInterval(timedelta(minutes=5)))]
    now = _utc(2024, 6, 1, 12, 1)

    assert PeriodicScheduler(tasks=tasks).enqueue_due(db, now=now) == ["sweep"]
    assert PeriodicScheduler(tasks=tasks).enqueue_due(db, now=now) == []

    assert len(job_service.list_jobs(db, status=JobStatus.PENDING)) == 1


@pytest.mark.asyncio
async def test_scheduler_start_and_stop(session_factory):
    tasks = [PeriodicTask("sweep", JobType.DUE_REMINDER_SWEEP, EveryInterval(timedelta(minutes=5)))]
    scheduler = PeriodicScheduler(tasks=tasks, session_factory=session_factory, tick_seconds=0.01)

    scheduler.start()
    await asyncio.sleep(0.05)
    await scheduler.stop()

    with session_factory() as db:
        jobs = job_service.list_jobs(db, job_type=JobType.DUE_REMINDER_SWEEP)
    assert len(jobs) == 1
