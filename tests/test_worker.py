from datetime import timedelta

import pytest

from appointment_engine.db.enums import JobStatus, JobType, ReminderStatus
from appointment_engine.services import appointment_service, job_service, reminder_service


def test_job_registry_resolves_known_handlers():
    from appointment_engine.jobs.registry import resolve_job_handler

    for job_type in JobType:
        assert callable(resolve_job_handler(job_type.value))


def test_job_registry_unknown_raises():
    from appointment_engine.jobs.registry import resolve_job_handler

    with pytest.raises(ValueError):
        resolve_job_handler("nope")


def test_failure_hook_registered_for_reminder_dispatch_only():
    from appointment_engine.jobs.registry import resolve_failure_hook

    assert callable(resolve_failure_hook(JobType.REMINDER_DISPATCH.value))
    assert resolve_failure_hook(JobType.DUE_REMINDER_SWEEP.value) is None


@pytest.mark.asyncio
async def test_process_job_uses_registry(monkeypatch):
    from appointment_engine import worker

    calls: dict[str, str] = {}

    async def stub_handler(_db, job):
        calls["job_type"] = job.job_type

    def stub_resolver(job_type: str):
        calls["resolved"] = job_type
        return stub_handler

    monkeypatch.setattr(worker, "resolve_job_handler", stub_resolver)

    job = type(
        "Job",
        (),
        {
            "id": "job-id",
            "job_type": JobType.REMINDER_DISPATCH.value,
            "attempts": 0,
            "payload": {},
        },
    )()

    await worker.process_job(None, job)

    assert calls["resolved"] == JobType.REMINDER_DISPATCH.value
    assert calls["job_type"] == JobType.REMINDER_DISPATCH.value


def _dispatch_job(db):
    jobs = job_service.list_jobs(db, job_type=JobType.REMINDER_DISPATCH)
    assert len(jobs) == 1
    return jobs[0]


@pytest.mark.asyncio
async def test_reminder_job_not_claimed_before_trigger_time(db, make_appointment, notifier):
    from appointment_engine import worker

    make_appointment()
    job = _dispatch_job(db)

    stats = await worker.process_due_jobs(db, now=job.run_at - timedelta(seconds=1))

    assert stats["claimed"] == 0
    assert notifier.calls == 0


@pytest.mark.asyncio
async def test_send_failing_twice_then_succeeding_ends_sent(db, make_appointment, notifier):
    from appointment_engine import worker

    notifier.fail_times = 2
    appointment = make_appointment()
    job = _dispatch_job(db)
    job_id = job.id
    trigger_at = job.run_at

    first = await worker.process_due_jobs(db, now=trigger_at)
    job = job_service.get_job(db, job_id)
    assert first["retried"] == 1
    assert job.status == JobStatus.PENDING.value
    assert job.run_at == trigger_at + timedelta(seconds=60)

    # Backoff not elapsed yet
    idle = await worker.process_due_jobs(db, now=trigger_at + timedelta(seconds=30))
    assert idle["claimed"] == 0

    second = await worker.process_due_jobs(db, now=trigger_at + timedelta(seconds=60))
    job = job_service.get_job(db, job_id)
    assert second["retried"] == 1
    assert job.run_at == trigger_at + timedelta(seconds=120)

    third = await worker.process_due_jobs(db, now=trigger_at + timedelta(seconds=120))
    job = job_service.get_job(db, job_id)
    assert third["completed"] == 1
    assert job.status == JobStatus.COMPLETED.value
    assert job.attempts == 3

    reminders = reminder_service.list_reminders_for_appointment(db, appointment.id)
    assert [r.status for r in reminders] == [ReminderStatus.SENT.value]
    assert notifier.calls == 3
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_exhausted_retries_leave_reminder_failed(db, make_appointment, notifier, monkeypatch):
    from appointment_engine import worker
    from appointment_engine.jobs.handlers import reminders as reminder_handlers

    hook_calls = []
    real_hook = reminder_handlers.on_reminder_dispatch_exhausted

    def recording_hook(db, job, error):
        hook_calls.append(error)
        real_hook(db, job, error)

    monkeypatch.setattr(
        worker, "resolve_failure_hook", lambda job_type: recording_hook
    )

    notifier.fail_times = 10
    appointment = make_appointment()
    job = _dispatch_job(db)
    job_id = job.id
    trigger_at = job.run_at

    for step in range(3):
        await worker.process_due_jobs(db, now=trigger_at + timedelta(seconds=60 * step))

    job = job_service.get_job(db, job_id)
    assert job.status == JobStatus.FAILED.value
    assert job.attempts == 3
    assert "delivery failed" in job.last_error
    assert len(hook_calls) == 1

    reminders = reminder_service.list_reminders_for_appointment(db, appointment.id)
    assert [r.status for r in reminders] == [ReminderStatus.FAILED.value]

    # Nothing left to claim
    later = await worker.process_due_jobs(db, now=trigger_at + timedelta(hours=1))
    assert later["claimed"] == 0


@pytest.mark.asyncio
async def test_missing_client_job_completes_without_retry(db, make_appointment, notifier):
    from appointment_engine import worker

    appointment = make_appointment(client_id=None)
    job = _dispatch_job(db)
    job_id = job.id

    stats = await worker.process_due_jobs(db, now=job.run_at)

    assert stats["completed"] == 1
    assert job_service.get_job(db, job_id).attempts == 1
    reminders = reminder_service.list_reminders_for_appointment(db, appointment.id)
    assert [r.status for r in reminders] == [ReminderStatus.FAILED.value]
    assert notifier.calls == 0


@pytest.mark.asyncio
async def test_job_for_deleted_appointment_is_a_noop(db, make_appointment, notifier):
    from appointment_engine import worker

    appointment = make_appointment()
    job = _dispatch_job(db)
    job_id, run_at = job.id, job.run_at
    appointment_service.delete_appointment(db, appointment.id)

    stats = await worker.process_due_jobs(db, now=run_at)

    assert stats["completed"] == 1
    assert job_service.get_job(db, job_id).status == JobStatus.COMPLETED.value
    assert notifier.calls == 0


@pytest.mark.asyncio
async def test_stale_job_after_replan_does_not_send(db, make_appointment, notifier, now):
    from appointment_engine import worker

    appointment = make_appointment()
    stale_job = _dispatch_job(db)
    stale_id, stale_run_at = stale_job.id, stale_job.run_at
    appointment_service.update_appointment(
        db, appointment.id, now=now, start_time=appointment.start_time + timedelta(days=1)
    )

    await worker.process_due_jobs(db, now=stale_run_at)

    assert job_service.get_job(db, stale_id).status == JobStatus.COMPLETED.value
    assert notifier.calls == 0
    counts = reminder_service.count_by_status(db, appointment.id)
    assert counts["scheduled"] == 1


@pytest.mark.asyncio
async def test_dispatch_job_leaves_entry_failed_by_sweep(db, make_appointment, notifier):
    from appointment_engine import worker
    from appointment_engine.services import due_reminder_service

    notifier.fail_times = 1
    appointment = make_appointment()
    job = _dispatch_job(db)
    job_id, trigger_at = job.id, job.run_at

    sweep = await due_reminder_service.process_due_reminders(db, notifier, now=trigger_at)
    assert sweep["errors"] == 1

    stats = await worker.process_due_jobs(db, now=trigger_at + timedelta(minutes=1))

    assert stats["completed"] == 1
    assert job_service.get_job(db, job_id).status == JobStatus.COMPLETED.value
    reminders = reminder_service.list_reminders_for_appointment(db, appointment.id)
    assert [r.status for r in reminders] == [ReminderStatus.FAILED.value]
    assert notifier.calls == 1
