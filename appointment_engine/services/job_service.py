"""Job service - business logic for background job scheduling and processing."""

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from appointment_engine.db.enums import JobStatus, JobType
from appointment_engine.db.models import Job
from appointment_engine.db.types import utc_now


def schedule_job(
    db: Session,
    job_type: JobType,
    payload: dict,
    run_at: datetime | None = None,
    max_attempts: int = 3,
    backoff_seconds: int = 0,
    idempotency_key: str | None = None,
    commit: bool = True,
) -> Job:
    """
    Schedule a new background job.

    If run_at is None, the job runs on the next worker pass.
    If idempotency_key is provided, duplicate jobs with same key will fail
    with IntegrityError (caller should catch and handle).
    With commit=False the job joins the caller's transaction.
    """
    job = Job(
        job_type=job_type.value,
        payload=payload,
        run_at=run_at or utc_now(),
        status=JobStatus.PENDING.value,
        attempts=0,
        max_attempts=max_attempts,
        backoff_seconds=backoff_seconds,
        idempotency_key=idempotency_key,
    )
    db.add(job)
    if commit:
        db.commit()
        db.refresh(job)
    else:
        db.flush()
    return job


def claim_pending_jobs(
    db: Session,
    limit: int = 10,
    job_types: list[JobType] | None = None,
    now: datetime | None = None,
) -> list[Job]:
    """
    Atomically claim due pending jobs: mark them running and bump attempts.

    Uses FOR UPDATE SKIP LOCKED so concurrent workers never claim the same
    row (ignored on SQLite, where writers are serialized anyway).
    """
    now = now or utc_now()
    stmt = (
        select(Job)
        .where(Job.status == JobStatus.PENDING.value, Job.run_at <= now)
        .order_by(Job.run_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    if job_types:
        stmt = stmt.where(Job.job_type.in_([t.value for t in job_types]))

    jobs = list(db.execute(stmt).scalars().all())
    for job in jobs:
        job.status = JobStatus.RUNNING.value
        job.attempts += 1
    db.commit()
    return jobs


def get_job(db: Session, job_id: UUID) -> Job | None:
    """Get a job by ID."""
    return db.query(Job).filter(Job.id == job_id).first()


def list_jobs(
    db: Session,
    status: JobStatus | None = None,
    job_type: JobType | None = None,
    limit: int = 50,
) -> list[Job]:
    """List jobs with optional filters."""
    query = db.query(Job)
    if status:
        query = query.filter(Job.status == status.value)
    if job_type:
        query = query.filter(Job.job_type == job_type.value)
    return query.order_by(Job.created_at.desc()).limit(limit).all()


def mark_job_running(db: Session, job: Job) -> Job:
    """Mark a job as running (increment attempts)."""
    job.status = JobStatus.RUNNING.value
    job.attempts += 1
    db.commit()
    db.refresh(job)
    return job


def mark_job_completed(db: Session, job: Job, now: datetime | None = None) -> Job:
    """Mark a job as completed."""
    job.status = JobStatus.COMPLETED.value
    job.completed_at = now or utc_now()
    job.last_error = None
    db.commit()
    db.refresh(job)
    return job


def mark_job_failed(db: Session, job: Job, error: str, now: datetime | None = None) -> Job:
    """
    Mark a job as failed.

    If attempts < max_attempts, reset to pending and push run_at out by the
    job's fixed backoff. Otherwise the job is failed for good.
    """
    now = now or utc_now()
    job.last_error = error
    if job.attempts < job.max_attempts:
        job.status = JobStatus.PENDING.value
        job.run_at = now + timedelta(seconds=job.backoff_seconds)
    else:
        job.status = JobStatus.FAILED.value
        job.completed_at = now
    db.commit()
    db.refresh(job)
    return job


async def run_now(db: Session, job: Job, now: datetime | None = None) -> Job:
    """
    Execute a job immediately through the registry, bypassing the poller.

    Counts as one attempt; on error the job follows the normal retry policy
    and the exception propagates to the caller.
    """
    from appointment_engine.jobs.registry import resolve_job_handler

    handler = resolve_job_handler(job.job_type)
    mark_job_running(db, job)
    try:
        await handler(db, job)
    except Exception as e:
        db.rollback()
        mark_job_failed(db, job, str(e), now=now)
        raise
    return mark_job_completed(db, job, now=now)
