"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from an external cron when the in-process periodic scheduler is not used.
Each call enqueues a job; the worker does the actual work.
"""

from fastapi import APIRouter, Header, HTTPException, Query
from pydantic import BaseModel

from appointment_engine.core.config import settings
from appointment_engine.db.enums import JobType
from appointment_engine.db.session import SessionLocal
from appointment_engine.services import job_service


router = APIRouter(prefix="/internal/scheduled", tags=["internal"])


def verify_internal_secret(x_internal_secret: str = Header(...)):
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")


class ScheduledJobResponse(BaseModel):
    job_id: str
    job_type: str
    run_at: str


@router.post("/recurring-instances", response_model=ScheduledJobResponse)
def recurring_instances(
    x_internal_secret: str = Header(...),
    days: int = Query(default=settings.RECURRENCE_HORIZON_DAYS, ge=1),
):
    """
    Generate instances of recurring appointments.

    Called by external cron (daily recommended).

    Args:
        days: look-ahead horizon in days
    """
    verify_internal_secret(x_internal_secret)

    with SessionLocal() as db:
        job = job_service.schedule_job(
            db=db,
            job_type=JobType.RECURRENCE_EXPANSION,
            payload={"days": days},
            max_attempts=1,
        )
        return ScheduledJobResponse(
            job_id=str(job.id),
            job_type=job.job_type,
            run_at=job.run_at.isoformat(),
        )


@router.post("/due-reminders", response_model=ScheduledJobResponse)
def due_reminders(
    x_internal_secret: str = Header(...),
    limit: int = Query(default=settings.DUE_REMINDER_BATCH_LIMIT, ge=1),
):
    """
    Catch-up sweep for scheduled reminders whose trigger time passed.

    Called by external cron (every few minutes).
    """
    verify_internal_secret(x_internal_secret)

    with SessionLocal() as db:
        job = job_service.schedule_job(
            db=db,
            job_type=JobType.DUE_REMINDER_SWEEP,
            payload={"limit": limit},
            max_attempts=1,
        )
        return ScheduledJobResponse(
            job_id=str(job.id),
            job_type=job.job_type,
            run_at=job.run_at.isoformat(),
        )
