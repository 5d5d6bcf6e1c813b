"""
Background worker for processing scheduled jobs.

Usage:
    python -m appointment_engine.worker

The worker polls for due jobs, claims them and runs the registered handler.
Failed jobs are retried with the job's backoff until max_attempts is reached.
"""

import asyncio
import logging
from datetime import datetime

from appointment_engine.core.config import settings
from appointment_engine.core.structured_logging import build_log_context, configure_logging
from appointment_engine.db.enums import JobStatus
from appointment_engine.db.session import SessionLocal
from appointment_engine.jobs.registry import resolve_failure_hook, resolve_job_handler
from appointment_engine.services import job_service

logger = logging.getLogger(__name__)


async def process_job(db, job) -> None:
    """Process a single job based on its type."""
    logger.info(f"Processing job {job.id} (type={job.job_type}, attempt={job.attempts})")
    handler = resolve_job_handler(job.job_type)
    await handler(db, job)


def _run_failure_hook(db, job, error_msg: str) -> None:
    hook = resolve_failure_hook(job.job_type)
    if not hook:
        return
    try:
        hook(db, job, error_msg)
    except Exception as e:
        db.rollback()
        logger.error(
            "Failure hook for job %s raised: %s",
            job.id,
            type(e).__name__,
            extra=build_log_context(job_id=job.id),
        )


async def process_due_jobs(db, limit: int | None = None, now: datetime | None = None) -> dict:
    """
    Run one polling pass: claim due jobs and process them.

    Returns summary stats: {claimed, completed, retried, failed}.
    """
    jobs = job_service.claim_pending_jobs(db, limit=limit or settings.WORKER_BATCH_SIZE, now=now)
    if jobs:
        logger.info(f"Found {len(jobs)} pending jobs")

    completed = 0
    retried = 0
    failed = 0

    for job in jobs:
        try:
            await process_job(db, job)
            job_service.mark_job_completed(db, job, now=now)
            completed += 1
            logger.info(f"Job {job.id} completed successfully")
        except Exception as e:
            db.rollback()
            error_msg = str(e)
            job_service.mark_job_failed(db, job, error_msg, now=now)
            logger.error(
                "Job %s failed: %s",
                job.id,
                type(e).__name__,
                extra=build_log_context(job_id=job.id),
            )
            if job.status == JobStatus.FAILED.value:
                failed += 1
                _run_failure_hook(db, job, error_msg)
            else:
                retried += 1

    return {
        "claimed": len(jobs),
        "completed": completed,
        "retried": retried,
        "failed": failed,
    }


async def worker_loop(stop_event: asyncio.Event | None = None) -> None:
    """Main worker loop - polls for and processes pending jobs."""
    logger.info(
        f"Worker starting (poll interval: {settings.WORKER_POLL_INTERVAL}s, "
        f"batch size: {settings.WORKER_BATCH_SIZE})"
    )

    if not settings.RESEND_API_KEY:
        logger.warning("RESEND_API_KEY not set - reminders will be logged but not sent")

    while stop_event is None or not stop_event.is_set():
        with SessionLocal() as db:
            try:
                await process_due_jobs(db)
            except Exception as e:
                logger.error(f"Error in worker loop: {e}")

        if stop_event is None:
            await asyncio.sleep(settings.WORKER_POLL_INTERVAL)
            continue
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=settings.WORKER_POLL_INTERVAL)
        except asyncio.TimeoutError:
            pass

    logger.info("Worker stopped")


def main() -> None:
    """Entry point for the worker."""
    configure_logging()
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception("Worker crashed", extra=build_log_context(route="worker"))
        raise


if __name__ == "__main__":
    main()
