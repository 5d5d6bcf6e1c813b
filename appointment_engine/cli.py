"""CLI tools for appointment scheduling maintenance."""

import asyncio
from uuid import UUID

import click

from appointment_engine.core.config import settings
from appointment_engine.core.structured_logging import configure_logging
from appointment_engine.db.enums import JobStatus, JobType
from appointment_engine.db.session import SessionLocal, init_db as create_tables
from appointment_engine.services import appointment_service, job_service, reminder_service


@click.group()
def cli():
    """Appointment engine CLI tools."""
    pass


def _run_job_now(db, job_type: JobType, payload: dict) -> dict:
    """Record a one-shot job and execute it in this process."""
    job = job_service.schedule_job(db, job_type, payload, max_attempts=1)
    job = asyncio.run(job_service.run_now(db, job))
    return job.payload["result"]


@cli.command()
@click.option(
    "--days",
    default=settings.RECURRENCE_HORIZON_DAYS,
    show_default=True,
    type=click.IntRange(min=1),
    help="Number of days ahead to generate",
)
def generate_recurring(days: int):
    """
    Generate instances of recurring appointments.

    Example:
        appointment-engine generate-recurring --days 30
    """
    click.echo(f"Generating recurring appointments for next {days} days...")
    db = SessionLocal()
    try:
        result = _run_job_now(db, JobType.RECURRENCE_EXPANSION, {"days": days})

        click.echo(f"✓ Processed {result['masters_processed']} recurring appointment(s)")
        click.echo(f"✓ Generated {result['instances_created']} new instance(s)")
        if result["invalid_rules"]:
            click.echo(f"  Skipped {result['invalid_rules']} with invalid recurrence rule")
        if result["capped"]:
            click.echo(f"  {result['capped']} stopped at the safety limit")
        for error in result["errors"]:
            click.echo(f"❌ {error['appointment_id']}: {error['error']}")
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
        raise
    finally:
        db.close()


@cli.command()
@click.option(
    "--limit",
    default=settings.DUE_REMINDER_BATCH_LIMIT,
    show_default=True,
    type=click.IntRange(min=1),
    help="Maximum number of reminders to process",
)
def process_due_reminders(limit: int):
    """Send scheduled reminders whose trigger time has passed."""
    click.echo("Processing due reminders...")
    db = SessionLocal()
    try:
        result = _run_job_now(db, JobType.DUE_REMINDER_SWEEP, {"limit": limit})

        if not result["found"]:
            click.echo("✓ No due reminders found")
            return
        click.echo(f"✓ Found {result['found']} due reminder(s)")
        click.echo(f"✓ Processed: {result['processed']}")
        if result["skipped"]:
            click.echo(f"  Skipped: {result['skipped']}")
        if result["errors"]:
            click.echo(f"❌ Errors: {result['errors']}")
        if result["limit_reached"]:
            click.echo(f"  Limit of {limit} reached; the rest waits for the next run")
    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
        raise
    finally:
        db.close()


@cli.command()
def run_worker():
    """Run the background job worker until interrupted."""
    from appointment_engine import worker

    worker.main()


@cli.command()
def init_db():
    """Create database tables."""
    create_tables()
    click.echo("✓ Database tables created")


@cli.command()
@click.option("--appointment-id", required=True, help="Appointment UUID")
def list_reminders(appointment_id: str):
    """Show the reminder plan of an appointment."""
    try:
        appointment_uuid = UUID(appointment_id)
    except ValueError:
        click.echo(f"❌ Invalid appointment id: {appointment_id}")
        return

    db = SessionLocal()
    try:
        appointment = appointment_service.get_appointment(db, appointment_uuid)
        if not appointment:
            click.echo(f"❌ Appointment {appointment_id} not found")
            return

        reminders = reminder_service.list_reminders_for_appointment(db, appointment_uuid)
        click.echo(f"{appointment.title} @ {appointment.start_time.isoformat()}")
        if not reminders:
            click.echo("  (no reminders)")
        for reminder in reminders:
            click.echo(
                f"  {reminder.trigger_at.isoformat()}  {reminder.offset_label:<12} "
                f"{reminder.method:<6} {reminder.status}"
            )
    finally:
        db.close()


@cli.command()
@click.option("--job-id", required=True, help="Job UUID")
def run_job(job_id: str):
    """Run a pending job immediately instead of waiting for the worker."""
    try:
        job_uuid = UUID(job_id)
    except ValueError:
        click.echo(f"❌ Invalid job id: {job_id}")
        return

    db = SessionLocal()
    try:
        job = job_service.get_job(db, job_uuid)
        if not job:
            click.echo(f"❌ Job {job_id} not found")
            return
        if job.status != JobStatus.PENDING.value:
            click.echo(f"❌ Job {job_id} is {job.status}, only pending jobs can be run")
            return

        try:
            job = asyncio.run(job_service.run_now(db, job))
        except Exception as e:
            click.echo(f"❌ Job failed: {e}")
            return
        click.echo(f"✓ Job {job.id} ({job.job_type}) completed")
    finally:
        db.close()


@cli.command()
@click.option(
    "--status",
    type=click.Choice([s.value for s in JobStatus]),
    default=None,
    help="Only jobs in this status",
)
@click.option(
    "--type",
    "job_type",
    type=click.Choice([t.value for t in JobType]),
    default=None,
    help="Only jobs of this type",
)
@click.option("--limit", default=50, show_default=True, type=click.IntRange(min=1))
def list_jobs(status: str | None, job_type: str | None, limit: int):
    """Show recent background jobs."""
    db = SessionLocal()
    try:
        jobs = job_service.list_jobs(
            db,
            status=JobStatus(status) if status else None,
            job_type=JobType(job_type) if job_type else None,
            limit=limit,
        )
        if not jobs:
            click.echo("✓ No jobs found")
            return
        for job in jobs:
            click.echo(
                f"{job.id}  {job.job_type:<20} {job.status:<9} "
                f"attempts={job.attempts}/{job.max_attempts}  run_at={job.run_at.isoformat()}"
            )
    finally:
        db.close()


def main() -> None:
    configure_logging()
    cli()


if __name__ == "__main__":
    main()
