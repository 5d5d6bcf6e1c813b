"""Structured logging helpers (PII-safe)."""

import logging
from typing import Any

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: int = logging.INFO) -> None:
    """Configure root logging for worker and CLI processes."""
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


def mask_email(email: str | None) -> str:
    if not email:
        return ""
    local, _, domain = email.partition("@")
    prefix = local[:3] if local else ""
    return f"{prefix}...@{domain}" if domain else f"{prefix}..."


def build_log_context(
    *,
    appointment_id: Any = None,
    reminder_id: Any = None,
    job_id: Any = None,
    client_id: Any = None,
    offset: str | None = None,
    route: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict (identifiers only)."""
    context: dict[str, Any] = {}
    if appointment_id:
        context["appointment_id"] = str(appointment_id)
    if reminder_id:
        context["reminder_id"] = str(reminder_id)
    if job_id:
        context["job_id"] = str(job_id)
    if client_id:
        context["client_id"] = str(client_id)
    if offset:
        context["offset"] = offset
    if route:
        context["route"] = route
    return context
