"""Helpers shared by job handlers."""

from __future__ import annotations

import logging
from uuid import UUID

logger = logging.getLogger(__name__)


def coerce_uuid(raw_id: str | None) -> UUID | None:
    if not raw_id:
        return None
    try:
        return UUID(str(raw_id))
    except (TypeError, ValueError):
        logger.warning("Invalid UUID value '%s' in job payload", raw_id)
        return None


def coerce_positive_int(raw_value, default: int | None = None) -> int | None:
    if raw_value is None:
        return default
    try:
        value = int(raw_value)
    except (TypeError, ValueError):
        logger.warning("Invalid integer value '%s' in job payload", raw_value)
        return default
    return value if value > 0 else default
