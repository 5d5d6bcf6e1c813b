"""Occurrence generation for recurring appointments."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterator

from dateutil.relativedelta import relativedelta

from appointment_engine.core.config import settings
from appointment_engine.core.exceptions import SafetyLimitExceeded
from appointment_engine.db.enums import RecurrenceFrequency
from appointment_engine.db.types import utc_now
from appointment_engine.services.recurrence_parser import RecurrenceRule

logger = logging.getLogger(__name__)


def _step_delta(rule: RecurrenceRule, steps: int) -> relativedelta:
    amount = rule.interval * steps
    if rule.frequency == RecurrenceFrequency.DAILY:
        return relativedelta(days=amount)
    if rule.frequency == RecurrenceFrequency.WEEKLY:
        return relativedelta(weeks=amount)
    if rule.frequency == RecurrenceFrequency.MONTHLY:
        return relativedelta(months=amount)
    return relativedelta(years=amount)


def step_after(rule: RecurrenceRule, start: datetime, instant: datetime) -> int:
    """Index of the first step of ``rule`` from ``start`` that lies strictly after ``instant``."""
    if instant < start:
        return 0
    if rule.frequency == RecurrenceFrequency.DAILY:
        step = (instant - start) // timedelta(days=rule.interval)
    elif rule.frequency == RecurrenceFrequency.WEEKLY:
        step = (instant - start) // timedelta(weeks=rule.interval)
    else:
        months = (instant.year - start.year) * 12 + instant.month - start.month
        per_step = rule.interval * (12 if rule.frequency == RecurrenceFrequency.YEARLY else 1)
        step = max(months // per_step, 0)

    # Estimate is within one step; settle on the exact boundary
    while step > 0 and start + _step_delta(rule, step - 1) > instant:
        step -= 1
    while start + _step_delta(rule, step) <= instant:
        step += 1
    return step


def compute_horizon_end(days_ahead: int | None = None, now: datetime | None = None) -> datetime:
    """End of the generation window: now + look-ahead days."""
    if days_ahead is None:
        days_ahead = settings.RECURRENCE_HORIZON_DAYS
    return (now or utc_now()) + timedelta(days=days_ahead)


class OccurrenceRun:
    """
    Lazy, bounded sequence of occurrence instants for one rule.

    Iteration stops at the first of: past the horizon, past UNTIL, or the
    safety cap. Each step is computed from ``start`` so month-end clamping
    (Jan 31 -> Feb 29 -> Mar 31) does not drift. ``start_step`` resumes the
    sequence part-way; the cap counts instants from that point on.

    After iteration, ``generated`` holds the number of instants produced and
    ``cap_reached`` tells whether the safety cap cut the run short.
    """

    def __init__(
        self,
        rule: RecurrenceRule,
        start: datetime,
        horizon_end: datetime,
        max_occurrences: int,
        start_step: int = 0,
    ):
        self.rule = rule
        self.start = start
        self.horizon_end = horizon_end
        self.max_occurrences = max_occurrences
        self.start_step = start_step
        self.generated = 0
        self.cap_reached = False

    def __iter__(self) -> Iterator[datetime]:
        self.generated = 0
        self.cap_reached = False
        step = self.start_step
        while True:
            occurrence = self.start + _step_delta(self.rule, step)
            if occurrence > self.horizon_end:
                return
            if self.rule.until is not None and occurrence > self.rule.until:
                return
            if self.generated >= self.max_occurrences:
                self.cap_reached = True
                logger.warning(
                    "%s; next occurrence %s not generated",
                    SafetyLimitExceeded(self.max_occurrences, "Occurrence generation"),
                    occurrence.isoformat(),
                )
                return
            self.generated += 1
            yield occurrence
            step += 1


def generate_occurrences(
    rule: RecurrenceRule,
    start: datetime,
    horizon_end: datetime | None = None,
    max_occurrences: int | None = None,
    start_step: int = 0,
) -> OccurrenceRun:
    """Build the occurrence sequence for ``rule`` starting at ``start``."""
    if horizon_end is None:
        horizon_end = compute_horizon_end()
    if max_occurrences is None:
        max_occurrences = settings.RECURRENCE_MAX_OCCURRENCES
    return OccurrenceRun(rule, start, horizon_end, max_occurrences, start_step=start_step)
