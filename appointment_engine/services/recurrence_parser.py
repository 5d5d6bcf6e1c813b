"""Recurrence rule parsing (basic RRULE subset).

Supported: ``FREQ=WEEKLY;INTERVAL=2;UNTIL=20241231T000000Z;COUNT=10``

- FREQ: DAILY, WEEKLY, MONTHLY, YEARLY (case-insensitive, required)
- INTERVAL: positive integer, default 1
- UNTIL: ``YYYYMMDDTHHMMSSZ`` in UTC
- COUNT: positive integer. Validated and kept on the rule, not used to stop
  generation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone

from appointment_engine.core.exceptions import RuleParseError
from appointment_engine.db.enums import RecurrenceFrequency

UNTIL_PATTERN = re.compile(r"^(\d{4})(\d{2})(\d{2})T(\d{2})(\d{2})(\d{2})Z$")
POSITIVE_INT_PATTERN = re.compile(r"^\d+$")


@dataclass(frozen=True)
class RecurrenceRule:
    frequency: RecurrenceFrequency
    interval: int = 1
    until: datetime | None = None
    count: int | None = None


def _parse_positive_int(rule: str, key: str, value: str) -> int:
    if not POSITIVE_INT_PATTERN.match(value) or int(value) < 1:
        raise RuleParseError(rule, f"{key} must be a positive integer, got {value!r}")
    return int(value)


def _parse_until(rule: str, value: str) -> datetime:
    match = UNTIL_PATTERN.match(value)
    if not match:
        raise RuleParseError(rule, f"UNTIL must look like YYYYMMDDTHHMMSSZ, got {value!r}")
    try:
        return datetime(*(int(part) for part in match.groups()), tzinfo=timezone.utc)
    except ValueError as exc:
        raise RuleParseError(rule, f"UNTIL is not a valid timestamp: {exc}") from exc


def parse_recurrence_rule(rule: str | None) -> RecurrenceRule:
    """Parse a ``KEY=VALUE;...`` rule string into a RecurrenceRule.

    Raises RuleParseError for anything that cannot be expanded.
    """
    if rule is None or not rule.strip():
        raise RuleParseError(rule, "rule is empty")

    fields: dict[str, str] = {}
    for segment in rule.strip().split(";"):
        segment = segment.strip()
        if not segment:
            continue
        if "=" not in segment:
            raise RuleParseError(rule, f"segment {segment!r} is not KEY=VALUE")
        key, value = segment.split("=", 1)
        fields[key.strip().upper()] = value.strip()

    raw_frequency = fields.get("FREQ")
    if not raw_frequency:
        raise RuleParseError(rule, "FREQ is required")
    try:
        frequency = RecurrenceFrequency(raw_frequency.lower())
    except ValueError as exc:
        raise RuleParseError(rule, f"unsupported FREQ {raw_frequency!r}") from exc

    interval = 1
    if "INTERVAL" in fields:
        interval = _parse_positive_int(rule, "INTERVAL", fields["INTERVAL"])

    count = None
    if "COUNT" in fields:
        count = _parse_positive_int(rule, "COUNT", fields["COUNT"])

    until = _parse_until(rule, fields["UNTIL"]) if "UNTIL" in fields else None

    return RecurrenceRule(frequency=frequency, interval=interval, until=until, count=count)


def try_parse_recurrence_rule(rule: str | None) -> RecurrenceRule | None:
    """Like parse_recurrence_rule, but returns None for invalid rules."""
    try:
        return parse_recurrence_rule(rule)
    except RuleParseError:
        return None
