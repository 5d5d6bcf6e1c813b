from datetime import datetime, timezone

import pytest

from appointment_engine.core.exceptions import RuleParseError
from appointment_engine.db.enums import RecurrenceFrequency
from appointment_engine.services.recurrence_parser import (
    parse_recurrence_rule,
    try_parse_recurrence_rule,
)


def test_parse_full_rule():
    rule = parse_recurrence_rule("FREQ=WEEKLY;INTERVAL=2;UNTIL=20241231T235959Z;COUNT=10")

    assert rule.frequency == RecurrenceFrequency.WEEKLY
    assert rule.interval == 2
    assert rule.until == datetime(2024, 12, 31, 23, 59, 59, tzinfo=timezone.utc)
    assert rule.count == 10


def test_parse_defaults_interval_to_one():
    rule = parse_recurrence_rule("FREQ=DAILY")

    assert rule.frequency == RecurrenceFrequency.DAILY
    assert rule.interval == 1
    assert rule.until is None
    assert rule.count is None


def test_parse_is_case_insensitive_and_ignores_empty_and_unknown_segments():
    rule = parse_recurrence_rule("freq=monthly;;BYDAY=MO;interval=3;")

    assert rule.frequency == RecurrenceFrequency.MONTHLY
    assert rule.interval == 3


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "",
        "   ",
        "INTERVAL=2",
        "FREQ=HOURLY",
        "FREQ=DAILY;INTERVAL=0",
        "FREQ=DAILY;INTERVAL=-1",
        "FREQ=DAILY;INTERVAL=two",
        "FREQ=DAILY;COUNT=0",
        "FREQ=DAILY;UNTIL=2024-12-31",
        "FREQ=DAILY;UNTIL=20241331T000000Z",
        "FREQ=DAILY;WEEKLY",
    ],
)
def test_parse_rejects_invalid_rules(raw):
    with pytest.raises(RuleParseError):
        parse_recurrence_rule(raw)


def test_rule_parse_error_is_value_error():
    with pytest.raises(ValueError) as exc_info:
        parse_recurrence_rule("FREQ=SOMETIMES")

    assert "FREQ=SOMETIMES" in str(exc_info.value)


def test_try_parse_returns_none_for_invalid():
    assert try_parse_recurrence_rule("garbage") is None
    assert try_parse_recurrence_rule("FREQ=YEARLY").frequency == RecurrenceFrequency.YEARLY
