from datetime import datetime, timedelta, timezone

import pytest

from couplet.reminders.enums import Frequency
from couplet.reminders.recurrence import (
    EXPIRED,
    RecurrenceRule,
    advance_past,
    is_recurring,
    next_occurrence,
)


UTC = timezone.utc


def rule(frequency, interval=1, end_date=None):
    return RecurrenceRule(frequency=Frequency(frequency), interval=interval, end_date=end_date)


@pytest.mark.parametrize(
    "frequency,interval,expected",
    [
        ("daily", 1, datetime(2025, 3, 11, 9, 30, tzinfo=UTC)),
        ("daily", 3, datetime(2025, 3, 13, 9, 30, tzinfo=UTC)),
        ("weekly", 1, datetime(2025, 3, 17, 9, 30, tzinfo=UTC)),
        ("weekly", 2, datetime(2025, 3, 24, 9, 30, tzinfo=UTC)),
        ("monthly", 1, datetime(2025, 4, 10, 9, 30, tzinfo=UTC)),
        ("yearly", 1, datetime(2026, 3, 10, 9, 30, tzinfo=UTC)),
    ],
)
def test_next_occurrence_steps_and_preserves_time_of_day(frequency, interval, expected):
    last = datetime(2025, 3, 10, 9, 30, tzinfo=UTC)
    assert next_occurrence(last, rule(frequency, interval)) == expected


def test_monthly_clamps_to_last_day_of_month():
    last = datetime(2025, 1, 31, 8, 0, tzinfo=UTC)
    assert next_occurrence(last, rule("monthly")) == datetime(2025, 2, 28, 8, 0, tzinfo=UTC)


def test_yearly_leap_day_clamps_to_feb_28():
    last = datetime(2024, 2, 29, 8, 0, tzinfo=UTC)
    assert next_occurrence(last, rule("yearly")) == datetime(2025, 2, 28, 8, 0, tzinfo=UTC)


def test_end_date_expires_series():
    last = datetime(2025, 3, 10, 9, 0, tzinfo=UTC)
    r = rule("daily", end_date=datetime(2025, 3, 10, 23, 59, tzinfo=UTC))
    assert next_occurrence(last, r) is EXPIRED


def test_next_equal_to_end_date_is_not_expired():
    last = datetime(2025, 3, 10, 9, 0, tzinfo=UTC)
    r = rule("daily", end_date=datetime(2025, 3, 11, 9, 0, tzinfo=UTC))
    assert next_occurrence(last, r) == datetime(2025, 3, 11, 9, 0, tzinfo=UTC)


def test_non_recurring_returns_none():
    last = datetime(2025, 3, 10, tzinfo=UTC)
    assert next_occurrence(last, None) is None
    assert RecurrenceRule.from_dict({"frequency": "none"}) is None
    assert RecurrenceRule.from_dict({"frequency": "hourly"}) is None
    assert not is_recurring(None)


def test_reference_time_does_not_change_result():
    last = datetime(2025, 3, 10, 9, 0, tzinfo=UTC)
    r = rule("weekly")
    assert next_occurrence(last, r) == next_occurrence(last, r, reference_time=last + timedelta(days=400))


def test_from_dict_clamps_interval_and_ignores_bad_end_date():
    r = RecurrenceRule.from_dict({"frequency": "daily", "interval": -2, "end_date": "not-a-date"})
    assert r.interval == 1
    assert r.end_date is None
    assert is_recurring(r)


def test_from_dict_parses_iso_end_date():
    r = RecurrenceRule.from_dict({"frequency": "monthly", "interval": 2, "end_date": "2025-12-31T00:00:00Z"})
    assert r.frequency == Frequency.MONTHLY
    assert r.interval == 2
    assert r.end_date == datetime(2025, 12, 31, tzinfo=UTC)


def test_advance_past_skips_missed_occurrences():
    last = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)
    now = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)
    assert advance_past(last, rule("daily"), now) == datetime(2025, 3, 11, 9, 0, tzinfo=UTC)


def test_advance_past_stops_at_end_date():
    last = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)
    now = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)
    r = rule("daily", end_date=datetime(2025, 3, 5, tzinfo=UTC))
    assert advance_past(last, r, now) is EXPIRED
