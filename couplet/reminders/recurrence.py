"""
Recurrence rules and next-occurrence calculation.

`RecurrenceCalculator.next_occurrence` is pure: identical input gives identical
output regardless of call time, so the server dispatcher and the client job
agree on the next occurrence without talking to each other.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Union

from dateutil.relativedelta import relativedelta

from .enums import Frequency
from couplet.utils.timezone import to_utc_aware


logger = logging.getLogger(__name__)

# Upper bound on steps taken by advance_past
MAX_ADVANCE_STEPS = 10_000


class Expiry(Enum):
    EXPIRED = "expired"

    def __repr__(self) -> str:
        return "EXPIRED"


EXPIRED = Expiry.EXPIRED

NextOccurrence = Union[datetime, Expiry, None]


def _parse_instant(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    raise ValueError(f"Unsupported end_date value: {value!r}")


@dataclass(frozen=True)
class RecurrenceRule:
    """Recurrence settings stored on a reminder."""
    frequency: Frequency
    interval: int = 1
    end_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frequency": self.frequency.value,
            "interval": self.interval,
            "end_date": to_utc_aware(self.end_date).isoformat() if self.end_date else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["RecurrenceRule"]:
        """Parse a stored rule; None for missing, disabled or unknown frequencies."""
        if not data:
            return None
        if data.get("enabled") is False:
            return None
        raw_frequency = data.get("frequency") or data.get("type")
        try:
            frequency = Frequency(raw_frequency)
        except ValueError:
            logger.warning(f"⚠️  [Recurrence] Unknown frequency {raw_frequency!r}, treating as non-recurring")
            return None
        if frequency == Frequency.NONE:
            return None
        interval = data.get("interval") or 1
        try:
            interval = int(interval)
        except (TypeError, ValueError):
            interval = 1
        if interval < 1:
            logger.warning(f"⚠️  [Recurrence] interval={interval} is below 1, using 1")
            interval = 1
        try:
            end_date = _parse_instant(data.get("end_date") or data.get("endDate"))
        except ValueError:
            # An unreadable end date must not stop the reminder from recurring
            logger.warning(f"⚠️  [Recurrence] Ignoring unparseable end_date {data.get('end_date')!r}")
            end_date = None
        return cls(frequency=frequency, interval=interval, end_date=end_date)


def _align(a: datetime, b: datetime) -> tuple[datetime, datetime]:
    """Make two datetimes comparable when only one of them carries tzinfo."""
    if (a.tzinfo is None) != (b.tzinfo is None):
        return to_utc_aware(a), to_utc_aware(b)
    return a, b


def _after(a: datetime, b: datetime) -> bool:
    a, b = _align(a, b)
    return a > b


class RecurrenceCalculator:
    """Calculates the next due date of a recurring reminder."""

    @staticmethod
    def next_occurrence(
        last_due: datetime,
        rule: Optional[RecurrenceRule],
        reference_time: Optional[datetime] = None,
    ) -> NextOccurrence:
        """
        Advance one step from last_due.

        Returns the next due date, EXPIRED when it falls after the rule's
        end_date, or None for non-recurring reminders. reference_time is
        accepted for callers that pass it through and is never used here.
        """
        if rule is None or rule.frequency == Frequency.NONE:
            return None

        step = RecurrenceCalculator._step(rule)
        if step is None:
            return None
        candidate = last_due + step

        if rule.end_date is not None and _after(candidate, rule.end_date):
            return EXPIRED
        return candidate

    @staticmethod
    def advance_past(
        last_due: datetime,
        rule: Optional[RecurrenceRule],
        reference_time: datetime,
    ) -> NextOccurrence:
        """First occurrence strictly after reference_time, stepping from last_due."""
        current = last_due
        for _ in range(MAX_ADVANCE_STEPS):
            nxt = RecurrenceCalculator.next_occurrence(current, rule)
            if nxt is None or nxt is EXPIRED:
                return nxt
            if _after(nxt, reference_time):
                return nxt
            current = nxt
        logger.error(
            f"❌ [Recurrence] Gave up advancing from {last_due.isoformat()} after {MAX_ADVANCE_STEPS} steps"
        )
        return EXPIRED

    @staticmethod
    def _step(rule: RecurrenceRule):
        interval = max(1, rule.interval)
        if rule.frequency == Frequency.DAILY:
            return timedelta(days=interval)
        if rule.frequency == Frequency.WEEKLY:
            return timedelta(days=7 * interval)
        if rule.frequency == Frequency.MONTHLY:
            # relativedelta clamps to the last valid day of the target month
            return relativedelta(months=interval)
        if rule.frequency == Frequency.YEARLY:
            return relativedelta(years=interval)
        return None


def is_recurring(rule: Optional[RecurrenceRule]) -> bool:
    return rule is not None and rule.frequency != Frequency.NONE


def next_occurrence(last_due: datetime, rule: Optional[RecurrenceRule], reference_time: Optional[datetime] = None) -> NextOccurrence:
    return RecurrenceCalculator.next_occurrence(last_due, rule, reference_time)


def advance_past(last_due: datetime, rule: Optional[RecurrenceRule], reference_time: datetime) -> NextOccurrence:
    return RecurrenceCalculator.advance_past(last_due, rule, reference_time)
