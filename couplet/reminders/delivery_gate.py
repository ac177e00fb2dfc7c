"""
Delivery gate: decides whether a recipient should get a notification now.

Configuration defects (malformed quiet-hours strings, unknown timezones) fail
open: the notification is allowed and a warning is logged.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .enums import NotificationCategory, Priority
from .schemas import NotificationPreferences, QuietHours
from couplet.core.config import settings
from couplet.utils.timezone import to_utc_aware


logger = logging.getLogger(__name__)

DENY_DISABLED = "disabled"
DENY_CATEGORY = "category-disabled"
DENY_QUIET_HOURS = "quiet-hours"


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = GateDecision(True)


def parse_minute_of_day(value: str) -> int:
    """Parse "HH:MM" into minutes after midnight. Raises ValueError when malformed."""
    hours, minutes = value.strip().split(":")
    h, m = int(hours), int(minutes)
    if not (0 <= h <= 23 and 0 <= m <= 59):
        raise ValueError(f"time out of range: {value!r}")
    return h * 60 + m


def in_quiet_window(minute_of_day: int, start: int, end: int) -> bool:
    if start > end:
        # Overnight window, e.g. 22:00-08:00
        return minute_of_day >= start or minute_of_day <= end
    return start <= minute_of_day <= end


def _resolve_zone(tz_name: Optional[str]) -> ZoneInfo:
    return ZoneInfo(tz_name or settings.DEFAULT_TIMEZONE)


def is_quiet_hours(quiet_hours: QuietHours, candidate_time: datetime, tz_name: Optional[str] = None) -> bool:
    """True when candidate_time falls inside the enabled quiet-hours window."""
    if not quiet_hours.enabled:
        return False
    try:
        start = parse_minute_of_day(quiet_hours.start)
        end = parse_minute_of_day(quiet_hours.end)
        local = to_utc_aware(candidate_time).astimezone(_resolve_zone(tz_name))
    except (ValueError, AttributeError, ZoneInfoNotFoundError) as e:
        logger.warning(
            f"⚠️  [Gate] Could not evaluate quiet hours start={quiet_hours.start!r} "
            f"end={quiet_hours.end!r} tz={tz_name!r}: {e} - allowing delivery"
        )
        return False
    return in_quiet_window(local.hour * 60 + local.minute, start, end)


def should_deliver(
    prefs: Optional[NotificationPreferences],
    candidate_time: datetime,
    category: NotificationCategory = NotificationCategory.REMINDERS,
    priority: Optional[str] = None,
    timezone: Optional[str] = None,
) -> GateDecision:
    """
    Decide allow/deny for one recipient.

    Urgent reminders bypass quiet hours but never the global or per-category toggles.
    `timezone` is the recipient profile timezone, used when prefs carry none.
    """
    prefs = prefs or NotificationPreferences()

    if not prefs.enabled:
        return GateDecision(False, DENY_DISABLED)
    if not prefs.allows_category(category):
        return GateDecision(False, DENY_CATEGORY)

    if priority == Priority.URGENT:
        return ALLOW

    if is_quiet_hours(prefs.quiet_hours, candidate_time, prefs.timezone or timezone):
        return GateDecision(False, DENY_QUIET_HOURS)
    return ALLOW
