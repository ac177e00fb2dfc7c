from datetime import datetime, timezone as dt_timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from couplet.core.config import settings


def get_zoneinfo(tz_name: Optional[str] = None) -> Optional[ZoneInfo]:
    """Return the ZoneInfo for tz_name (or DEFAULT_TIMEZONE); None when unknown."""
    name = tz_name or getattr(settings, "DEFAULT_TIMEZONE", None)
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def utc_now() -> datetime:
    return datetime.now(dt_timezone.utc)


def to_utc_aware(dt: datetime | None) -> datetime | None:
    """
    Normalize any datetime to UTC-aware (tzinfo=UTC) for APIs needing tz-aware values.
    - Aware datetimes are converted to UTC
    - Naive datetimes are assumed UTC and tz attached
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=dt_timezone.utc)
    return dt.astimezone(dt_timezone.utc)


def to_user_local(dt: datetime, tz_name: Optional[str] = None) -> datetime:
    """Convert dt to the user's timezone, falling back to DEFAULT_TIMEZONE, then UTC."""
    tz = get_zoneinfo(tz_name) or get_zoneinfo() or dt_timezone.utc
    return to_utc_aware(dt).astimezone(tz)


def isoformat_utc(dt: datetime | None) -> str:
    if dt is None:
        return ""
    return to_utc_aware(dt).isoformat()
