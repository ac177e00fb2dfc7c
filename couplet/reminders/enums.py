"""
Shared enums for the reminder engine. Every other module imports from here.
"""
from enum import Enum


class ReminderType(str, Enum):
    PERSONAL = "personal"
    COUPLE = "couple"


class Frequency(str, Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class NotificationCategory(str, Enum):
    """Per-category toggles in NotificationPreferences."""
    REMINDERS = "reminders"
    COUPLE_REMINDERS = "couple_reminders"
    LOVE_MESSAGES = "love_messages"
    MILESTONES = "milestones"


class NotificationChannel(str, Enum):
    DEFAULT = "default"
    REMINDERS = "reminders"
    RECURRING_REMINDERS = "recurring-reminders"
    OVERDUE_REMINDERS = "overdue-reminders"
    URGENT_REMINDERS = "urgent-reminders"


class NotificationType(str, Enum):
    """Value of the `type` key in payload data."""
    REMINDER = "reminder"
    COUPLE_REMINDER = "couple_reminder"
    OVERDUE_REMINDERS = "overdue-reminders"
    DAILY_SUMMARY = "daily-summary"


class RecipientRole(str, Enum):
    OWNER = "owner"        # personal reminder owner
    CREATOR = "creator"    # creator's own copy of a couple reminder
    PARTNER = "partner"    # the non-creator couple member


class NotificationAction(str, Enum):
    COMPLETE = "complete"
    SNOOZE = "snooze"
    VIEW = "view"


class JobStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class ErrorKind:
    """error_kind values on DeliveryOutcome / FanoutResult."""
    NO_TOKEN = "no-token"
    USER_NOT_FOUND = "user-not-found"
    INVALID_TOKEN = "invalid-token"
    TRANSPORT = "transport"
    INVALID_COUPLE = "invalid-couple"
    MISSING_OWNER = "missing-owner"
    SUPPRESSED_PREFIX = "suppressed:"

    @classmethod
    def suppressed(cls, reason: str) -> str:
        return f"{cls.SUPPRESSED_PREFIX}{reason}"

    @classmethod
    def is_suppressed(cls, kind: str | None) -> bool:
        return bool(kind) and kind.startswith(cls.SUPPRESSED_PREFIX)


# Minutes before due time for the early-warning local notification
WARNING_LEAD_MINUTES = {
    Priority.URGENT: 60,
    Priority.HIGH: 30,
    Priority.MEDIUM: 15,
    Priority.LOW: 0,
}
DEFAULT_WARNING_LEAD_MINUTES = 15

# Snooze bounds in minutes
SNOOZE_DEFAULT_MINUTES = 15
SNOOZE_MIN_MINUTES = 1
SNOOZE_MAX_MINUTES = 1440


def warning_lead_minutes(priority) -> int:
    try:
        return WARNING_LEAD_MINUTES[Priority(priority)]
    except ValueError:
        return DEFAULT_WARNING_LEAD_MINUTES
