"""
Client-side local notification scheduling.

`LocalNotificationCenter` is the boundary to the device notification
platform. `InMemoryNotificationCenter` records what would be scheduled and is
used by tests and by headless clients.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Protocol

from . import templates as tpl
from .dispatcher import channel_for
from .enums import NotificationType, warning_lead_minutes
from couplet.utils.timezone import isoformat_utc, to_utc_aware


logger = logging.getLogger(__name__)

PAST_DATE_ERROR = "Date is in the past"


@dataclass
class LocalNotification:
    identifier: str
    title: str
    body: str
    trigger_at: Optional[datetime]
    data: Dict[str, str] = field(default_factory=dict)
    channel: str = "default"


@dataclass
class ScheduleResult:
    success: bool
    scheduled: int = 0
    identifiers: List[str] = field(default_factory=list)
    error: Optional[str] = None


class LocalNotificationCenter(Protocol):
    def schedule(self, notification: LocalNotification) -> str: ...

    def present_now(self, title: str, body: str, data: Dict[str, str]) -> str: ...

    def set_badge_count(self, count: int) -> None: ...


class InMemoryNotificationCenter:
    """Scheduling with the same identifier replaces the earlier notification."""

    def __init__(self):
        self.scheduled: Dict[str, LocalNotification] = {}
        self.presented: List[LocalNotification] = []
        self.badge_count = 0
        self._seq = 0

    def schedule(self, notification: LocalNotification) -> str:
        self.scheduled[notification.identifier] = notification
        return notification.identifier

    def present_now(self, title: str, body: str, data: Dict[str, str]) -> str:
        self._seq += 1
        identifier = f"immediate-{self._seq}"
        self.presented.append(LocalNotification(identifier, title, body, None, dict(data)))
        return identifier

    def set_badge_count(self, count: int) -> None:
        self.badge_count = count


def _identifier(reminder, due: datetime, suffix: str = "") -> str:
    series = reminder.parent_reminder_id or reminder.id
    return f"reminder-{series}-{isoformat_utc(due)}{suffix}"


def schedule_reminder_notification(
    center: LocalNotificationCenter,
    reminder,
    now: datetime,
    language: str,
    due: Optional[datetime] = None,
    template_provider: Optional[tpl.TemplateProvider] = None,
) -> ScheduleResult:
    """
    Schedule the main notification at the due time plus an early warning
    `warning_lead_minutes(priority)` before it when that is still ahead.

    `due` overrides the reminder's own due date for further occurrences of a
    recurring series. Identifiers are derived from the series and the due
    instant, so a rolled-forward occurrence replaces rather than duplicates.
    """
    templates = template_provider or tpl.TemplateProvider()
    now = to_utc_aware(now)
    due = to_utc_aware(due or reminder.due_date)
    if due <= now:
        logger.info(f"🔍 [Local] Reminder {reminder.id} due {due.isoformat()} is in the past, skipping")
        return ScheduleResult(success=False, error=PAST_DATE_ERROR)

    channel = channel_for(reminder).value
    data = {
        "type": NotificationType.REMINDER.value,
        "reminderId": str(reminder.id),
        "reminderType": str(reminder.type),
        "priority": str(reminder.priority),
        "isRecurring": "true" if reminder.is_recurring else "false",
        "dueDate": isoformat_utc(due),
    }
    if reminder.category:
        data["reminderCategory"] = str(reminder.category)

    main = templates.get(tpl.REMINDER, language)
    notifications = [
        LocalNotification(
            identifier=_identifier(reminder, due),
            title=f"{'🔄' if reminder.is_recurring else '💕'} {reminder.title}",
            body=reminder.description or main.render(title=reminder.title),
            trigger_at=due,
            data=data,
            channel=channel,
        )
    ]

    lead = warning_lead_minutes(reminder.priority)
    warning_at = due - timedelta(minutes=lead)
    if lead > 0 and warning_at > now:
        upcoming = templates.get(tpl.UPCOMING, language)
        notifications.append(
            LocalNotification(
                identifier=_identifier(reminder, due, "-warning"),
                title=upcoming.title,
                body=upcoming.render(title=reminder.title, minutes=lead),
                trigger_at=warning_at,
                data={**data, "isWarning": "true"},
                channel=channel,
            )
        )

    identifiers = []
    for n in notifications:
        try:
            identifiers.append(center.schedule(n))
        except Exception as e:
            logger.error(f"❌ [Local] Failed to schedule {n.identifier}: {e!r}")

    if not identifiers:
        return ScheduleResult(success=False, error="No notification could be scheduled")
    logger.info(f"📅 [Local] Scheduled {len(identifiers)}/{len(notifications)} notifications for {reminder.id}")
    return ScheduleResult(success=True, scheduled=len(identifiers), identifiers=identifiers)
