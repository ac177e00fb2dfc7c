"""
Reminder service: the user-facing actions around the dispatch engine.

Primary actions (completion, snooze, token registration) commit first and
never fail because of anything notification related that happens afterwards.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from . import dispatch_job as job
from . import repository
from . import templates as tpl
from .dispatcher import DeliveryOutcome, NotificationDispatcher
from .enums import (
    Priority,
    ReminderType,
    SNOOZE_DEFAULT_MINUTES,
    SNOOZE_MAX_MINUTES,
    SNOOZE_MIN_MINUTES,
)
from .exceptions import ReminderNotFoundError
from .fanout import FanoutCoordinator, FanoutResult
from .metrics import reminders_completed_total
from .models import Reminder, UserProfile, snapshot, touch
from couplet.core.config import settings
from couplet.utils.timezone import to_utc_aware, utc_now


logger = logging.getLogger(__name__)


def _get_or_raise(db: Session, reminder_id: str) -> Reminder:
    reminder = repository.get_reminder(db, reminder_id)
    if reminder is None:
        raise ReminderNotFoundError(reminder_id)
    return reminder


def handle_reminder_updated(
    db: Session,
    before: Dict[str, Any],
    after: Reminder,
    now: Optional[datetime] = None,
) -> Optional[Reminder]:
    """
    Change observer for a reminder record.

    On the transition completed false -> true of a recurring reminder, the
    next occurrence after max(due_date, now) is created. Returns the
    successor, or None when nothing was created.
    """
    now = now or utc_now()
    if before.get("completed") or not after.completed:
        return None
    if not after.is_recurring:
        return None
    return job.continue_series(db, after, now)


def complete_reminder(
    db: Session,
    reminder_id: str,
    completed_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Reminder:
    now = now or utc_now()
    reminder = _get_or_raise(db, reminder_id)
    if reminder.completed:
        logger.info(f"🔍 [Reminders] Reminder {reminder_id} already completed")
        return reminder

    before = snapshot(reminder)
    reminder.completed = True
    reminder.completed_at = now
    reminder.completed_by = completed_by
    touch(reminder, now)
    db.add(reminder)
    db.commit()
    reminders_completed_total.inc()
    logger.info(f"✅ [Reminders] Completed reminder {reminder_id} by {completed_by}")

    try:
        handle_reminder_updated(db, before, reminder, now)
    except Exception as e:
        logger.error(f"❌ [Reminders] Could not continue series of {reminder_id}: {e!r}")
        db.rollback()
    return reminder


def snooze_reminder(
    db: Session,
    reminder_id: str,
    minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Reminder:
    """Move the due date to now + minutes and make the reminder notifiable again."""
    now = now or utc_now()
    minutes = SNOOZE_DEFAULT_MINUTES if minutes is None else minutes
    minutes = min(max(minutes, SNOOZE_MIN_MINUTES), SNOOZE_MAX_MINUTES)

    reminder = _get_or_raise(db, reminder_id)
    if reminder.completed:
        logger.info(f"🔍 [Reminders] Not snoozing completed reminder {reminder_id}")
        return reminder

    reminder.due_date = to_utc_aware(now) + timedelta(minutes=minutes)
    reminder.notification_sent = False
    reminder.notification_attempts = 0
    reminder.last_notification_error = None
    reminder.last_notification_sent_at = None
    touch(reminder, now)
    db.add(reminder)
    db.commit()
    logger.info(f"⏰ [Reminders] Snoozed reminder {reminder_id} for {minutes} minutes")
    return reminder


def cleanup_old_completed(
    db: Session,
    now: Optional[datetime] = None,
    retention_days: Optional[int] = None,
    limit: Optional[int] = None,
) -> int:
    """Delete completed reminders older than the retention window; returns the number deleted."""
    now = now or utc_now()
    retention_days = settings.CLEANUP_RETENTION_DAYS if retention_days is None else retention_days
    limit = limit or settings.CLEANUP_BATCH_SIZE
    cutoff = to_utc_aware(now) - timedelta(days=retention_days)

    total = 0
    while True:
        deleted = repository.delete_completed_before(db, cutoff, limit=limit)
        total += deleted
        if deleted < limit:
            break
    logger.info(f"🧹 [Reminders] Cleaned up {total} completed reminders older than {retention_days} days")
    return total


def register_push_token(db: Session, user_id: str, token: str, now: Optional[datetime] = None) -> Optional[UserProfile]:
    user = repository.set_push_token(db, user_id, token)
    if user is None:
        logger.warning(f"⚠️  [Reminders] Cannot register push token, unknown user {user_id}")
        return None
    logger.info(f"🔑 [Reminders] Registered push token for user {user_id}")
    return user


def notify_reminder(
    db: Session,
    reminder_id: str,
    fanout: FanoutCoordinator,
    now: Optional[datetime] = None,
) -> FanoutResult:
    """Send a reminder immediately, outside the schedule. Delivery bookkeeping is untouched."""
    reminder = _get_or_raise(db, reminder_id)
    return job.deliver(fanout, reminder, now or utc_now())


def send_test_notification(
    dispatcher: NotificationDispatcher,
    user_id: str,
    language: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DeliveryOutcome:
    now = now or utc_now()
    template = dispatcher.templates.get(tpl.TEST, language)
    sample = Reminder(
        id=f"test-{uuid.uuid4().hex[:12]}",
        title=template.render(),
        type=ReminderType.PERSONAL.value,
        owner_id=user_id,
        creator_id=user_id,
        due_date=now,
        priority=Priority.MEDIUM.value,
    )
    return dispatcher.send(user_id, sample, locale=language, now=now)
