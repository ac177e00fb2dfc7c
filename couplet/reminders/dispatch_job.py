"""
Shared reminder dispatch library.

Both trigger adapters (the Celery-driven server job and the per-user client
job) are thin loops over these functions:

    Select -> Gate-by-window -> Fan-out -> Roll-forward-or-mark-sent -> Persist

Recurring reminders are continued only through `roll_forward`, which is
idempotent per stored due date: completing an occurrence and detecting it as
overdue in the same tick produce exactly one successor.
"""
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from . import repository
from .fanout import FanoutCoordinator, FanoutResult
from .metrics import reminders_rolled_forward_total
from .models import Reminder, touch
from .recurrence import EXPIRED, NextOccurrence, advance_past
from couplet.core.config import ReminderSettings, settings
from couplet.utils.timezone import to_utc_aware, utc_now


logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    started_at: datetime
    selected: int = 0
    delivered: int = 0
    failed: int = 0
    rolled_forward: int = 0
    expired: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


# --- Select ---

def select_due(db: Session, now: datetime, window: timedelta, limit: Optional[int] = None) -> List[Reminder]:
    """Incomplete, not-yet-notified reminders due on or before now + window."""
    return repository.get_due_for_push(db, to_utc_aware(now) + window, limit=limit or settings.SCHEDULER_BATCH_SIZE)


def select_upcoming(
    db: Session,
    now: datetime,
    window: timedelta,
    user_id: str,
    couple_id: Optional[str] = None,
) -> List[Reminder]:
    now = to_utc_aware(now)
    return repository.list_upcoming_for_user(db, user_id, couple_id, now, now + window)


def select_overdue(
    db: Session,
    now: datetime,
    user_id: Optional[str] = None,
    couple_id: Optional[str] = None,
    notified_only: bool = False,
    recurring_only: bool = False,
    limit: Optional[int] = None,
) -> List[Reminder]:
    return repository.list_overdue(
        db,
        to_utc_aware(now),
        user_id=user_id,
        couple_id=couple_id,
        notified_only=notified_only,
        recurring_only=recurring_only,
        limit=limit or settings.SCHEDULER_BATCH_SIZE,
    )


def partition_overdue(reminders: List[Reminder]) -> Tuple[List[Reminder], List[Reminder]]:
    """Split overdue reminders into (recurring, regular)."""
    recurring, regular = [], []
    for r in reminders:
        (recurring if r.is_recurring else regular).append(r)
    return recurring, regular


# --- Recurrence continuation ---

def compute_next(reminder: Reminder, now: datetime) -> NextOccurrence:
    """First occurrence of the series strictly after max(due_date, now)."""
    due = to_utc_aware(reminder.due_date)
    return advance_past(due, reminder.rule, max(due, to_utc_aware(now)))


def series_id(reminder: Reminder) -> str:
    return reminder.parent_reminder_id or reminder.id


def roll_forward(
    db: Session,
    reminder: Reminder,
    next_due: datetime,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> Reminder:
    """
    Create (or reuse) the successor occurrence of a recurring reminder.

    The successor is a new record with fresh delivery bookkeeping, linked
    back through parent_reminder_id. An existing occurrence of the same
    series with the same due date is reused, and a reminder whose
    next_occurrence_id is already set returns that successor unchanged.
    """
    now = now or utc_now()
    next_due = to_utc_aware(next_due)

    if reminder.next_occurrence_id:
        existing = repository.get_reminder(db, reminder.next_occurrence_id)
        if existing is not None:
            logger.info(f"🔁 [Recurrence] Reminder {reminder.id} already rolled forward to {existing.id}")
            return existing

    if next_due <= to_utc_aware(reminder.due_date):
        raise ValueError(f"next due date {next_due} is not after {reminder.due_date}")

    parent_id = series_id(reminder)
    successor = repository.find_occurrence(db, parent_id, next_due)
    if successor is None:
        successor = Reminder(
            title=reminder.title,
            description=reminder.description,
            type=reminder.type,
            owner_id=reminder.owner_id,
            couple_id=reminder.couple_id,
            creator_id=reminder.creator_id,
            due_date=next_due,
            priority=reminder.priority,
            category=reminder.category,
            recurrence=reminder.recurrence,
            completed=False,
            notification_sent=False,
            notification_attempts=0,
            parent_reminder_id=parent_id,
            created_at=now,
            updated_at=now,
        )
        db.add(successor)
        db.flush()
        reminders_rolled_forward_total.inc()
        logger.info(f"🔁 [Recurrence] Created occurrence {successor.id} of {parent_id} due {next_due.isoformat()}")
    else:
        logger.info(f"🔁 [Recurrence] Reusing occurrence {successor.id} of {parent_id} due {next_due.isoformat()}")

    reminder.next_occurrence_id = successor.id
    touch(reminder, now)
    db.add(reminder)
    if commit:
        db.commit()
    return successor


def end_series(db: Session, reminder: Reminder, now: Optional[datetime] = None) -> None:
    """Flag the record so the overdue pass stops selecting it."""
    if reminder.series_ended:
        return
    reminder.series_ended = True
    touch(reminder, now or utc_now())
    db.add(reminder)
    db.commit()


def continue_series(db: Session, reminder: Reminder, now: datetime) -> Optional[Reminder]:
    """roll_forward to compute_next(reminder, now); None when the series has ended."""
    next_due = compute_next(reminder, now)
    if next_due is None or next_due is EXPIRED:
        logger.info(f"🔚 [Recurrence] Series of reminder {reminder.id} has ended")
        end_series(db, reminder, now)
        return None
    return roll_forward(db, reminder, next_due, now)


# --- Fan-out and bookkeeping ---

def deliver(
    fanout: FanoutCoordinator,
    reminder: Reminder,
    now: Optional[datetime] = None,
    locale: Optional[str] = None,
) -> FanoutResult:
    try:
        return fanout.deliver(reminder, locale=locale, now=now)
    except Exception as e:
        logger.error(f"❌ [Dispatch] Fan-out raised for reminder={reminder.id}: {e!r}")
        return FanoutResult(success=False, reminder_id=reminder.id, error_kind=f"error:{type(e).__name__}")


def is_retryable(reminder: Reminder, result: FanoutResult, now: datetime, cfg: ReminderSettings = settings) -> bool:
    """A failed delivery is retried by a later tick only for transient errors inside the retry window."""
    if result.success or not result.all_transport_failures:
        return False
    if (reminder.notification_attempts or 0) >= cfg.MAX_DELIVERY_ATTEMPTS:
        return False
    window_start = to_utc_aware(now) - timedelta(minutes=cfg.RETRY_WINDOW_MINUTES)
    return to_utc_aware(reminder.due_date) >= window_start


def record_delivery(
    db: Session,
    reminder: Reminder,
    result: FanoutResult,
    now: datetime,
    cfg: ReminderSettings = settings,
    commit: bool = True,
) -> None:
    reminder.notification_attempts = (reminder.notification_attempts or 0) + 1
    if result.success:
        reminder.notification_sent = True
        reminder.last_notification_sent_at = now
        reminder.last_notification_error = None
    else:
        reminder.last_notification_error = result.error_summary()
        reminder.notification_sent = not is_retryable(reminder, result, now, cfg)
        if not reminder.notification_sent:
            logger.info(
                f"🔁 [Dispatch] Will retry reminder={reminder.id} "
                f"(attempt {reminder.notification_attempts}/{cfg.MAX_DELIVERY_ATTEMPTS})"
            )
    touch(reminder, now)
    db.add(reminder)
    if commit:
        db.commit()


def record_error(db: Session, reminder: Reminder, error: Exception, now: datetime) -> None:
    """Mark a reminder whose processing raised so it is not re-selected forever."""
    db.rollback()
    reminder.notification_sent = True
    reminder.notification_attempts = (reminder.notification_attempts or 0) + 1
    reminder.last_notification_error = f"{type(error).__name__}: {error}"[:500]
    touch(reminder, now)
    db.add(reminder)
    db.commit()
