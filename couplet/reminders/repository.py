from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.orm import Session

from .enums import ReminderType
from .models import Couple, Reminder, UserProfile
from couplet.utils.timezone import to_utc_aware, utc_now


def get_reminder(db: Session, reminder_id: str) -> Optional[Reminder]:
    return db.get(Reminder, reminder_id)


def create_reminder(db: Session, commit: bool = True, **fields: Any) -> Reminder:
    if "due_date" in fields:
        fields["due_date"] = to_utc_aware(fields["due_date"])
    if fields.get("type") == ReminderType.PERSONAL.value and not fields.get("creator_id"):
        fields["creator_id"] = fields.get("owner_id")
    reminder = Reminder(**fields)
    db.add(reminder)
    if commit:
        db.commit()
        db.refresh(reminder)
    else:
        db.flush()
    return reminder


def _visible_to(user_id: str, couple_id: Optional[str]):
    """Personal reminders of user_id plus the reminders of their couple."""
    personal = and_(Reminder.type == ReminderType.PERSONAL.value, Reminder.owner_id == user_id)
    if not couple_id:
        return personal
    couple = and_(Reminder.type == ReminderType.COUPLE.value, Reminder.couple_id == couple_id)
    return or_(personal, couple)


def get_due_for_push(db: Session, window_end: datetime, limit: int = 500) -> List[Reminder]:
    """Incomplete reminders not yet notified and due on or before window_end (server tick)."""
    stmt = (
        select(Reminder)
        .where(Reminder.completed == False)  # noqa: E712
        .where(Reminder.notification_sent == False)  # noqa: E712
        .where(Reminder.due_date <= window_end)
        .order_by(Reminder.due_date.asc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def list_upcoming_for_user(
    db: Session,
    user_id: str,
    couple_id: Optional[str],
    start: datetime,
    end: datetime,
) -> List[Reminder]:
    """Incomplete reminders with start < due_date <= end (client look-ahead)."""
    stmt = (
        select(Reminder)
        .where(_visible_to(user_id, couple_id))
        .where(Reminder.completed == False)  # noqa: E712
        .where(Reminder.due_date > start)
        .where(Reminder.due_date <= end)
        .order_by(Reminder.due_date.asc())
    )
    return list(db.execute(stmt).scalars())


def list_overdue(
    db: Session,
    now: datetime,
    user_id: Optional[str] = None,
    couple_id: Optional[str] = None,
    notified_only: bool = False,
    recurring_only: bool = False,
    limit: int = 500,
) -> List[Reminder]:
    """
    Incomplete reminders past due that have not been superseded by a successor.

    recurring_only narrows the result to series that have not ended, so
    stale one-off reminders cannot fill the batch.
    """
    stmt = (
        select(Reminder)
        .where(Reminder.completed == False)  # noqa: E712
        .where(Reminder.due_date < now)
        .where(Reminder.next_occurrence_id.is_(None))
        .order_by(Reminder.due_date.asc())
        .limit(limit)
    )
    if user_id:
        stmt = stmt.where(_visible_to(user_id, couple_id))
    if notified_only:
        stmt = stmt.where(Reminder.notification_sent == True)  # noqa: E712
    if recurring_only:
        stmt = stmt.where(Reminder.recurrence.is_not(None)).where(Reminder.series_ended == False)  # noqa: E712
    return list(db.execute(stmt).scalars())


def list_pending_for_user(db: Session, user_id: str, couple_id: Optional[str]) -> List[Reminder]:
    stmt = (
        select(Reminder)
        .where(_visible_to(user_id, couple_id))
        .where(Reminder.completed == False)  # noqa: E712
        .where(Reminder.next_occurrence_id.is_(None))
    )
    return list(db.execute(stmt).scalars())


def find_occurrence(db: Session, parent_id: str, due_date: datetime) -> Optional[Reminder]:
    stmt = (
        select(Reminder)
        .where(Reminder.parent_reminder_id == parent_id)
        .where(Reminder.due_date == to_utc_aware(due_date))
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def delete_completed_before(db: Session, cutoff: datetime, limit: int = 100) -> int:
    ids = list(
        db.execute(
            select(Reminder.id)
            .where(Reminder.completed == True)  # noqa: E712
            .where(Reminder.completed_at <= cutoff)
            .limit(limit)
        ).scalars()
    )
    if not ids:
        return 0
    db.execute(delete(Reminder).where(Reminder.id.in_(ids)))
    db.commit()
    return len(ids)


# --- Users and couples ---

def get_user(db: Session, user_id: str) -> Optional[UserProfile]:
    return db.get(UserProfile, user_id)


def get_couple(db: Session, couple_id: str) -> Optional[Couple]:
    return db.get(Couple, couple_id)


def set_push_token(db: Session, user_id: str, token: str) -> Optional[UserProfile]:
    user = db.get(UserProfile, user_id)
    if not user:
        return None
    user.push_token = token
    user.push_token_updated_at = utc_now()
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def clear_push_token(db: Session, user_id: str) -> None:
    db.execute(
        update(UserProfile)
        .where(UserProfile.id == user_id)
        .values(push_token=None, push_token_updated_at=None)
    )
    db.commit()
