"""
Reminder, user profile and couple models.
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.types import TypeDecorator

from couplet.db.base import Base
from couplet.utils.timezone import to_utc_aware, utc_now
from .enums import Priority, ReminderType
from .recurrence import RecurrenceRule


class UTCDateTime(TypeDecorator):
    """Timestamp column that always binds and returns UTC-aware datetimes."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return to_utc_aware(value)

    def process_result_value(self, value, dialect):
        return to_utc_aware(value)


def _new_id() -> str:
    return uuid.uuid4().hex


class Reminder(Base):
    """One occurrence of a (possibly recurring) reminder."""
    __tablename__ = "reminders"

    id = Column(String(64), primary_key=True, default=_new_id)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String, nullable=False, default=ReminderType.PERSONAL.value)
    owner_id = Column(String, nullable=True, index=True)
    couple_id = Column(String, nullable=True, index=True)
    creator_id = Column(String, nullable=True)
    due_date = Column(UTCDateTime, nullable=False, index=True)
    priority = Column(String, nullable=False, default=Priority.MEDIUM.value)
    category = Column(String, nullable=True)
    recurrence = Column(JSON(none_as_null=True), nullable=True)  # {"frequency", "interval", "end_date"}

    completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(UTCDateTime, nullable=True)
    completed_by = Column(String, nullable=True)

    # Delivery bookkeeping
    notification_sent = Column(Boolean, nullable=False, default=False)
    last_notification_sent_at = Column(UTCDateTime, nullable=True)
    notification_attempts = Column(Integer, nullable=False, default=0)
    last_notification_error = Column(String, nullable=True)

    # Recurrence lineage
    parent_reminder_id = Column(String(64), nullable=True, index=True)
    next_occurrence_id = Column(String(64), nullable=True)
    series_ended = Column(Boolean, nullable=False, default=False)

    created_at = Column(UTCDateTime, default=utc_now, nullable=False)
    updated_at = Column(UTCDateTime, default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        Index("ix_reminders_dispatch", "completed", "notification_sent", "due_date"),
        Index("ix_reminders_parent_due", "parent_reminder_id", "due_date"),
    )

    @property
    def rule(self) -> Optional[RecurrenceRule]:
        return RecurrenceRule.from_dict(self.recurrence)

    @property
    def is_recurring(self) -> bool:
        return self.rule is not None

    @property
    def is_couple(self) -> bool:
        return self.type == ReminderType.COUPLE.value

    def __repr__(self) -> str:
        return f"<Reminder {self.id} {self.title!r} due={self.due_date}>"


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id = Column(String(64), primary_key=True)
    display_name = Column(String, nullable=True)
    push_token = Column(String, nullable=True)
    push_token_updated_at = Column(UTCDateTime, nullable=True)
    timezone = Column(String, nullable=True)
    couple_id = Column(String(64), nullable=True, index=True)
    notification_preferences = Column(JSON, nullable=True)
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)


class Couple(Base):
    __tablename__ = "couples"

    id = Column(String(64), primary_key=True, default=_new_id)
    members = Column(JSON, nullable=False, default=list)
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)


def snapshot(reminder: Reminder) -> dict:
    """Column values of a reminder, used as the `before` image for update observers."""
    return {c.name: getattr(reminder, c.name) for c in Reminder.__table__.columns}


def touch(reminder: Reminder, now: Optional[datetime] = None) -> None:
    reminder.updated_at = now or utc_now()
