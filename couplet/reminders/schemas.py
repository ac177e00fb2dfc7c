"""
Pydantic schemas: notification preferences and the admin API payloads.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .enums import (
    NotificationCategory,
    SNOOZE_DEFAULT_MINUTES,
    SNOOZE_MAX_MINUTES,
    SNOOZE_MIN_MINUTES,
)


logger = logging.getLogger(__name__)


class QuietHours(BaseModel):
    """Quiet-hours window. start/end stay raw strings; they are parsed at gate time."""
    model_config = ConfigDict(extra="ignore")

    enabled: bool = False
    start: str = "22:00"
    end: str = "08:00"


class NotificationPreferences(BaseModel):
    """Per-user notification preferences; missing values mean "enabled"."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    enabled: bool = True
    reminders: bool = True
    couple_reminders: bool = Field(default=True, alias="coupleReminders")
    love_messages: bool = Field(default=True, alias="loveMessages")
    milestones: bool = Field(default=True, alias="peacefulDaysMilestones")
    language: Optional[Literal["vi", "en"]] = None
    quiet_hours: QuietHours = Field(default_factory=QuietHours, alias="quietHours")
    timezone: Optional[str] = None

    def allows_category(self, category: NotificationCategory) -> bool:
        return bool(getattr(self, NotificationCategory(category).value, True))

    @classmethod
    def from_stored(cls, data: Optional[Dict[str, Any]]) -> "NotificationPreferences":
        """Validate stored preferences; invalid fields fall back to their defaults."""
        if not isinstance(data, dict):
            return cls()
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            bad = {err["loc"][0] for err in e.errors() if err["loc"]}
            logger.warning(f"⚠️  [Preferences] Ignoring invalid fields {sorted(map(str, bad))}")
            try:
                return cls.model_validate({k: v for k, v in data.items() if k not in bad})
            except ValidationError:
                return cls()



class ReminderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: Optional[str] = None
    type: str
    owner_id: Optional[str] = None
    couple_id: Optional[str] = None
    creator_id: Optional[str] = None
    due_date: datetime
    priority: str
    category: Optional[str] = None
    recurrence: Optional[Dict[str, Any]] = None
    completed: bool
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    notification_sent: bool
    last_notification_sent_at: Optional[datetime] = None
    notification_attempts: int
    last_notification_error: Optional[str] = None
    parent_reminder_id: Optional[str] = None
    next_occurrence_id: Optional[str] = None
    series_ended: bool = False


class CompleteRequest(BaseModel):
    completed_by: Optional[str] = None


class SnoozeRequest(BaseModel):
    minutes: int = Field(default=SNOOZE_DEFAULT_MINUTES, ge=SNOOZE_MIN_MINUTES, le=SNOOZE_MAX_MINUTES)


class DeviceTokenUpdate(BaseModel):
    user_id: str
    token: str = Field(..., min_length=1)


class SendTestNotificationRequest(BaseModel):
    user_id: str
    language: Optional[Literal["vi", "en"]] = None


class DeliveryOutcomeRead(BaseModel):
    success: bool
    recipient_id: Optional[str] = None
    role: Optional[str] = None
    message_id: Optional[str] = None
    error_kind: Optional[str] = None
    detail: Optional[str] = None


class FanoutResultRead(BaseModel):
    success: bool
    reminder_id: Optional[str] = None
    error_kind: Optional[str] = None
    per_recipient: List[DeliveryOutcomeRead] = Field(default_factory=list)


class TickReportRead(BaseModel):
    started_at: datetime
    selected: int
    delivered: int
    failed: int
    rolled_forward: int
    expired: int
    errors: int
