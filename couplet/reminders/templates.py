"""
Localized notification templates (vi/en).

Bodies render the reminder title verbatim; truncation, if any, is left to
the transport or the device.
"""
from dataclasses import dataclass, field
from typing import Callable, Dict

from couplet.core.config import settings


@dataclass(frozen=True)
class NotificationTemplate:
    title: str
    body: Callable[..., str]
    action_labels: Dict[str, str] = field(default_factory=dict)

    def render(self, **kwargs) -> str:
        return self.body(**kwargs)


# Template categories
REMINDER = "reminder"
COUPLE_REMINDER = "couple_reminder"
UPCOMING = "upcoming"
OVERDUE = "overdue"
DAILY_SUMMARY = "daily_summary"
TEST = "test"


_ACTIONS = {
    "vi": {"complete": "✅ Hoàn thành", "snooze": "⏰ Nhắc lại sau", "view": "👀 Xem chi tiết"},
    "en": {"complete": "✅ Complete", "snooze": "⏰ Snooze", "view": "👀 View Details"},
}


def _count_body(one: str, many: str) -> Callable[..., str]:
    def render(count: int, **_) -> str:
        return one if count == 1 else many.format(count=count)
    return render


TEMPLATES: Dict[str, Dict[str, NotificationTemplate]] = {
    REMINDER: {
        "vi": NotificationTemplate(
            title="💕 Nhắc nhở yêu thương",
            body=lambda title, **_: f"Đừng quên: {title}",
            action_labels=_ACTIONS["vi"],
        ),
        "en": NotificationTemplate(
            title="💕 Love Reminder",
            body=lambda title, **_: f"Don't forget: {title}",
            action_labels=_ACTIONS["en"],
        ),
    },
    COUPLE_REMINDER: {
        "vi": NotificationTemplate(
            title="💕 Nhắc nhở từ người yêu",
            body=lambda title, creator_name=None, **_: f"💕 Nhắc nhở từ {creator_name or 'người yêu'}: {title}",
            action_labels=_ACTIONS["vi"],
        ),
        "en": NotificationTemplate(
            title="💕 Reminder from your love",
            body=lambda title, creator_name=None, **_: f"💕 Reminder from {creator_name or 'your love'}: {title}",
            action_labels=_ACTIONS["en"],
        ),
    },
    UPCOMING: {
        "vi": NotificationTemplate(
            title="⏰ Sắp tới",
            body=lambda title, minutes, **_: f"Còn {minutes} phút nữa: {title}",
        ),
        "en": NotificationTemplate(
            title="⏰ Coming up",
            body=lambda title, minutes, **_: f"{minutes} minutes until: {title}",
        ),
    },
    OVERDUE: {
        "vi": NotificationTemplate(
            title="⚠️ Nhắc nhở quá hạn",
            body=_count_body("Bạn có 1 nhắc nhở đã quá hạn", "Bạn có {count} nhắc nhở đã quá hạn"),
        ),
        "en": NotificationTemplate(
            title="⚠️ Overdue Reminders",
            body=_count_body("You have 1 overdue reminder", "You have {count} overdue reminders"),
        ),
    },
    DAILY_SUMMARY: {
        "vi": NotificationTemplate(
            title="📋 Nhắc nhở hôm nay",
            body=_count_body(
                "Bạn có 1 nhắc nhở cần hoàn thành hôm nay",
                "Bạn có {count} nhắc nhở cần hoàn thành hôm nay",
            ),
        ),
        "en": NotificationTemplate(
            title="📋 Today's Reminders",
            body=_count_body("You have 1 reminder to complete today", "You have {count} reminders to complete today"),
        ),
    },
    TEST: {
        "vi": NotificationTemplate(title="Thông báo thử nghiệm", body=lambda **_: "Đây là thông báo thử nghiệm"),
        "en": NotificationTemplate(title="Test Notification", body=lambda **_: "This is a test notification"),
    },
}


class TemplateProvider:
    """Looks up (category, locale) templates, falling back to the default language."""

    def __init__(self, templates: Dict[str, Dict[str, NotificationTemplate]] | None = None, default_language: str | None = None):
        self.templates = templates or TEMPLATES
        self.default_language = default_language or settings.DEFAULT_LANGUAGE

    def get(self, category: str, locale: str | None) -> NotificationTemplate:
        by_locale = self.templates[category]
        return by_locale.get(locale or self.default_language) or by_locale[self.default_language]
