"""
Notification dispatcher: one reminder, one recipient, one push.

Builds a platform-agnostic payload, applies the delivery gate and sends it
through the push transport. Recipient-side problems (no token, preferences,
quiet hours) come back as DeliveryOutcome values and are never raised.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from firebase_admin import _apps, credentials, initialize_app, messaging  # type: ignore
from sqlalchemy.orm import Session

from . import repository
from . import templates as tpl
from .delivery_gate import should_deliver
from .enums import (
    ErrorKind,
    NotificationAction,
    NotificationCategory,
    NotificationChannel,
    NotificationType,
    Priority,
    RecipientRole,
)
from .exceptions import InvalidTokenError, TransportError
from .metrics import (
    invalid_tokens_removed_total,
    reminders_dispatch_failed_total,
    reminders_dispatch_success_total,
    reminders_dispatch_suppressed_total,
)
from .schemas import NotificationPreferences
from couplet.core.config import settings
from couplet.utils.timezone import isoformat_utc, utc_now


logger = logging.getLogger(__name__)


@dataclass
class DeliveryOutcome:
    """Result of one recipient send attempt."""
    success: bool
    recipient_id: Optional[str] = None
    role: Optional[RecipientRole] = None
    message_id: Optional[str] = None
    error_kind: Optional[str] = None
    detail: Optional[str] = None

    @property
    def suppressed(self) -> bool:
        return ErrorKind.is_suppressed(self.error_kind)


@dataclass
class NotificationPayload:
    title: str
    body: str
    data: Dict[str, str]
    channel: NotificationChannel = NotificationChannel.REMINDERS
    actions: List[Dict[str, str]] = field(default_factory=list)
    tag: Optional[str] = None
    require_interaction: bool = False


# --- Collaborator contracts ---

@dataclass
class RecipientProfile:
    user_id: str
    push_token: Optional[str]
    preferences: NotificationPreferences
    timezone: Optional[str] = None
    display_name: Optional[str] = None


class UserDirectory(Protocol):
    def get_recipient(self, user_id: str) -> Optional[RecipientProfile]: ...

    def get_couple_members(self, couple_id: str) -> Optional[List[str]]: ...

    def remove_push_token(self, user_id: str) -> None: ...


class PushTransport(Protocol):
    def send(self, token: str, payload: NotificationPayload) -> str: ...


class SqlUserDirectory:
    """UserDirectory backed by the user_profiles and couples tables."""

    def __init__(self, db: Session):
        self.db = db

    def get_recipient(self, user_id: str) -> Optional[RecipientProfile]:
        user = repository.get_user(self.db, user_id)
        if not user:
            return None
        return RecipientProfile(
            user_id=user.id,
            push_token=user.push_token,
            preferences=NotificationPreferences.from_stored(user.notification_preferences),
            timezone=user.timezone,
            display_name=user.display_name,
        )

    def get_couple_members(self, couple_id: str) -> Optional[List[str]]:
        couple = repository.get_couple(self.db, couple_id)
        if not couple:
            return None
        return list(couple.members or [])

    def remove_push_token(self, user_id: str) -> None:
        repository.clear_push_token(self.db, user_id)


# --- FCM transport ---

def _ensure_firebase_initialized() -> bool:
    if _apps:
        return True

    proj = settings.FCM_PROJECT_ID
    creds_json: Optional[str] = (
        settings.FCM_CREDENTIALS_JSON
        or os.getenv("GOOGLE_APPLICATION_CREDENTIALS_JSON")
        or os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    )
    options = {"projectId": proj} if proj else None

    try:
        if creds_json and creds_json.strip().startswith("{"):
            logger.info("🔍 [FCM] Using inline JSON credentials")
            initialize_app(credentials.Certificate(json.loads(creds_json)), options=options)
        elif creds_json and os.path.exists(creds_json):
            logger.info(f"🔍 [FCM] Using file-based credentials: {creds_json}")
            initialize_app(credentials.Certificate(creds_json), options=options)
        elif proj:
            initialize_app(options=options)
        else:
            logger.warning("⚠️  [FCM] No credentials provided - push notifications are disabled")
            return False
    except (ValueError, OSError) as e:
        logger.error(f"❌ [FCM] Failed to initialize Firebase: {e!r}")
        return False

    logger.info(f"✅ [FCM] Firebase app initialized | project_id={proj}")
    return True


class FCMTransport:
    """PushTransport over firebase_admin.messaging."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def build_message(self, token: str, payload: NotificationPayload) -> messaging.Message:
        return messaging.Message(
            token=token,
            notification=messaging.Notification(title=payload.title, body=payload.body),
            data=payload.data,
            android=messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(
                    icon="ic_notification",
                    color="#FF69B4",
                    sound="default",
                    channel_id=payload.channel.value,
                    tag=payload.tag,
                ),
            ),
            apns=messaging.APNSConfig(
                headers={"apns-push-type": "alert", "apns-priority": "10"},
                payload=messaging.APNSPayload(aps=messaging.Aps(sound="default", badge=1)),
            ),
            webpush=messaging.WebpushConfig(
                notification=messaging.WebpushNotification(
                    icon="/icons/icon-192x192.png",
                    badge="/icons/badge-72x72.png",
                    tag=payload.tag,
                    require_interaction=payload.require_interaction,
                    actions=[
                        messaging.WebpushNotificationAction(action=a["action"], title=a["title"])
                        for a in payload.actions
                    ],
                ),
                fcm_options=messaging.WebpushFCMOptions(
                    link=f"{settings.WEB_APP_URL.rstrip('/')}{payload.data.get('url', '')}"
                ),
            ),
        )

    def send(self, token: str, payload: NotificationPayload) -> str:
        if not _ensure_firebase_initialized():
            raise TransportError("Firebase is not initialized")
        message = self.build_message(token, payload)
        try:
            return messaging.send(message, dry_run=self.dry_run)
        except (messaging.UnregisteredError, messaging.SenderIdMismatchError) as e:
            raise InvalidTokenError(str(e), token=token) from e
        except Exception as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e


# --- Payload construction ---

def channel_for(reminder) -> NotificationChannel:
    if reminder.priority == Priority.URGENT.value:
        return NotificationChannel.URGENT_REMINDERS
    if getattr(reminder, "is_recurring", False):
        return NotificationChannel.RECURRING_REMINDERS
    return NotificationChannel.REMINDERS


def build_reminder_payload(
    reminder,
    language: str,
    role: RecipientRole = RecipientRole.OWNER,
    creator_name: Optional[str] = None,
    template_provider: Optional[tpl.TemplateProvider] = None,
) -> NotificationPayload:
    templates = template_provider or tpl.TemplateProvider()
    is_partner = role == RecipientRole.PARTNER

    template = templates.get(tpl.COUPLE_REMINDER if is_partner else tpl.REMINDER, language)
    body = template.render(title=reminder.title, creator_name=creator_name)

    if is_partner:
        action_keys = [NotificationAction.VIEW, NotificationAction.SNOOZE]
    else:
        action_keys = [NotificationAction.COMPLETE, NotificationAction.SNOOZE, NotificationAction.VIEW]
    actions = [
        {"action": a.value, "title": template.action_labels.get(a.value, a.value)}
        for a in action_keys
    ]

    data = {
        "type": (NotificationType.COUPLE_REMINDER if is_partner else NotificationType.REMINDER).value,
        "reminderId": str(reminder.id or ""),
        "coupleId": str(reminder.couple_id or ""),
        "priority": str(reminder.priority or Priority.MEDIUM.value),
        "language": language,
        "url": f"/reminders/{reminder.id}",
        "dueDate": isoformat_utc(reminder.due_date),
    }
    if is_partner:
        data["creatorId"] = str(reminder.creator_id or "")

    return NotificationPayload(
        title=template.title,
        body=body,
        data=data,
        channel=channel_for(reminder),
        actions=actions,
        tag=f"{'couple-reminder' if is_partner else 'reminder'}-{reminder.id}",
        require_interaction=reminder.priority in (Priority.HIGH.value, Priority.URGENT.value),
    )


class NotificationDispatcher:
    """Sends one reminder notification to one recipient."""

    def __init__(
        self,
        directory: UserDirectory,
        transport: PushTransport,
        template_provider: Optional[tpl.TemplateProvider] = None,
    ):
        self.directory = directory
        self.transport = transport
        self.templates = template_provider or tpl.TemplateProvider()

    def send(
        self,
        recipient_id: str,
        reminder,
        locale: Optional[str] = None,
        role: RecipientRole = RecipientRole.OWNER,
        creator_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DeliveryOutcome:
        now = now or utc_now()
        recipient = self.directory.get_recipient(recipient_id)
        if recipient is None:
            logger.info(f"🔍 [Dispatch] User not found: {recipient_id}")
            return self._failed(recipient_id, role, ErrorKind.USER_NOT_FOUND)

        if not recipient.push_token:
            logger.info(f"🔍 [Dispatch] No push token for user: {recipient_id}")
            return self._failed(recipient_id, role, ErrorKind.NO_TOKEN)

        category = NotificationCategory.COUPLE_REMINDERS if role == RecipientRole.PARTNER else NotificationCategory.REMINDERS
        decision = should_deliver(recipient.preferences, now, category, reminder.priority, recipient.timezone)
        if not decision.allowed:
            logger.info(f"🔕 [Dispatch] Suppressed for {recipient_id} reminder={reminder.id}: {decision.reason}")
            reminders_dispatch_suppressed_total.inc()
            return DeliveryOutcome(
                success=False,
                recipient_id=recipient_id,
                role=role,
                error_kind=ErrorKind.suppressed(decision.reason),
            )

        language = locale or recipient.preferences.language or settings.DEFAULT_LANGUAGE
        payload = build_reminder_payload(reminder, language, role, creator_name, self.templates)

        try:
            message_id = self.transport.send(recipient.push_token, payload)
        except InvalidTokenError as e:
            logger.warning(f"⚠️  [Dispatch] Invalid push token for {recipient_id}, removing it: {e}")
            self._remove_token(recipient_id)
            return self._failed(recipient_id, role, ErrorKind.INVALID_TOKEN, str(e))
        except Exception as e:
            # Anything without an explicit invalid-recipient classification is transient
            logger.error(f"❌ [Dispatch] Transport failure for {recipient_id} reminder={reminder.id}: {e!r}")
            return self._failed(recipient_id, role, ErrorKind.TRANSPORT, str(e))

        logger.info(f"✅ [Dispatch] Sent reminder={reminder.id} to {recipient_id} ({role.value}): {message_id}")
        reminders_dispatch_success_total.inc()
        return DeliveryOutcome(success=True, recipient_id=recipient_id, role=role, message_id=message_id)

    def _remove_token(self, recipient_id: str) -> None:
        try:
            self.directory.remove_push_token(recipient_id)
            invalid_tokens_removed_total.inc()
        except Exception as e:
            logger.error(f"❌ [Dispatch] Failed to remove invalid token for {recipient_id}: {e!r}")

    @staticmethod
    def _failed(recipient_id: str, role: RecipientRole, kind: str, detail: Optional[str] = None) -> DeliveryOutcome:
        reminders_dispatch_failed_total.inc()
        return DeliveryOutcome(success=False, recipient_id=recipient_id, role=role, error_kind=kind, detail=detail)
