"""
Fan-out: route one reminder event to its one or two recipients.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from .dispatcher import DeliveryOutcome, NotificationDispatcher, UserDirectory
from .enums import ErrorKind, RecipientRole
from .exceptions import InvalidCoupleError
from couplet.utils.timezone import utc_now


logger = logging.getLogger(__name__)


@dataclass
class FanoutResult:
    success: bool
    reminder_id: Optional[str] = None
    per_recipient: List[DeliveryOutcome] = field(default_factory=list)
    error_kind: Optional[str] = None

    @property
    def all_transport_failures(self) -> bool:
        """True when every recipient failed with a transient transport error."""
        return bool(self.per_recipient) and all(
            not o.success and o.error_kind == ErrorKind.TRANSPORT for o in self.per_recipient
        )

    def error_summary(self) -> Optional[str]:
        if self.success:
            return None
        if self.error_kind:
            return self.error_kind
        kinds = [f"{o.recipient_id}:{o.error_kind}" for o in self.per_recipient if o.error_kind]
        return ", ".join(kinds) or None


class FanoutCoordinator:
    def __init__(self, dispatcher: NotificationDispatcher, directory: Optional[UserDirectory] = None):
        self.dispatcher = dispatcher
        self.directory = directory or dispatcher.directory

    def resolve_recipients(self, reminder) -> List[Tuple[str, RecipientRole]]:
        """
        Recipients of a reminder with their roles.

        Raises InvalidCoupleError for a couple reminder whose couple is missing,
        does not have exactly two members, or does not contain the creator.
        Returns an empty list for a personal reminder with no owner.
        """
        if not reminder.is_couple:
            owner = reminder.owner_id or reminder.creator_id
            return [(owner, RecipientRole.OWNER)] if owner else []

        members = self.directory.get_couple_members(reminder.couple_id) if reminder.couple_id else None
        if not members:
            raise InvalidCoupleError(f"Couple not found: {reminder.couple_id}")
        if len(members) != 2:
            raise InvalidCoupleError(f"Couple {reminder.couple_id} has {len(members)} members")
        if reminder.creator_id not in members:
            raise InvalidCoupleError(f"Creator {reminder.creator_id} is not a member of couple {reminder.couple_id}")

        partner = next(m for m in members if m != reminder.creator_id)
        return [(partner, RecipientRole.PARTNER), (reminder.creator_id, RecipientRole.CREATOR)]

    def _creator_name(self, reminder) -> Optional[str]:
        if not reminder.creator_id:
            return None
        try:
            creator = self.directory.get_recipient(reminder.creator_id)
        except Exception as e:
            logger.warning(f"⚠️  [Fanout] Could not load creator {reminder.creator_id}: {e!r}")
            return None
        return creator.display_name if creator else None

    def deliver(self, reminder, locale: Optional[str] = None, now: Optional[datetime] = None) -> FanoutResult:
        now = now or utc_now()
        try:
            recipients = self.resolve_recipients(reminder)
        except InvalidCoupleError as e:
            logger.warning(f"⚠️  [Fanout] Aborting reminder={reminder.id}: {e}")
            return FanoutResult(success=False, reminder_id=reminder.id, error_kind=ErrorKind.INVALID_COUPLE)

        if not recipients:
            logger.warning(f"⚠️  [Fanout] Reminder {reminder.id} has no owner")
            return FanoutResult(success=False, reminder_id=reminder.id, error_kind=ErrorKind.MISSING_OWNER)

        creator_name = self._creator_name(reminder) if reminder.is_couple else None

        outcomes: List[DeliveryOutcome] = []
        for recipient_id, role in recipients:
            try:
                outcome = self.dispatcher.send(
                    recipient_id,
                    reminder,
                    locale=locale,
                    role=role,
                    creator_name=creator_name if role == RecipientRole.PARTNER else None,
                    now=now,
                )
            except Exception as e:
                logger.error(f"❌ [Fanout] Send to {recipient_id} failed for reminder={reminder.id}: {e!r}")
                outcome = DeliveryOutcome(
                    success=False,
                    recipient_id=recipient_id,
                    role=role,
                    error_kind=ErrorKind.TRANSPORT,
                    detail=str(e),
                )
            outcomes.append(outcome)

        success = any(o.success for o in outcomes)
        logger.info(
            f"🔔 [Fanout] reminder={reminder.id} recipients={len(outcomes)} "
            f"delivered={sum(1 for o in outcomes if o.success)}"
        )
        return FanoutResult(success=success, reminder_id=reminder.id, per_recipient=outcomes)
