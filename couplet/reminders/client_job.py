"""
Client reminder job: keeps one signed-in user's local notifications in step
with the reminder store.

Every CLIENT_CHECK_INTERVAL_SECONDS the job looks CLIENT_LOOKAHEAD_HOURS
ahead, schedules local notifications for what it has not scheduled yet this
session, continues overdue recurring series, announces regular overdue
reminders once, and refreshes the badge count.
"""
import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from . import dispatch_job as job
from . import repository
from . import templates as tpl
from .dedup import DedupLedger
from .enums import JobStatus, NotificationType
from .local_notifications import LocalNotificationCenter, schedule_reminder_notification
from .metrics import overdue_aggregates_total
from .recurrence import EXPIRED, next_occurrence
from .schemas import NotificationPreferences
from couplet.core.config import ReminderSettings, settings
from couplet.utils.timezone import to_user_local, to_utc_aware, utc_now


logger = logging.getLogger(__name__)

OVERDUE_KEY_PREFIX = "overdue:"


@dataclass
class ClientTickReport:
    started_at: datetime
    upcoming: int = 0
    scheduled: int = 0
    skipped: int = 0
    rejected: int = 0
    rolled_forward: int = 0
    overdue: int = 0
    overdue_announced: bool = False
    pending: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class ClientReminderJob:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        user_id: str,
        center: LocalNotificationCenter,
        cfg: ReminderSettings = settings,
        template_provider: Optional[tpl.TemplateProvider] = None,
    ):
        self.session_factory = session_factory
        self.user_id = user_id
        self.center = center
        self.cfg = cfg
        self.templates = template_provider or tpl.TemplateProvider()
        self.ledger = DedupLedger()
        self.status = JobStatus.IDLE
        self.check_interval = cfg.CLIENT_CHECK_INTERVAL_SECONDS
        self.lookahead = timedelta(hours=cfg.CLIENT_LOOKAHEAD_HOURS)
        self.last_run_at: Optional[datetime] = None
        self.last_report: Optional[ClientTickReport] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self.status == JobStatus.RUNNING

    # --- Lifecycle ---

    async def start(self) -> None:
        if self.is_running:
            logger.info("🔍 [Client] Reminder job is already running")
            return
        logger.info(f"🚀 [Client] Starting reminder job for user {self.user_id}")
        self.status = JobStatus.RUNNING
        await self._tick_in_executor()
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if not self.is_running:
            logger.info("🔍 [Client] Reminder job is not running")
            return
        logger.info(f"🛑 [Client] Stopping reminder job for user {self.user_id}")
        self.status = JobStatus.STOPPED
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        while self.is_running:
            await asyncio.sleep(self.check_interval)
            await self._tick_in_executor()

    async def _tick_in_executor(self) -> Optional[ClientTickReport]:
        # Session work is blocking
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._safe_tick)

    def _safe_tick(self) -> Optional[ClientTickReport]:
        try:
            return self.run_now()
        except Exception as e:
            logger.error(f"❌ [Client] Reminder check failed: {e!r}")
            return None

    def clear_cache(self) -> None:
        self.ledger.clear()
        logger.info("🧹 [Client] Cleared scheduled reminder cache")

    def get_status(self) -> dict:
        return {
            "user_id": self.user_id,
            "status": self.status.value,
            "is_running": self.is_running,
            "scheduled_count": len(self.ledger),
            "check_interval_seconds": self.check_interval,
            "lookahead_hours": self.cfg.CLIENT_LOOKAHEAD_HOURS,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
        }

    # --- Tick ---

    def run_now(self, now: Optional[datetime] = None) -> ClientTickReport:
        """Run one check synchronously. Errors from the store propagate."""
        now = to_utc_aware(now) if now else utc_now()
        report = ClientTickReport(started_at=now)
        db = self.session_factory()
        try:
            user = repository.get_user(db, self.user_id)
            couple_id = user.couple_id if user else None
            prefs = NotificationPreferences.from_stored(user.notification_preferences if user else None)
            language = prefs.language or self.cfg.DEFAULT_LANGUAGE

            self._schedule_upcoming(db, now, couple_id, language, report)
            self._process_overdue(db, now, couple_id, language, report)

            report.pending = len(repository.list_pending_for_user(db, self.user_id, couple_id))
            self.center.set_badge_count(report.pending)
        finally:
            db.close()

        self.last_run_at = now
        self.last_report = report
        logger.info(
            f"🔔 [Client] Check done user={self.user_id} upcoming={report.upcoming} scheduled={report.scheduled} "
            f"skipped={report.skipped} overdue={report.overdue} pending={report.pending}"
        )
        return report

    def _schedule(self, reminder, now: datetime, language: str, report: ClientTickReport, due: Optional[datetime] = None) -> bool:
        due = to_utc_aware(due or reminder.due_date)
        if self.ledger.should_skip(reminder.id, due):
            report.skipped += 1
            return False
        result = schedule_reminder_notification(
            self.center, reminder, now, language, due=due, template_provider=self.templates
        )
        if not result.success:
            logger.info(f"🔍 [Client] Not scheduled reminder={reminder.id}: {result.error}")
            report.rejected += 1
            return False
        self.ledger.mark_scheduled(reminder.id, due)
        report.scheduled += 1
        return True

    def _schedule_upcoming(self, db: Session, now: datetime, couple_id: Optional[str], language: str, report: ClientTickReport) -> None:
        upcoming = job.select_upcoming(db, now, self.lookahead, self.user_id, couple_id)
        report.upcoming = len(upcoming)
        window_end = now + self.lookahead
        for reminder in upcoming:
            self._schedule(reminder, now, language, report)
            if reminder.is_recurring:
                self._schedule_series(reminder, now, window_end, language, report)

    def _schedule_series(self, reminder, now: datetime, window_end: datetime, language: str, report: ClientTickReport) -> None:
        """Further occurrences of a recurring reminder inside the look-ahead window."""
        current = to_utc_aware(reminder.due_date)
        rule = reminder.rule
        for _ in range(self.cfg.CLIENT_MAX_RECURRING_AHEAD):
            current = next_occurrence(current, rule)
            if current is None or current is EXPIRED or current > window_end:
                return
            self._schedule(reminder, now, language, report, due=current)

    def _process_overdue(self, db: Session, now: datetime, couple_id: Optional[str], language: str, report: ClientTickReport) -> None:
        overdue = job.select_overdue(db, now, user_id=self.user_id, couple_id=couple_id)
        report.overdue = len(overdue)
        if not overdue:
            return
        recurring, regular = job.partition_overdue(overdue)

        for reminder in recurring:
            try:
                successor = job.continue_series(db, reminder, now)
            except Exception as e:
                logger.error(f"❌ [Client] Failed to continue recurring reminder {reminder.id}: {e!r}")
                db.rollback()
                continue
            if successor is not None:
                report.rolled_forward += 1
                if to_utc_aware(successor.due_date) <= now + self.lookahead:
                    self._schedule(successor, now, language, report)

        unannounced = [
            r for r in regular
            if not self.ledger.should_skip(f"{OVERDUE_KEY_PREFIX}{r.id}", r.due_date)
        ]
        if not unannounced:
            return

        template = self.templates.get(tpl.OVERDUE, language)
        self.center.present_now(
            template.title,
            template.render(count=len(regular)),
            {"type": NotificationType.OVERDUE_REMINDERS.value, "count": str(len(regular))},
        )
        for r in unannounced:
            self.ledger.mark_scheduled(f"{OVERDUE_KEY_PREFIX}{r.id}", r.due_date)
        report.overdue_announced = True
        overdue_aggregates_total.inc()
        logger.info(f"⚠️  [Client] Announced {len(regular)} overdue reminders to user {self.user_id}")

    # --- Summaries ---

    def send_daily_summary(self, now: Optional[datetime] = None) -> int:
        """Present one notification with the number of reminders due today; returns the count."""
        now = to_utc_aware(now) if now else utc_now()
        db = self.session_factory()
        try:
            user = repository.get_user(db, self.user_id)
            couple_id = user.couple_id if user else None
            tz_name = user.timezone if user else None
            prefs = NotificationPreferences.from_stored(user.notification_preferences if user else None)
            pending = repository.list_pending_for_user(db, self.user_id, couple_id)
        finally:
            db.close()

        today = to_user_local(now, tz_name).date()
        count = sum(1 for r in pending if to_user_local(r.due_date, tz_name).date() == today)
        if count:
            template = self.templates.get(tpl.DAILY_SUMMARY, prefs.language or self.cfg.DEFAULT_LANGUAGE)
            self.center.present_now(
                template.title,
                template.render(count=count),
                {"type": NotificationType.DAILY_SUMMARY.value, "count": str(count)},
            )
            logger.info(f"📋 [Client] Daily summary for {self.user_id}: {count} reminders")
        return count
