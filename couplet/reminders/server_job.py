"""
Server-side dispatch job: one scan of the reminder store per beat.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from . import dispatch_job as job
from .dispatcher import FCMTransport, NotificationDispatcher, PushTransport, SqlUserDirectory
from .fanout import FanoutCoordinator
from .metrics import scheduler_dispatched_total, scheduler_scans_total
from couplet.core.config import ReminderSettings, settings
from couplet.utils.timezone import to_utc_aware, utc_now


logger = logging.getLogger(__name__)


class ServerDispatchJob:
    def __init__(
        self,
        db: Session,
        fanout: Optional[FanoutCoordinator] = None,
        transport: Optional[PushTransport] = None,
        cfg: ReminderSettings = settings,
    ):
        self.db = db
        self.cfg = cfg
        if fanout is None:
            directory = SqlUserDirectory(db)
            fanout = FanoutCoordinator(NotificationDispatcher(directory, transport or FCMTransport()))
        self.fanout = fanout

    def tick(self, now: Optional[datetime] = None) -> job.TickReport:
        """
        Deliver everything due within the look-ahead window, then continue
        recurring series whose occurrence was notified and is now overdue.

        Reminders already marked sent are never re-selected. A failure of the
        outer queries propagates; the next beat retries.
        """
        now = to_utc_aware(now) if now else utc_now()
        report = job.TickReport(started_at=now)
        scheduler_scans_total.inc()

        window = timedelta(minutes=self.cfg.SERVER_LOOKAHEAD_MINUTES)
        due = job.select_due(self.db, now, window, limit=self.cfg.SCHEDULER_BATCH_SIZE)
        report.selected = len(due)

        for reminder in due:
            try:
                result = job.deliver(self.fanout, reminder, now)
                job.record_delivery(self.db, reminder, result, now, self.cfg)
                scheduler_dispatched_total.inc()
                if result.success:
                    report.delivered += 1
                else:
                    report.failed += 1
            except Exception as e:
                logger.error(f"❌ [Scheduler] Failed processing reminder={reminder.id}: {e!r}")
                report.errors += 1
                try:
                    job.record_error(self.db, reminder, e, now)
                except Exception as inner:
                    logger.error(f"❌ [Scheduler] Could not record error for reminder={reminder.id}: {inner!r}")
                    self.db.rollback()

        overdue = job.select_overdue(
            self.db, now, notified_only=True, recurring_only=True, limit=self.cfg.SCHEDULER_BATCH_SIZE
        )
        recurring, disabled = job.partition_overdue(overdue)
        for reminder in disabled:
            # stored rule is disabled or unreadable
            try:
                job.end_series(self.db, reminder, now)
            except Exception as e:
                logger.error(f"❌ [Scheduler] Could not end series for reminder={reminder.id}: {e!r}")
                self.db.rollback()
        for reminder in recurring:
            try:
                if job.continue_series(self.db, reminder, now) is None:
                    report.expired += 1
                else:
                    report.rolled_forward += 1
            except Exception as e:
                logger.error(f"❌ [Scheduler] Roll-forward failed for reminder={reminder.id}: {e!r}")
                report.errors += 1
                self.db.rollback()

        logger.info(
            f"🔔 [Scheduler] Tick {now.isoformat()} selected={report.selected} delivered={report.delivered} "
            f"failed={report.failed} rolled_forward={report.rolled_forward} errors={report.errors}"
        )
        return report
