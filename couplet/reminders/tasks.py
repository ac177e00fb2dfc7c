import logging
from datetime import datetime
from typing import Optional

from celery import shared_task
from celery.signals import setup_logging
from sqlalchemy.orm import Session

from couplet.core.logging import configure_logging
from couplet.db.session import SessionLocal
from . import repository, service
from .celery_app import celery_app  # noqa: F401
from .server_job import ServerDispatchJob
from couplet.utils.timezone import to_utc_aware


logger = logging.getLogger(__name__)


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    configure_logging()


def _parse_now(now: Optional[str]) -> Optional[datetime]:
    return to_utc_aware(datetime.fromisoformat(now)) if now else None


@shared_task(name="reminders.scan_and_dispatch")
def scan_and_dispatch_task(now: Optional[str] = None) -> dict:
    """Run one server dispatch tick. Returns the tick report."""
    db: Session = SessionLocal()
    try:
        report = ServerDispatchJob(db).tick(_parse_now(now))
        return {**report.to_dict(), "started_at": report.started_at.isoformat()}
    finally:
        db.close()


@shared_task(name="reminders.cleanup_old_completed")
def cleanup_old_completed_task(retention_days: Optional[int] = None) -> int:
    db: Session = SessionLocal()
    try:
        return service.cleanup_old_completed(db, retention_days=retention_days)
    finally:
        db.close()


@shared_task(name="reminders.on_reminder_completed")
def on_reminder_completed_task(reminder_id: str, now: Optional[str] = None) -> Optional[str]:
    """Continue a recurring series after its occurrence was completed elsewhere. Returns the successor id."""
    db: Session = SessionLocal()
    try:
        reminder = repository.get_reminder(db, reminder_id)
        if reminder is None:
            logger.warning(f"⚠️  [Reminders] Completed reminder not found: {reminder_id}")
            return None
        successor = service.handle_reminder_updated(db, {"completed": False}, reminder, _parse_now(now))
        return successor.id if successor else None
    except Exception as e:
        logger.error(f"❌ [Reminders] Observer failed for reminder {reminder_id}: {e!r}")
        db.rollback()
        return None
    finally:
        db.close()
