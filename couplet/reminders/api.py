from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from couplet.api.deps import get_dispatcher, get_fanout, verify_api_key_dependency
from couplet.db.session import get_db
from . import repository, service
from .dispatcher import DeliveryOutcome, NotificationDispatcher
from .exceptions import ReminderNotFoundError
from .fanout import FanoutCoordinator, FanoutResult
from .schemas import (
    CompleteRequest,
    DeliveryOutcomeRead,
    DeviceTokenUpdate,
    FanoutResultRead,
    ReminderRead,
    SendTestNotificationRequest,
    SnoozeRequest,
    TickReportRead,
)
from .server_job import ServerDispatchJob
from couplet.utils.timezone import to_utc_aware


router = APIRouter(dependencies=[Depends(verify_api_key_dependency)])


def _outcome_read(o: DeliveryOutcome) -> DeliveryOutcomeRead:
    return DeliveryOutcomeRead(
        success=o.success,
        recipient_id=o.recipient_id,
        role=o.role.value if o.role else None,
        message_id=o.message_id,
        error_kind=o.error_kind,
        detail=o.detail,
    )


def _fanout_read(result: FanoutResult) -> FanoutResultRead:
    return FanoutResultRead(
        success=result.success,
        reminder_id=result.reminder_id,
        error_kind=result.error_kind,
        per_recipient=[_outcome_read(o) for o in result.per_recipient],
    )


@router.post("/dispatch/run-now", response_model=TickReportRead)
def run_dispatch_now_endpoint(
    now: Optional[datetime] = None,
    db: Session = Depends(get_db),
    fanout: FanoutCoordinator = Depends(get_fanout),
):
    """Run one server dispatch tick immediately."""
    report = ServerDispatchJob(db, fanout=fanout).tick(to_utc_aware(now) if now else None)
    return TickReportRead(**report.to_dict())


@router.put("/device-token")
def update_device_token_endpoint(payload: DeviceTokenUpdate, db: Session = Depends(get_db)):
    user = service.register_push_token(db, payload.user_id, payload.token)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user_id": user.id, "updated_at": user.push_token_updated_at}


@router.post("/test-notification", response_model=DeliveryOutcomeRead)
def send_test_notification_endpoint(
    payload: SendTestNotificationRequest,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    outcome = service.send_test_notification(dispatcher, payload.user_id, payload.language)
    return _outcome_read(outcome)


@router.get("/{reminder_id}", response_model=ReminderRead)
def get_reminder_endpoint(reminder_id: str, db: Session = Depends(get_db)):
    r = repository.get_reminder(db, reminder_id)
    if not r:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return r


@router.post("/{reminder_id}/complete", response_model=ReminderRead)
def complete_reminder_endpoint(
    reminder_id: str,
    payload: Optional[CompleteRequest] = None,
    db: Session = Depends(get_db),
):
    try:
        return service.complete_reminder(db, reminder_id, completed_by=payload.completed_by if payload else None)
    except ReminderNotFoundError:
        raise HTTPException(status_code=404, detail="Reminder not found")


@router.post("/{reminder_id}/snooze", response_model=ReminderRead)
def snooze_reminder_endpoint(
    reminder_id: str,
    payload: Optional[SnoozeRequest] = None,
    db: Session = Depends(get_db),
):
    try:
        return service.snooze_reminder(db, reminder_id, minutes=payload.minutes if payload else None)
    except ReminderNotFoundError:
        raise HTTPException(status_code=404, detail="Reminder not found")


@router.post("/{reminder_id}/notify", response_model=FanoutResultRead)
def notify_reminder_endpoint(
    reminder_id: str,
    db: Session = Depends(get_db),
    fanout: FanoutCoordinator = Depends(get_fanout),
):
    """Send a reminder now, outside the schedule."""
    try:
        result = service.notify_reminder(db, reminder_id, fanout)
    except ReminderNotFoundError:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return _fanout_read(result)
