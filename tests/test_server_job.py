from datetime import timedelta

import pytest
from sqlalchemy import select

from couplet.core.config import settings
from couplet.reminders import dispatch_job as job
from couplet.reminders.fanout import FanoutResult
from couplet.reminders.models import Reminder
from couplet.reminders.server_job import ServerDispatchJob
from couplet.reminders.service import complete_reminder


@pytest.fixture
def server(db, fanout):
    return ServerDispatchJob(db, fanout=fanout)


def occurrences_of(db, parent_id):
    return list(db.execute(select(Reminder).where(Reminder.parent_reminder_id == parent_id)).scalars())


def test_tick_delivers_due_reminders_once(db, server, transport, make_user, make_reminder, now):
    make_user("alice")
    reminder = make_reminder(due_date=now + timedelta(minutes=3))

    first = server.tick(now)
    second = server.tick(now + timedelta(minutes=1))

    assert (first.selected, first.delivered) == (1, 1)
    assert second.selected == 0
    assert len(transport.sent) == 1
    db.refresh(reminder)
    assert reminder.notification_sent
    assert reminder.notification_attempts == 1
    assert reminder.last_notification_sent_at == now
    assert reminder.last_notification_error is None


def test_reminders_outside_the_window_wait(server, transport, make_user, make_reminder, now):
    make_user("alice")
    make_reminder(due_date=now + timedelta(minutes=10))
    make_reminder(completed=True, due_date=now)

    assert server.tick(now).selected == 0
    assert transport.sent == []


def test_transient_failure_is_retried_until_attempts_run_out(db, server, transport, make_user, make_reminder, now):
    make_user("alice")
    transport.errors["token-alice"] = ConnectionError("fcm unreachable")
    reminder = make_reminder(due_date=now)

    for minute in range(3):
        report = server.tick(now + timedelta(minutes=minute))
        assert report.selected == 1
        assert report.failed == 1

    db.refresh(reminder)
    assert reminder.notification_attempts == 3
    assert reminder.notification_sent
    assert "transport" in reminder.last_notification_error
    assert server.tick(now + timedelta(minutes=4)).selected == 0


def test_transient_failure_outside_retry_window_is_not_retried(db, server, transport, make_user, make_reminder, now):
    make_user("alice")
    transport.errors["token-alice"] = ConnectionError("fcm unreachable")
    reminder = make_reminder(due_date=now - timedelta(hours=2))

    server.tick(now)

    db.refresh(reminder)
    assert reminder.notification_sent
    assert reminder.notification_attempts == 1


def test_recipient_failures_are_not_retried(db, server, make_user, make_reminder, now):
    make_user("alice", token=None)
    reminder = make_reminder(due_date=now)

    report = server.tick(now)

    db.refresh(reminder)
    assert report.failed == 1
    assert reminder.notification_sent
    assert reminder.last_notification_error == "alice:no-token"


def test_one_bad_reminder_does_not_stop_the_batch(db, make_user, make_reminder, fanout, transport, now):
    make_user("alice")
    bad = make_reminder(title="bad", due_date=now)
    good = make_reminder(title="good", due_date=now + timedelta(minutes=1))

    class PickyFanout:
        def deliver(self, reminder, locale=None, now=None):
            if reminder.id == bad.id:
                raise RuntimeError("corrupt record")
            return fanout.deliver(reminder, locale=locale, now=now)

    report = ServerDispatchJob(db, fanout=PickyFanout()).tick(now)

    assert report.selected == 2
    assert report.delivered == 1
    db.refresh(bad)
    db.refresh(good)
    assert bad.notification_sent
    assert "RuntimeError" in bad.last_notification_error
    assert good.notification_sent
    assert len(transport.sent) == 1


def test_record_error_marks_reminder(db, make_reminder, now):
    reminder = make_reminder(due_date=now)
    job.record_error(db, reminder, ValueError("bad payload"), now)
    db.refresh(reminder)
    assert reminder.notification_sent
    assert reminder.last_notification_error == "ValueError: bad payload"


def test_failure_of_outer_query_propagates(db, fanout, monkeypatch, now):
    def broken(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(job.repository, "get_due_for_push", broken)
    with pytest.raises(RuntimeError):
        ServerDispatchJob(db, fanout=fanout).tick(now)


def test_notified_overdue_recurring_reminder_rolls_forward_once(db, server, make_user, make_reminder, now):
    make_user("alice")
    reminder = make_reminder(
        due_date=now - timedelta(days=1, hours=1),
        recurrence={"frequency": "daily"},
        notification_sent=True,
    )

    first = server.tick(now)
    second = server.tick(now + timedelta(minutes=1))

    assert first.rolled_forward == 1
    assert second.rolled_forward == 0
    children = occurrences_of(db, reminder.id)
    assert len(children) == 1
    successor = children[0]
    assert successor.due_date == now + timedelta(hours=23)
    assert not successor.completed
    assert not successor.notification_sent
    assert successor.notification_attempts == 0
    db.refresh(reminder)
    assert reminder.next_occurrence_id == successor.id


def test_unnotified_overdue_reminder_is_delivered_not_rolled(db, server, transport, make_user, make_reminder, now):
    make_user("alice")
    reminder = make_reminder(due_date=now - timedelta(minutes=1), recurrence={"frequency": "daily"})

    report = server.tick(now)

    assert report.delivered == 1
    # Marked sent in this tick, so it is continued in the same tick's overdue pass
    assert report.rolled_forward == 1
    assert len(occurrences_of(db, reminder.id)) == 1


def test_completion_and_overdue_detection_create_one_successor(db, server, make_user, make_reminder, now):
    make_user("alice")
    reminder = make_reminder(
        due_date=now - timedelta(hours=1),
        recurrence={"frequency": "weekly"},
        notification_sent=True,
    )

    complete_reminder(db, reminder.id, completed_by="alice", now=now)
    server.tick(now)
    server.tick(now + timedelta(minutes=1))

    children = occurrences_of(db, reminder.id)
    assert len(children) == 1
    assert children[0].due_date == reminder.due_date + timedelta(days=7)


def test_roll_forward_reuses_existing_occurrence(db, make_reminder, now):
    parent = make_reminder(due_date=now - timedelta(hours=1), recurrence={"frequency": "daily"})
    next_due = parent.due_date + timedelta(days=1)
    existing = make_reminder(due_date=next_due, parent_reminder_id=parent.id, recurrence={"frequency": "daily"})

    successor = job.roll_forward(db, parent, next_due, now)

    assert successor.id == existing.id
    assert parent.next_occurrence_id == existing.id


def test_expired_series_is_not_continued(db, server, make_user, make_reminder, now):
    make_user("alice")
    reminder = make_reminder(
        due_date=now - timedelta(hours=1),
        recurrence={"frequency": "daily", "end_date": (now + timedelta(hours=1)).isoformat()},
        notification_sent=True,
    )

    report = server.tick(now)
    again = server.tick(now + timedelta(minutes=1))

    assert report.expired == 1
    assert again.expired == 0
    assert occurrences_of(db, reminder.id) == []
    db.refresh(reminder)
    assert reminder.series_ended


def test_stale_overdue_reminders_do_not_starve_recurring_series(db, fanout, make_user, make_reminder, now):
    make_user("alice")
    for days in (8, 9, 10):
        make_reminder(title=f"one-off {days}", due_date=now - timedelta(days=days), notification_sent=True)
    make_reminder(
        title="ended",
        due_date=now - timedelta(days=11),
        recurrence={"frequency": "daily", "end_date": (now - timedelta(days=10, hours=12)).isoformat()},
        notification_sent=True,
    )
    daily = make_reminder(due_date=now - timedelta(hours=1), recurrence={"frequency": "daily"}, notification_sent=True)
    cfg = settings.model_copy(update={"SCHEDULER_BATCH_SIZE": 3})
    server = ServerDispatchJob(db, fanout=fanout, cfg=cfg)

    server.tick(now)
    report = server.tick(now + timedelta(minutes=1))

    db.refresh(daily)
    assert daily.next_occurrence_id is not None
    assert report.expired == 0
    assert len(occurrences_of(db, daily.id)) == 1


def test_record_delivery_success_clears_error(db, make_reminder, now):
    reminder = make_reminder(last_notification_error="old", notification_attempts=1)
    job.record_delivery(db, reminder, FanoutResult(success=True, reminder_id=reminder.id), now)
    assert reminder.notification_sent
    assert reminder.notification_attempts == 2
    assert reminder.last_notification_error is None
