from datetime import timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from couplet.api.deps import get_transport
from couplet.db.session import get_db
from couplet.reminders.api import router


HEADERS = {"X-API-Key": "test-key"}


@pytest.fixture
def client(db, transport):
    app = FastAPI()
    app.include_router(router, prefix="/api/v1/reminders")

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_transport] = lambda: transport
    with TestClient(app) as c:
        yield c


def test_requires_api_key(client):
    assert client.post("/api/v1/reminders/dispatch/run-now").status_code == 401
    assert client.post("/api/v1/reminders/dispatch/run-now", headers={"X-API-Key": "wrong"}).status_code == 401


def test_bearer_token_is_accepted(client):
    r = client.get("/api/v1/reminders/missing", headers={"Authorization": "Bearer test-key"})
    assert r.status_code == 404


def test_run_now(client, transport, make_user, make_reminder, now):
    make_user("alice")
    make_reminder(due_date=now + timedelta(minutes=1))

    r = client.post("/api/v1/reminders/dispatch/run-now", params={"now": now.isoformat()}, headers=HEADERS)

    assert r.status_code == 200
    body = r.json()
    assert body["selected"] == 1
    assert body["delivered"] == 1
    assert transport.tokens() == ["token-alice"]


def test_complete(client, make_reminder):
    reminder = make_reminder(recurrence={"frequency": "daily"})

    r = client.post(f"/api/v1/reminders/{reminder.id}/complete", json={"completed_by": "alice"}, headers=HEADERS)

    assert r.status_code == 200
    body = r.json()
    assert body["completed"] is True
    assert body["completed_by"] == "alice"
    assert body["next_occurrence_id"]
    assert client.post("/api/v1/reminders/nope/complete", headers=HEADERS).status_code == 404


def test_snooze(client, make_reminder):
    reminder = make_reminder(notification_sent=True)

    r = client.post(f"/api/v1/reminders/{reminder.id}/snooze", json={"minutes": 30}, headers=HEADERS)

    assert r.status_code == 200
    assert r.json()["notification_sent"] is False
    assert client.post(f"/api/v1/reminders/{reminder.id}/snooze", json={"minutes": 0}, headers=HEADERS).status_code == 422


def test_notify(client, transport, make_couple, make_reminder):
    make_couple()
    reminder = make_reminder(type="couple", couple_id="c1", creator_id="alice")

    r = client.post(f"/api/v1/reminders/{reminder.id}/notify", headers=HEADERS)

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert {o["role"] for o in body["per_recipient"]} == {"partner", "creator"}
    assert len(transport.sent) == 2


def test_test_notification(client, transport, make_user):
    make_user("alice")

    r = client.post("/api/v1/reminders/test-notification", json={"user_id": "alice", "language": "en"}, headers=HEADERS)

    assert r.status_code == 200
    assert r.json()["success"] is True
    assert transport.sent[0][1].body == "Don't forget: This is a test notification"


def test_device_token(client, db, make_user):
    make_user("alice", token=None)

    r = client.put("/api/v1/reminders/device-token", json={"user_id": "alice", "token": "new-token"}, headers=HEADERS)

    assert r.status_code == 200
    assert r.json()["user_id"] == "alice"
    missing = client.put("/api/v1/reminders/device-token", json={"user_id": "ghost", "token": "t"}, headers=HEADERS)
    assert missing.status_code == 404


def test_get_reminder(client, make_reminder):
    reminder = make_reminder(title="Anniversary dinner")

    r = client.get(f"/api/v1/reminders/{reminder.id}", headers=HEADERS)

    assert r.status_code == 200
    assert r.json()["title"] == "Anniversary dinner"
