import os

os.environ.setdefault("REMINDER_DATABASE_URL", "sqlite://")
os.environ.setdefault("REMINDER_API_KEYS", "test-key")
os.environ.setdefault("REMINDER_METRICS_ENABLED", "false")

from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import Dict, List, Optional, Tuple  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from couplet.db.base import Base  # noqa: E402
from couplet.reminders import repository  # noqa: E402
from couplet.reminders.dispatcher import NotificationDispatcher, NotificationPayload, SqlUserDirectory  # noqa: E402
from couplet.reminders.fanout import FanoutCoordinator  # noqa: E402
from couplet.reminders.local_notifications import InMemoryNotificationCenter  # noqa: E402
from couplet.reminders.models import Couple, UserProfile  # noqa: E402


# Noon in Asia/Ho_Chi_Minh, well outside the default 22:00-08:00 quiet hours
NOW = datetime(2025, 3, 10, 5, 0, tzinfo=timezone.utc)


class FakeTransport:
    """PushTransport that records sends; tokens listed in `errors` raise instead."""

    def __init__(self):
        self.sent: List[Tuple[str, NotificationPayload]] = []
        self.errors: Dict[str, Exception] = {}

    def send(self, token: str, payload: NotificationPayload) -> str:
        if token in self.errors:
            raise self.errors[token]
        self.sent.append((token, payload))
        return f"msg-{len(self.sent)}"

    def tokens(self) -> List[str]:
        return [t for t, _ in self.sent]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def dispatcher(db, transport):
    return NotificationDispatcher(SqlUserDirectory(db), transport)


@pytest.fixture
def fanout(dispatcher):
    return FanoutCoordinator(dispatcher)


@pytest.fixture
def center():
    return InMemoryNotificationCenter()


@pytest.fixture
def make_user(db):
    def _make(
        user_id: str,
        token: Optional[str] = "auto",
        prefs: Optional[dict] = None,
        tz: Optional[str] = None,
        couple_id: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> UserProfile:
        user = UserProfile(
            id=user_id,
            display_name=display_name,
            push_token=f"token-{user_id}" if token == "auto" else token,
            timezone=tz,
            couple_id=couple_id,
            notification_preferences=prefs,
        )
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def make_couple(db, make_user):
    def _make(couple_id: str = "c1", members=("alice", "bob"), names=("Alice", "Bob")) -> Couple:
        for member, name in zip(members, names):
            make_user(member, couple_id=couple_id, display_name=name)
        couple = Couple(id=couple_id, members=list(members))
        db.add(couple)
        db.commit()
        return couple
    return _make


@pytest.fixture
def make_reminder(db):
    def _make(**fields):
        fields.setdefault("title", "Buy flowers")
        fields.setdefault("type", "personal")
        fields.setdefault("priority", "medium")
        fields.setdefault("due_date", NOW + timedelta(minutes=2))
        if fields["type"] == "personal":
            fields.setdefault("owner_id", "alice")
        return repository.create_reminder(db, **fields)
    return _make
