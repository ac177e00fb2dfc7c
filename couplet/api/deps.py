from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from couplet.core import security
from couplet.core.config import settings
from couplet.db.session import get_db
from couplet.reminders.dispatcher import FCMTransport, NotificationDispatcher, PushTransport, SqlUserDirectory
from couplet.reminders.fanout import FanoutCoordinator


def verify_api_key_dependency(
    x_api_key: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None)
) -> bool:
    """
    Dependency to verify API key for admin endpoints
    """
    if not settings.REQUIRE_API_KEY:
        return True

    # Extract API key from headers
    api_key = None
    if x_api_key:
        api_key = x_api_key
    elif authorization and authorization.startswith("Bearer "):
        api_key = authorization.split(" ")[1]

    if not api_key or not security.verify_api_key(api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )

    return True


def get_transport() -> PushTransport:
    return FCMTransport()


def get_dispatcher(
    db: Session = Depends(get_db),
    transport: PushTransport = Depends(get_transport),
) -> NotificationDispatcher:
    return NotificationDispatcher(SqlUserDirectory(db), transport)


def get_fanout(dispatcher: NotificationDispatcher = Depends(get_dispatcher)) -> FanoutCoordinator:
    return FanoutCoordinator(dispatcher)
