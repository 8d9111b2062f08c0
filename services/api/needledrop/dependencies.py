"""
FastAPI dependencies.

Services are built once in the application lifespan and parked on
``app.state``; handlers reach them through these accessors so tests can swap
in their own instances.

Authentication is handled upstream: the gateway forwards the verified user
id in the ``X-User-Id`` header.
"""
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from needledrop.core.activity import ActivityAggregator
from needledrop.core.content import ContentService
from needledrop.core.feed import FeedComposer
from needledrop.core.ledger import EngagementLedger
from needledrop.core.notifications import NotificationInbox


async def get_db(request: Request):
    """Yields an async DB session for plain row reads/writes."""
    async with request.app.state.sessions() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id")
    return x_user_id


async def optional_user_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    return x_user_id or None


def get_ledger(request: Request) -> EngagementLedger:
    return request.app.state.ledger


def get_feed_composer(request: Request) -> FeedComposer:
    return request.app.state.feed


def get_activity(request: Request) -> ActivityAggregator:
    return request.app.state.activity


def get_content(request: Request) -> ContentService:
    return request.app.state.content


def get_inbox(request: Request) -> NotificationInbox:
    return request.app.state.inbox
