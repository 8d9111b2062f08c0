"""
Notification fan-out and inbox.

NotificationFanout turns an engagement event into at most one Notification
row. Self-notifications are never written. By default the row is written in
its own transaction after the triggering operation has committed; a failure
there is logged, counted and discarded so the primary action still succeeds.
With ``notifications_in_transaction`` enabled the caller passes its session
and the row commits (or rolls back) together with the engagement.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from needledrop.core.pagination import FeedPage, Entry, offset_for
from needledrop.errors import Forbidden, NotFound
from needledrop.models import Notification
from needledrop.telemetry import NOTIFICATION_FAILURES_TOTAL, NOTIFICATIONS_CREATED_TOTAL

logger = logging.getLogger(__name__)


class NotificationFanout:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        in_transaction: bool = False,
    ) -> None:
        self._sessions = sessions
        self.in_transaction = in_transaction

    async def notify(
        self,
        recipient_id: str,
        actor_id: str,
        type: str,
        target_type: str,
        target_id: str,
        session: Optional[AsyncSession] = None,
    ) -> Optional[Notification]:
        if recipient_id == actor_id:
            return None

        notification = Notification(
            recipient_id=recipient_id,
            actor_id=actor_id,
            type=type,
            target_type=target_type,
            target_id=target_id,
            is_read=False,
        )

        if session is not None:
            # Strict mode: rides on the caller's transaction
            session.add(notification)
            NOTIFICATIONS_CREATED_TOTAL.labels(type=type).inc()
            return notification

        try:
            await self._write(notification)
        except SQLAlchemyError:
            NOTIFICATION_FAILURES_TOTAL.inc()
            logger.exception(
                "Dropped %s notification for %s (actor=%s, %s %s)",
                type, recipient_id, actor_id, target_type, target_id,
            )
            return None

        NOTIFICATIONS_CREATED_TOTAL.labels(type=type).inc()
        return notification

    async def _write(self, notification: Notification) -> None:
        async with self._sessions() as session, session.begin():
            session.add(notification)


class NotificationInbox:
    """Read side of notifications plus the single permitted mutation (is_read)."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    async def list_notifications(
        self, user_id: str, page: int = 1, limit: int = 20
    ) -> tuple[FeedPage, int]:
        skip = offset_for(page, limit)
        async with self._sessions() as session:
            rows = await session.scalars(
                select(Notification)
                .where(Notification.recipient_id == user_id)
                .order_by(Notification.created_at.desc(), Notification.notification_id.desc())
                .offset(skip)
                .limit(limit)
            )
            items = list(rows)
            total = await session.scalar(
                select(func.count())
                .select_from(Notification)
                .where(Notification.recipient_id == user_id)
            )
            unread = await self._count_unread(session, user_id)

        result = FeedPage(
            entries=[Entry(item=n) for n in items],
            total=total or 0,
            page=page,
            limit=limit,
        )
        return result, unread

    async def unread_count(self, user_id: str) -> int:
        async with self._sessions() as session:
            return await self._count_unread(session, user_id)

    async def mark_read(self, notification_id: str, user_id: str) -> None:
        async with self._sessions() as session, session.begin():
            notification = await session.get(Notification, notification_id)
            if notification is None:
                raise NotFound("notification_not_found")
            if notification.recipient_id != user_id:
                raise Forbidden("not_recipient")
            notification.is_read = True

    async def mark_all_read(self, user_id: str) -> int:
        async with self._sessions() as session, session.begin():
            result = await session.execute(
                update(Notification)
                .where(Notification.recipient_id == user_id, Notification.is_read.is_(False))
                .values(is_read=True)
            )
            marked = result.rowcount
        logger.info("Marked %d notifications read for %s", marked, user_id)
        return marked

    @staticmethod
    async def _count_unread(session: AsyncSession, user_id: str) -> int:
        count = await session.scalar(
            select(func.count())
            .select_from(Notification)
            .where(Notification.recipient_id == user_id, Notification.is_read.is_(False))
        )
        return count or 0
