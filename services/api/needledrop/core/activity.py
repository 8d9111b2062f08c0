"""
Review activity: what the people you follow have rated, and what is popular.

``compose_activity`` is the follow-only, always-chronological sibling of the
home feed. It has no cold-start fallback: an account that follows nobody
gets an empty page.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from enum import Enum
from typing import Optional

from opentelemetry import trace
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from needledrop.clients.redis_client import ReviewRankCache
from needledrop.core.feed import following_ids
from needledrop.core.ledger import upvoted_ids
from needledrop.core.pagination import Entry, FeedPage, offset_for
from needledrop.errors import ValidationFailed
from needledrop.models import Review, utcnow
from needledrop.telemetry import FEED_LATENCY

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class Timeframe(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


TIMEFRAME_SPANS = {
    Timeframe.DAY: timedelta(days=1),
    Timeframe.WEEK: timedelta(days=7),
    Timeframe.MONTH: timedelta(days=30),
}

MAX_POPULAR = 50


class ActivityAggregator:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        cache: Optional[ReviewRankCache] = None,
    ) -> None:
        self._sessions = sessions
        self._cache = cache or ReviewRankCache(None)

    async def compose_activity(self, viewer_id: str, page: int = 1, limit: int = 20) -> FeedPage:
        skip = offset_for(page, limit)

        with FEED_LATENCY.labels(variant="activity").time(), \
                tracer.start_as_current_span("compose_activity") as span:
            span.set_attribute("user.id", viewer_id)

            async with self._sessions() as session:
                follows = await following_ids(session, viewer_id)
                if not follows:
                    return FeedPage.empty(page, limit)

                criteria = [Review.author_id.in_(follows)]
                rows = await session.scalars(
                    select(Review)
                    .where(*criteria)
                    .order_by(Review.created_at.desc(), Review.review_id.desc())
                    .offset(skip)
                    .limit(limit)
                )
                reviews = list(rows)
                total = await session.scalar(
                    select(func.count()).select_from(Review).where(*criteria)
                )
                upvoted = await upvoted_ids(
                    session, viewer_id, "review", (r.review_id for r in reviews)
                )

        return FeedPage(
            entries=[Entry(item=r, has_upvoted=r.review_id in upvoted) for r in reviews],
            total=total or 0,
            page=page,
            limit=limit,
        )

    async def popular_reviews(
        self,
        timeframe: Timeframe = Timeframe.WEEK,
        limit: int = 10,
        viewer_id: Optional[str] = None,
    ) -> list[Entry]:
        """Most-upvoted written reviews of the timeframe.

        The id ranking may come from Redis; the rows never do.
        """
        timeframe = Timeframe(timeframe)
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_POPULAR:
            raise ValidationFailed(f"limit must be between 1 and {MAX_POPULAR}")

        with FEED_LATENCY.labels(variant="popular_reviews").time():
            ranking = await self._cache.get_ranking(timeframe.value, limit)

            async with self._sessions() as session:
                if ranking is None:
                    since = utcnow() - TIMEFRAME_SPANS[timeframe]
                    rows = await session.scalars(
                        select(Review)
                        .where(Review.created_at >= since, Review.body.is_not(None))
                        .order_by(
                            Review.upvote_count.desc(),
                            Review.created_at.desc(),
                            Review.review_id.desc(),
                        )
                        .limit(limit)
                    )
                    reviews = list(rows)
                    await self._cache.set_ranking(
                        timeframe.value, limit, [r.review_id for r in reviews]
                    )
                elif ranking:
                    rows = await session.scalars(
                        select(Review).where(Review.review_id.in_(ranking))
                    )
                    by_id = {r.review_id: r for r in rows}
                    # Reviews deleted since the ranking was cached simply drop out
                    reviews = [by_id[rid] for rid in ranking if rid in by_id]
                else:
                    reviews = []

                upvoted = await upvoted_ids(
                    session, viewer_id, "review", (r.review_id for r in reviews)
                )

        return [Entry(item=r, has_upvoted=r.review_id in upvoted) for r in reviews]
