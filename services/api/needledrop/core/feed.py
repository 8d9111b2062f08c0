"""
Feed composition.

GET /feed resolves two source sets for the viewer and turns them into a SQL
predicate over posts:

  following   — author ∈ F  (accounts the viewer follows)
  communities — attached to a community ∈ C  (viewer's memberships)
  all         — author ∈ F  OR  attached to C

``all`` with F and C both empty is the cold-start case: the predicate is
dropped and every post qualifies. ``following`` / ``communities`` never fall
back; an empty source set yields an empty page.

Ordering is ``latest`` (created_at desc) or ``top`` (upvote_count desc,
created_at desc). The page and its total come from two separate queries on
the same predicate, and ``has_upvoted`` is resolved with one batched lookup
for the whole page.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from opentelemetry import trace
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from needledrop.core.ledger import upvoted_ids
from needledrop.core.pagination import Entry, FeedPage, offset_for
from needledrop.errors import NotFound
from needledrop.models import Community, CommunityMembership, Follow, Post, post_communities
from needledrop.telemetry import FEED_LATENCY

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class FeedFilter(str, Enum):
    ALL = "all"
    FOLLOWING = "following"
    COMMUNITIES = "communities"


class FeedSort(str, Enum):
    LATEST = "latest"
    TOP = "top"


# Public tag → boolean column on posts
TAG_FLAGS = {
    "new-and-upcoming": Post.is_new_and_upcoming,
}


def ordering(sort: FeedSort):
    # post_id only breaks exact timestamp ties so pages stay stable
    if FeedSort(sort) is FeedSort.TOP:
        return (Post.upvote_count.desc(), Post.created_at.desc(), Post.post_id.desc())
    return (Post.created_at.desc(), Post.post_id.desc())


def in_communities(community_ids):
    return Post.post_id.in_(
        select(post_communities.c.post_id).where(
            post_communities.c.community_id.in_(community_ids)
        )
    )


async def following_ids(session: AsyncSession, viewer_id: str) -> list[str]:
    rows = await session.scalars(
        select(Follow.following_id).where(Follow.follower_id == viewer_id)
    )
    return list(rows)


async def membership_ids(session: AsyncSession, viewer_id: str) -> list[str]:
    rows = await session.scalars(
        select(CommunityMembership.community_id).where(
            CommunityMembership.user_id == viewer_id
        )
    )
    return list(rows)


class FeedComposer:
    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    async def compose_feed(
        self,
        viewer_id: str,
        filter: FeedFilter = FeedFilter.ALL,
        sort: FeedSort = FeedSort.LATEST,
        page: int = 1,
        limit: int = 20,
    ) -> FeedPage:
        filter = FeedFilter(filter)
        skip = offset_for(page, limit)

        with FEED_LATENCY.labels(variant="home").time(), \
                tracer.start_as_current_span("compose_feed") as span:
            span.set_attribute("user.id", viewer_id)
            span.set_attribute("feed.filter", filter.value)

            async with self._sessions() as session:
                follows = await following_ids(session, viewer_id)
                communities = await membership_ids(session, viewer_id)
                span.set_attribute("feed.sources.following", len(follows))
                span.set_attribute("feed.sources.communities", len(communities))

                if filter is FeedFilter.FOLLOWING:
                    if not follows:
                        return FeedPage.empty(page, limit)
                    criteria = [Post.author_id.in_(follows)]
                elif filter is FeedFilter.COMMUNITIES:
                    if not communities:
                        return FeedPage.empty(page, limit)
                    criteria = [in_communities(communities)]
                elif follows or communities:
                    clauses = []
                    if follows:
                        clauses.append(Post.author_id.in_(follows))
                    if communities:
                        clauses.append(in_communities(communities))
                    criteria = [or_(*clauses)]
                else:
                    # Cold start: no graph yet, show everything
                    logger.debug("Cold-start feed for %s", viewer_id)
                    criteria = []

                return await self._page(session, criteria, sort, page, limit, skip, viewer_id)

    async def compose_community_feed(
        self,
        community_id: str,
        sort: FeedSort = FeedSort.LATEST,
        page: int = 1,
        limit: int = 20,
        viewer_id: Optional[str] = None,
    ) -> FeedPage:
        skip = offset_for(page, limit)

        with FEED_LATENCY.labels(variant="community").time():
            async with self._sessions() as session:
                if await session.get(Community, community_id) is None:
                    raise NotFound("community_not_found")
                criteria = [in_communities([community_id])]
                return await self._page(session, criteria, sort, page, limit, skip, viewer_id)

    async def compose_tagged_feed(
        self,
        tag: str,
        sort: FeedSort = FeedSort.LATEST,
        page: int = 1,
        limit: int = 20,
        viewer_id: Optional[str] = None,
    ) -> FeedPage:
        flag = TAG_FLAGS.get(tag)
        if flag is None:
            raise NotFound("tag_not_found")
        skip = offset_for(page, limit)

        with FEED_LATENCY.labels(variant="tagged").time():
            async with self._sessions() as session:
                criteria = [flag.is_(True)]
                return await self._page(session, criteria, sort, page, limit, skip, viewer_id)

    async def _page(
        self,
        session: AsyncSession,
        criteria: list,
        sort: FeedSort,
        page: int,
        limit: int,
        skip: int,
        viewer_id: Optional[str],
    ) -> FeedPage:
        rows = await session.scalars(
            select(Post).where(*criteria).order_by(*ordering(sort)).offset(skip).limit(limit)
        )
        posts = list(rows)
        total = await session.scalar(select(func.count()).select_from(Post).where(*criteria))

        upvoted = await upvoted_ids(session, viewer_id, "post", (p.post_id for p in posts))
        return FeedPage(
            entries=[Entry(item=p, has_upvoted=p.post_id in upvoted) for p in posts],
            total=total or 0,
            page=page,
            limit=limit,
        )
