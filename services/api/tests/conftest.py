import os
from datetime import timedelta
from itertools import count

# Tracing would try to reach a collector; keep tests offline
os.environ.setdefault("OTEL_ENABLED", "false")

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, insert, select

from needledrop.clients.redis_client import ReviewRankCache
from needledrop.core.activity import ActivityAggregator
from needledrop.core.content import ContentService
from needledrop.core.feed import FeedComposer
from needledrop.core.ledger import EngagementLedger
from needledrop.core.notifications import NotificationFanout, NotificationInbox
from needledrop.database import build_engine, build_sessionmaker, init_db
from needledrop.main import app, attach_services
from needledrop.models import (
    Album,
    Community,
    CommunityMembership,
    Follow,
    Post,
    Review,
    User,
    post_communities,
    utcnow,
)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'needledrop.db'}")
    await init_db(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def sessions(engine):
    return build_sessionmaker(engine)


@pytest_asyncio.fixture
async def fake_redis():
    client = FakeRedis(decode_responses=True)
    try:
        yield client
    finally:
        await client.flushall()


@pytest.fixture
def fanout(sessions):
    return NotificationFanout(sessions)


@pytest.fixture
def ledger(sessions, fanout):
    return EngagementLedger(sessions, fanout)


@pytest.fixture
def feed(sessions):
    return FeedComposer(sessions)


@pytest.fixture
def activity(sessions, fake_redis):
    return ActivityAggregator(sessions, ReviewRankCache(fake_redis, ttl=60))


@pytest.fixture
def content(sessions, ledger, fanout):
    return ContentService(sessions, ledger, fanout)


@pytest.fixture
def inbox(sessions):
    return NotificationInbox(sessions)


@pytest_asyncio.fixture
async def api_client(sessions, fake_redis):
    attach_services(app, sessions, fake_redis)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


def ago(minutes=0, days=0):
    return utcnow() - timedelta(minutes=minutes, days=days)


class Seeder:
    """Writes fixture rows straight to the database.

    Counter columns passed here (``upvotes``) are set directly so ordering
    tests can build a ranking without casting every vote.
    """

    def __init__(self, sessions):
        self._sessions = sessions
        self._seq = count(1)

    async def add(self, *rows):
        async with self._sessions() as session, session.begin():
            session.add_all(rows)
        return rows[0] if len(rows) == 1 else rows

    async def user(self, username=None):
        n = next(self._seq)
        return await self.add(
            User(username=username or f"listener{n}", display_name=f"Listener {n}")
        )

    async def community(self, slug=None):
        n = next(self._seq)
        slug = slug or f"scene-{n}"
        return await self.add(Community(slug=slug, name=slug.title()))

    async def member(self, user, community):
        return await self.add(
            CommunityMembership(user_id=user.user_id, community_id=community.community_id)
        )

    async def follow(self, follower, following):
        return await self.add(Follow(follower_id=follower.user_id, following_id=following.user_id))

    async def post(
        self,
        author,
        minutes_ago=0,
        upvotes=0,
        communities=(),
        new_and_upcoming=False,
        days_ago=0,
    ):
        post = Post(
            author_id=author.user_id,
            content=f"check this out #{next(self._seq)}",
            link_url="https://open.spotify.com/track/abc",
            link_type="track",
            is_new_and_upcoming=new_and_upcoming,
            upvote_count=upvotes,
            created_at=ago(minutes=minutes_ago, days=days_ago),
        )
        async with self._sessions() as session, session.begin():
            session.add(post)
            await session.flush()
            for community in communities:
                await session.execute(
                    insert(post_communities).values(
                        post_id=post.post_id, community_id=community.community_id
                    )
                )
        return post

    async def posts(self, author, n, communities=()):
        return [
            await self.post(author, minutes_ago=i, communities=communities) for i in range(n)
        ]

    async def album(self, title=None):
        n = next(self._seq)
        return await self.add(Album(title=title or f"Album {n}", artist_name="Various"))

    async def review(
        self,
        author,
        album,
        rating=4,
        body="Front to back great.",
        minutes_ago=0,
        days_ago=0,
        upvotes=0,
    ):
        return await self.add(
            Review(
                author_id=author.user_id,
                target_type="album",
                target_id=album.album_id,
                rating=rating,
                body=body,
                upvote_count=upvotes,
                created_at=ago(minutes=minutes_ago, days=days_ago),
            )
        )

    async def get(self, model, pk):
        async with self._sessions() as session:
            return await session.get(model, pk)

    async def count(self, model, *criteria):
        async with self._sessions() as session:
            return await session.scalar(select(func.count()).select_from(model).where(*criteria))


@pytest.fixture
def seed(sessions):
    return Seeder(sessions)
