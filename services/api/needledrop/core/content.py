"""
Posts, comments and the social-graph edges the feeds read.

Whenever one of these operations changes a counter (comment create/delete,
upvote cleanup on delete) it goes through the EngagementLedger hooks inside
this module's transaction; nothing here writes a counter column directly.

Comments form a two-level tree: top-level comments (depth 0) and replies
(depth 1). A reply's parent must be a top-level comment on the same post.
"""
from __future__ import annotations

import logging
import math
from datetime import timedelta
from typing import Iterable, Optional

from opentelemetry import trace
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from needledrop.config import settings
from needledrop.core.ledger import EngagementLedger, upvoted_ids
from needledrop.core.notifications import NotificationFanout
from needledrop.core.pagination import Entry, FeedPage, offset_for
from needledrop.errors import Conflict, Forbidden, NotFound, ValidationFailed
from needledrop.models import (
    Comment,
    Community,
    CommunityMembership,
    Follow,
    Post,
    Review,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MAX_POST_LENGTH = 2000
MAX_COMMENT_LENGTH = 1000
LINK_TYPES = {"track", "album", "playlist"}


def _check_text(value: str, field: str, max_length: int) -> str:
    if not value or not value.strip():
        raise ValidationFailed(f"{field} is required")
    if len(value) > max_length:
        raise ValidationFailed(f"{field} must be at most {max_length} characters")
    return value


class ContentService:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        ledger: EngagementLedger,
        fanout: NotificationFanout,
    ) -> None:
        self._sessions = sessions
        self._ledger = ledger
        self._fanout = fanout

    # ── Posts ──────────────────────────────────────────────────────────────

    async def create_post(
        self,
        author_id: str,
        content: str,
        link_url: Optional[str] = None,
        link_type: Optional[str] = None,
        community_ids: Iterable[str] = (),
        is_new_and_upcoming: bool = False,
    ) -> Entry:
        _check_text(content, "content", MAX_POST_LENGTH)
        if link_type is not None and link_type not in LINK_TYPES:
            raise ValidationFailed(f"link_type must be one of {sorted(LINK_TYPES)}")
        community_ids = list(dict.fromkeys(community_ids))
        if len(community_ids) > settings.max_post_communities:
            raise ValidationFailed(
                f"a post can be shared to at most {settings.max_post_communities} communities"
            )

        with tracer.start_as_current_span("create_post") as span:
            async with self._sessions() as session, session.begin():
                author = await session.get(User, author_id)
                if author is None:
                    raise NotFound("user_not_found")

                if is_new_and_upcoming:
                    await self._check_new_and_upcoming_cooldown(session, author_id)

                communities = []
                if community_ids:
                    communities = list(
                        await session.scalars(
                            select(Community).where(Community.community_id.in_(community_ids))
                        )
                    )
                    if len(communities) != len(community_ids):
                        raise NotFound("community_not_found")
                    memberships = await session.scalar(
                        select(func.count())
                        .select_from(CommunityMembership)
                        .where(
                            CommunityMembership.user_id == author_id,
                            CommunityMembership.community_id.in_(community_ids),
                        )
                    )
                    if memberships != len(community_ids):
                        raise Forbidden("not_a_member")

                post = Post(
                    author=author,
                    content=content,
                    link_url=link_url,
                    link_type=link_type,
                    is_new_and_upcoming=is_new_and_upcoming,
                    communities=communities,
                )
                session.add(post)
                await session.flush()
                span.set_attribute("post.id", post.post_id)

        logger.info("Post created: %s by user %s", post.post_id, author_id)
        return Entry(item=post)

    async def _check_new_and_upcoming_cooldown(self, session: AsyncSession, author_id: str) -> None:
        last = await session.scalar(
            select(func.max(Post.created_at)).where(
                Post.author_id == author_id, Post.is_new_and_upcoming.is_(True)
            )
        )
        if last is None:
            return
        cooldown = timedelta(days=settings.new_and_upcoming_cooldown_days)
        remaining = cooldown - (utcnow() - last)
        if remaining > timedelta(0):
            days = math.ceil(remaining / timedelta(days=1))
            raise ValidationFailed(
                f"#NewAndUpcoming is limited to one post every "
                f"{settings.new_and_upcoming_cooldown_days} days. {days} days remaining."
            )

    async def get_post(self, post_id: str, viewer_id: Optional[str] = None) -> Entry:
        async with self._sessions() as session:
            post = await session.get(Post, post_id)
            if post is None:
                raise NotFound("post_not_found")
            upvoted = await upvoted_ids(session, viewer_id, "post", [post_id])
        return Entry(item=post, has_upvoted=post_id in upvoted)

    async def delete_post(self, post_id: str, actor_id: str) -> None:
        async with self._sessions() as session, session.begin():
            post = await session.get(Post, post_id)
            if post is None:
                raise NotFound("post_not_found")
            if post.author_id != actor_id:
                raise Forbidden("not_author")

            comment_ids = list(
                await session.scalars(select(Comment.comment_id).where(Comment.post_id == post_id))
            )
            await self._ledger.purge_upvotes(session, "comment", comment_ids)
            await self._ledger.purge_upvotes(session, "post", [post_id])
            # Replies reference their parent, so they go first
            await session.execute(
                delete(Comment).where(
                    Comment.post_id == post_id, Comment.parent_comment_id.is_not(None)
                )
            )
            await session.execute(delete(Comment).where(Comment.post_id == post_id))
            await session.delete(post)

        logger.info("Post deleted: %s (%d comments)", post_id, len(comment_ids))

    # ── Comments ───────────────────────────────────────────────────────────

    async def create_comment(
        self,
        post_id: str,
        author_id: str,
        content: str,
        parent_comment_id: Optional[str] = None,
    ) -> Entry:
        _check_text(content, "content", MAX_COMMENT_LENGTH)
        strict = self._fanout.in_transaction

        with tracer.start_as_current_span("create_comment"):
            async with self._sessions() as session, session.begin():
                post = await session.get(Post, post_id)
                if post is None:
                    raise NotFound("post_not_found")
                author = await session.get(User, author_id)
                if author is None:
                    raise NotFound("user_not_found")

                recipient_id, kind = post.author_id, "comment"
                if parent_comment_id is not None:
                    parent = await session.get(Comment, parent_comment_id)
                    if parent is None:
                        raise NotFound("parent_comment_not_found")
                    if parent.post_id != post_id:
                        raise ValidationFailed("parent comment belongs to a different post")
                    if parent.parent_comment_id is not None:
                        raise ValidationFailed("replies cannot be replied to")
                    recipient_id, kind = parent.author_id, "reply"

                comment = Comment(
                    post_id=post_id,
                    author=author,
                    parent_comment_id=parent_comment_id,
                    content=content,
                )
                session.add(comment)
                await session.flush()
                await self._ledger.record_comments(session, post_id, 1)

                if strict:
                    await self._fanout.notify(
                        recipient_id, author_id, kind, "comment", comment.comment_id,
                        session=session,
                    )

        if not strict:
            await self._fanout.notify(recipient_id, author_id, kind, "comment", comment.comment_id)
        return Entry(item=comment)

    async def delete_comment(self, comment_id: str, actor_id: str) -> None:
        async with self._sessions() as session, session.begin():
            comment = await session.get(Comment, comment_id)
            if comment is None:
                raise NotFound("comment_not_found")
            if comment.author_id != actor_id:
                raise Forbidden("not_author")

            reply_ids = list(
                await session.scalars(
                    select(Comment.comment_id).where(Comment.parent_comment_id == comment_id)
                )
            )
            removed = [comment_id, *reply_ids]
            await self._ledger.purge_upvotes(session, "comment", removed)
            await session.execute(delete(Comment).where(Comment.parent_comment_id == comment_id))
            await session.delete(comment)
            await self._ledger.record_comments(session, comment.post_id, -len(removed))

        logger.info("Comment deleted: %s (+%d replies)", comment_id, len(reply_ids))

    async def list_comments(
        self,
        post_id: str,
        page: int = 1,
        limit: int = 20,
        viewer_id: Optional[str] = None,
    ) -> FeedPage:
        """Top-level comments newest first, each with its replies oldest first."""
        skip = offset_for(page, limit)

        async with self._sessions() as session:
            if await session.scalar(select(Post.post_id).where(Post.post_id == post_id)) is None:
                raise NotFound("post_not_found")

            top_level = [Comment.post_id == post_id, Comment.parent_comment_id.is_(None)]
            rows = await session.scalars(
                select(Comment)
                .where(*top_level)
                .order_by(Comment.created_at.desc(), Comment.comment_id.desc())
                .offset(skip)
                .limit(limit)
            )
            comments = list(rows)
            total = await session.scalar(select(func.count()).select_from(Comment).where(*top_level))

            replies: list[Comment] = []
            if comments:
                replies = list(
                    await session.scalars(
                        select(Comment)
                        .where(Comment.parent_comment_id.in_([c.comment_id for c in comments]))
                        .order_by(Comment.created_at.asc(), Comment.comment_id.asc())
                    )
                )

            upvoted = await upvoted_ids(
                session,
                viewer_id,
                "comment",
                [c.comment_id for c in comments] + [r.comment_id for r in replies],
            )

        threads = {
            c.comment_id: Entry(item=c, has_upvoted=c.comment_id in upvoted) for c in comments
        }
        for reply in replies:
            threads[reply.parent_comment_id].replies.append(
                Entry(item=reply, has_upvoted=reply.comment_id in upvoted)
            )
        return FeedPage(entries=list(threads.values()), total=total or 0, page=page, limit=limit)

    # ── Reviews (read) ─────────────────────────────────────────────────────

    async def get_review(self, review_id: str, viewer_id: Optional[str] = None) -> Entry:
        async with self._sessions() as session:
            review = await session.get(Review, review_id)
            if review is None:
                raise NotFound("review_not_found")
            upvoted = await upvoted_ids(session, viewer_id, "review", [review_id])
        return Entry(item=review, has_upvoted=review_id in upvoted)

    # ── Social graph ───────────────────────────────────────────────────────

    async def follow(self, follower_id: str, following_id: str) -> Follow:
        if follower_id == following_id:
            raise ValidationFailed("cannot follow yourself")
        strict = self._fanout.in_transaction

        async with self._sessions() as session, session.begin():
            for uid in (follower_id, following_id):
                if await session.get(User, uid) is None:
                    raise NotFound("user_not_found")

            edge = Follow(follower_id=follower_id, following_id=following_id)
            session.add(edge)
            try:
                await session.flush()
            except IntegrityError as exc:
                raise Conflict("already_following") from exc

            if strict:
                await self._fanout.notify(
                    following_id, follower_id, "follow", "user", follower_id, session=session
                )

        logger.info("%s followed %s", follower_id, following_id)
        if not strict:
            await self._fanout.notify(following_id, follower_id, "follow", "user", follower_id)
        return edge

    async def unfollow(self, follower_id: str, following_id: str) -> None:
        async with self._sessions() as session, session.begin():
            result = await session.execute(
                delete(Follow).where(
                    Follow.follower_id == follower_id,
                    Follow.following_id == following_id,
                )
            )
            if result.rowcount == 0:
                raise NotFound("not_following")
        logger.info("%s unfollowed %s", follower_id, following_id)

    async def join_community(
        self, user_id: str, community_id: str, role: str = "member"
    ) -> CommunityMembership:
        async with self._sessions() as session, session.begin():
            if await session.get(Community, community_id) is None:
                raise NotFound("community_not_found")
            if await session.get(User, user_id) is None:
                raise NotFound("user_not_found")

            membership = CommunityMembership(user_id=user_id, community_id=community_id, role=role)
            session.add(membership)
            try:
                await session.flush()
            except IntegrityError as exc:
                raise Conflict("already_member") from exc

        logger.info("%s joined community %s", user_id, community_id)
        return membership

    async def leave_community(self, user_id: str, community_id: str) -> None:
        async with self._sessions() as session, session.begin():
            result = await session.execute(
                delete(CommunityMembership).where(
                    CommunityMembership.user_id == user_id,
                    CommunityMembership.community_id == community_id,
                )
            )
            if result.rowcount == 0:
                raise NotFound("not_a_member")
        logger.info("%s left community %s", user_id, community_id)
