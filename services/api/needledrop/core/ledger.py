"""
Engagement ledger — the only writer of denormalized counters.

Counters kept here:
  posts.upvote_count / comments.upvote_count / reviews.upvote_count
      == rows in ``upvotes`` for that (target_type, target_id)
  posts.comment_count
      == rows in ``comments`` for that post
  albums|tracks|artists.rating_sum / rating_count / review_count
      == sum / count of attached review ratings, count of reviews with a body

Every public operation is one transaction: the event row and the counter
update commit together or not at all. Duplicates are detected by the unique
constraints (insert first, ``IntegrityError`` → Conflict) rather than by a
read-then-write pre-check, and counters move through SQL-side
``col = col ± n`` expressions so concurrent writers serialize on the row.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from opentelemetry import trace
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from needledrop.core.notifications import NotificationFanout
from needledrop.errors import Conflict, NotFound, ValidationFailed
from needledrop.models import Album, Artist, Comment, Post, Review, Track, Upvote, User, utcnow
from needledrop.telemetry import ENGAGEMENT_CONFLICTS_TOTAL, ENGAGEMENT_EVENTS_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# target_type → (model, primary key column)
UPVOTABLE = {
    "post": (Post, Post.post_id),
    "comment": (Comment, Comment.comment_id),
    "review": (Review, Review.review_id),
}

RATABLE = {
    "album": (Album, Album.album_id),
    "track": (Track, Track.track_id),
    "artist": (Artist, Artist.artist_id),
}

MIN_RATING = 1
MAX_RATING = 5


@dataclass
class RatingResult:
    review: Review
    created: bool


def _upvotable(target_type: str):
    try:
        return UPVOTABLE[target_type]
    except KeyError:
        raise ValidationFailed(f"cannot upvote target type '{target_type}'") from None


def _ratable(target_type: str):
    try:
        return RATABLE[target_type]
    except KeyError:
        raise ValidationFailed(f"cannot rate target type '{target_type}'") from None


def validate_rating(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationFailed("rating must be an integer")
    if not MIN_RATING <= value <= MAX_RATING:
        raise ValidationFailed(f"rating must be between {MIN_RATING} and {MAX_RATING}")
    return value


async def _require_actor(session: AsyncSession, actor_id: str) -> None:
    if await session.scalar(select(User.user_id).where(User.user_id == actor_id)) is None:
        raise NotFound("user_not_found")


async def upvoted_ids(
    session: AsyncSession,
    viewer_id: Optional[str],
    target_type: str,
    target_ids: Iterable[str],
) -> set[str]:
    """Single batched lookup of which ``target_ids`` the viewer has upvoted."""
    ids = list(target_ids)
    if not viewer_id or not ids:
        return set()
    rows = await session.scalars(
        select(Upvote.target_id).where(
            Upvote.user_id == viewer_id,
            Upvote.target_type == target_type,
            Upvote.target_id.in_(ids),
        )
    )
    return set(rows)


class EngagementLedger:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        fanout: NotificationFanout,
    ) -> None:
        self._sessions = sessions
        self._fanout = fanout

    # ── Upvotes ────────────────────────────────────────────────────────────

    async def upvote(self, actor_id: str, target_type: str, target_id: str) -> Upvote:
        model, pk = _upvotable(target_type)
        strict = self._fanout.in_transaction

        with tracer.start_as_current_span("ledger.upvote") as span:
            span.set_attribute("upvote.target_type", target_type)
            span.set_attribute("upvote.target_id", target_id)

            async with self._sessions() as session, session.begin():
                await _require_actor(session, actor_id)
                author_id = await session.scalar(select(model.author_id).where(pk == target_id))
                if author_id is None:
                    raise NotFound(f"{target_type}_not_found")

                upvote = Upvote(user_id=actor_id, target_type=target_type, target_id=target_id)
                session.add(upvote)
                try:
                    await session.flush()
                except IntegrityError as exc:
                    ENGAGEMENT_CONFLICTS_TOTAL.labels(target_type=target_type).inc()
                    raise Conflict(f"already_upvoted_{target_type}") from exc

                await session.execute(
                    update(model)
                    .where(pk == target_id)
                    .values(upvote_count=model.upvote_count + 1)
                )
                if strict:
                    await self._fanout.notify(
                        author_id, actor_id, f"upvote_{target_type}", target_type, target_id,
                        session=session,
                    )

        ENGAGEMENT_EVENTS_TOTAL.labels(action="upvote", target_type=target_type).inc()
        logger.info("%s upvoted %s %s", actor_id, target_type, target_id)

        if not strict:
            await self._fanout.notify(
                author_id, actor_id, f"upvote_{target_type}", target_type, target_id
            )
        return upvote

    async def remove_upvote(self, actor_id: str, target_type: str, target_id: str) -> None:
        model, pk = _upvotable(target_type)

        with tracer.start_as_current_span("ledger.remove_upvote"):
            async with self._sessions() as session, session.begin():
                # DELETE reports how many rows it removed, so a concurrent
                # double-remove cannot decrement twice.
                result = await session.execute(
                    delete(Upvote).where(
                        Upvote.user_id == actor_id,
                        Upvote.target_type == target_type,
                        Upvote.target_id == target_id,
                    )
                )
                if result.rowcount == 0:
                    raise NotFound(f"not_upvoted_{target_type}")

                await session.execute(
                    update(model)
                    .where(pk == target_id, model.upvote_count > 0)
                    .values(upvote_count=model.upvote_count - 1)
                )

        ENGAGEMENT_EVENTS_TOTAL.labels(action="remove_upvote", target_type=target_type).inc()
        logger.info("%s removed upvote on %s %s", actor_id, target_type, target_id)

    # ── Ratings / reviews ──────────────────────────────────────────────────

    async def rate_or_review(
        self,
        actor_id: str,
        target_type: str,
        target_id: str,
        rating: int,
        title: Optional[str] = None,
        body: Optional[str] = None,
    ) -> RatingResult:
        """Create or replace the actor's rating on a catalog target.

        Replacing keeps ``rating_count`` and moves ``rating_sum`` by
        ``new - old``. Title/body are only overwritten when given.
        """
        validate_rating(rating)
        model, pk = _ratable(target_type)

        with tracer.start_as_current_span("ledger.rate_or_review") as span:
            span.set_attribute("rating.target_type", target_type)
            span.set_attribute("rating.target_id", target_id)

            async with self._sessions() as session, session.begin():
                await _require_actor(session, actor_id)
                if await session.scalar(select(pk).where(pk == target_id)) is None:
                    raise NotFound(f"{target_type}_not_found")

                review = await session.scalar(
                    select(Review)
                    .where(
                        Review.author_id == actor_id,
                        Review.target_type == target_type,
                        Review.target_id == target_id,
                    )
                    .with_for_update()
                )

                if review is not None:
                    created = False
                    had_body = bool(review.body)
                    old_rating = review.rating
                    review.rating = rating
                    if title is not None:
                        review.title = title
                    if body is not None:
                        review.body = body
                    review.updated_at = utcnow()
                    values = {"rating_sum": model.rating_sum - old_rating + rating}
                else:
                    created = True
                    had_body = False
                    review = Review(
                        author_id=actor_id,
                        target_type=target_type,
                        target_id=target_id,
                        rating=rating,
                        title=title,
                        body=body,
                    )
                    session.add(review)
                    try:
                        await session.flush()
                    except IntegrityError as exc:
                        ENGAGEMENT_CONFLICTS_TOTAL.labels(target_type=target_type).inc()
                        raise Conflict(f"already_rated_{target_type}") from exc
                    values = {
                        "rating_sum": model.rating_sum + rating,
                        "rating_count": model.rating_count + 1,
                    }

                review_delta = int(bool(review.body)) - int(had_body)
                if review_delta:
                    values["review_count"] = model.review_count + review_delta

                await session.execute(update(model).where(pk == target_id).values(**values))

        ENGAGEMENT_EVENTS_TOTAL.labels(action="rate", target_type=target_type).inc()
        logger.info(
            "%s rated %s %s → %d (%s)",
            actor_id, target_type, target_id, rating, "created" if created else "replaced",
        )
        return RatingResult(review=review, created=created)

    async def remove_rating(self, actor_id: str, target_type: str, target_id: str) -> None:
        _ratable(target_type)

        with tracer.start_as_current_span("ledger.remove_rating"):
            async with self._sessions() as session, session.begin():
                review = await session.scalar(
                    select(Review)
                    .where(
                        Review.author_id == actor_id,
                        Review.target_type == target_type,
                        Review.target_id == target_id,
                    )
                    .with_for_update()
                )
                if review is None:
                    raise NotFound(f"not_rated_{target_type}")
                await self.drop_review(session, review)

        ENGAGEMENT_EVENTS_TOTAL.labels(action="remove_rating", target_type=target_type).inc()
        logger.info("%s removed rating on %s %s", actor_id, target_type, target_id)

    # ── Hooks for callers that own the transaction ────────────────────────

    async def drop_review(self, session: AsyncSession, review: Review) -> None:
        """Delete ``review`` with its upvotes and roll its rating out of the target stats."""
        model, pk = _ratable(review.target_type)
        await self.purge_upvotes(session, "review", [review.review_id])
        await session.delete(review)

        values = {
            "rating_sum": model.rating_sum - review.rating,
            "rating_count": model.rating_count - 1,
        }
        if review.body:
            values["review_count"] = model.review_count - 1
        await session.execute(
            update(model)
            .where(pk == review.target_id, model.rating_count > 0)
            .values(**values)
        )

    async def record_comments(self, session: AsyncSession, post_id: str, delta: int) -> None:
        """Move ``posts.comment_count`` by ``delta`` inside the caller's transaction."""
        if delta == 0:
            return
        stmt = update(Post).where(Post.post_id == post_id)
        if delta < 0:
            stmt = stmt.where(Post.comment_count >= -delta)
        await session.execute(stmt.values(comment_count=Post.comment_count + delta))
        ENGAGEMENT_EVENTS_TOTAL.labels(action="comment", target_type="post").inc(abs(delta))

    async def purge_upvotes(
        self, session: AsyncSession, target_type: str, target_ids: Iterable[str]
    ) -> int:
        """Delete upvotes pointing at targets that are being deleted.

        The targets' own counters go away with them, so nothing is decremented.
        """
        ids = list(target_ids)
        if not ids:
            return 0
        result = await session.execute(
            delete(Upvote).where(Upvote.target_type == target_type, Upvote.target_id.in_(ids))
        )
        return result.rowcount
