"""
SQLAlchemy ORM models.

Tables:
  users                 — user profiles
  follows               — social graph edges (follower → following)
  communities           — community rows (created elsewhere)
  community_memberships — user × community with a role
  posts                 — link posts with denormalized upvote/comment counters
  post_communities      — post × community attachment
  comments              — post comments, one level of replies
  albums/tracks/artists — catalog rows with denormalized rating stats
  reviews               — one rating (optionally with text) per author × target
  upvotes               — user × (target_type, target_id) engagement
  notifications         — append-only inbox rows

Every ``*_count`` / ``rating_sum`` column is written only by
``needledrop.core.ledger.EngagementLedger``.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from needledrop.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Follow(Base):
    __tablename__ = "follows"

    follower_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), primary_key=True
    )
    following_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        # "who follows user X?" (follower listing)
        Index("idx_follows_following", "following_id"),
    )


class Community(Base):
    __tablename__ = "communities"

    community_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class CommunityMembership(Base):
    __tablename__ = "community_memberships"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), primary_key=True
    )
    community_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("communities.community_id"), primary_key=True
    )
    role: Mapped[str] = mapped_column(String(20), default="member", nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_memberships_community", "community_id"),)


post_communities = Table(
    "post_communities",
    Base.metadata,
    Column("post_id", String(36), ForeignKey("posts.post_id"), primary_key=True),
    Column(
        "community_id",
        String(36),
        ForeignKey("communities.community_id"),
        primary_key=True,
    ),
    Index("idx_post_communities_community", "community_id"),
)


class Post(Base):
    __tablename__ = "posts"

    post_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    author_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    link_url: Mapped[Optional[str]] = mapped_column(String(500))
    link_type: Mapped[Optional[str]] = mapped_column(String(20))  # track | album | playlist
    is_new_and_upcoming: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    upvote_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    comment_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    author = relationship("User", lazy="joined")
    communities = relationship("Community", secondary=post_communities, lazy="selectin")

    __table_args__ = (
        Index("idx_posts_author", "author_id"),
        Index("idx_posts_created", "created_at"),
        Index("idx_posts_top", "upvote_count", "created_at"),
    )


class Comment(Base):
    __tablename__ = "comments"

    comment_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("posts.post_id"), nullable=False
    )
    author_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), nullable=False
    )
    # Null for top-level comments; a reply's parent is always top-level
    parent_comment_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("comments.comment_id")
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    upvote_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    author = relationship("User", lazy="joined")

    __table_args__ = (
        Index("idx_comments_post", "post_id", "parent_comment_id"),
        Index("idx_comments_parent", "parent_comment_id"),
    )


class Album(Base):
    __tablename__ = "albums"

    album_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    spotify_id: Mapped[Optional[str]] = mapped_column(String(64), unique=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    artist_name: Mapped[Optional[str]] = mapped_column(String(255))
    rating_sum: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rating_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    review_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Track(Base):
    __tablename__ = "tracks"

    track_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    spotify_id: Mapped[Optional[str]] = mapped_column(String(64), unique=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    artist_name: Mapped[Optional[str]] = mapped_column(String(255))
    rating_sum: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rating_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    review_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Artist(Base):
    __tablename__ = "artists"

    artist_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    spotify_id: Mapped[Optional[str]] = mapped_column(String(64), unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    rating_sum: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rating_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    review_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Review(Base):
    """A rating, optionally carrying a title/body. Text-less rows are plain ratings."""

    __tablename__ = "reviews"

    review_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    author_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), nullable=False
    )
    target_type: Mapped[str] = mapped_column(String(10), nullable=False)  # album | track | artist
    target_id: Mapped[str] = mapped_column(String(36), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255))
    body: Mapped[Optional[str]] = mapped_column(Text)
    upvote_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    author = relationship("User", lazy="joined")

    __table_args__ = (
        UniqueConstraint("author_id", "target_type", "target_id", name="uq_review_author_target"),
        Index("idx_reviews_target", "target_type", "target_id"),
        Index("idx_reviews_author_created", "author_id", "created_at"),
    )


class Upvote(Base):
    __tablename__ = "upvotes"

    upvote_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), nullable=False
    )
    target_type: Mapped[str] = mapped_column(String(10), nullable=False)  # post | comment | review
    target_id: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        # The only guard against double-upvoting
        UniqueConstraint("user_id", "target_type", "target_id", name="uq_upvote_user_target"),
        Index("idx_upvotes_target", "target_type", "target_id"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    notification_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    recipient_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), nullable=False
    )
    actor_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    target_type: Mapped[str] = mapped_column(String(10), nullable=False)
    target_id: Mapped[str] = mapped_column(String(36), nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    actor = relationship("User", foreign_keys=[actor_id], lazy="joined")

    __table_args__ = (
        Index("idx_notifications_inbox", "recipient_id", "is_read", "created_at"),
    )
