"""
Pydantic request / response schemas for the API layer.
Kept separate from ORM models to avoid coupling transport to storage.
"""
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel, Field

from needledrop.core.pagination import Entry, FeedPage


# ──────────────────────────── Shared ──────────────────────────────────────

class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int


class SuccessResponse(BaseModel):
    success: bool = True


def paginated(result: FeedPage, build: Callable[[Entry], BaseModel]) -> dict:
    """Wrap a composer page in the ``{data, pagination}`` envelope."""
    return {
        "data": [build(entry) for entry in result.entries],
        "pagination": Pagination(
            page=result.page,
            limit=result.limit,
            total=result.total,
            totalPages=result.total_pages,
        ),
    }


# ──────────────────────────── Users ───────────────────────────────────────

class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    display_name: Optional[str] = None


class UserResponse(BaseModel):
    user_id: str
    username: str
    display_name: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class AuthorSummary(BaseModel):
    user_id: str
    username: str
    display_name: Optional[str]

    class Config:
        from_attributes = True


class FollowersResponse(BaseModel):
    user_id: str
    followers: list[str]


# ──────────────────────────── Communities ─────────────────────────────────

class CommunitySummary(BaseModel):
    community_id: str
    slug: str
    name: str

    class Config:
        from_attributes = True


class MembershipResponse(BaseModel):
    user_id: str
    community_id: str
    role: str
    joined_at: datetime

    class Config:
        from_attributes = True


# ──────────────────────────── Posts ───────────────────────────────────────

class PostCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)
    link_url: Optional[str] = Field(None, max_length=500)
    link_type: Optional[str] = Field(None, pattern="^(track|album|playlist)$")
    community_ids: list[str] = Field(default_factory=list, max_length=5)
    is_new_and_upcoming: bool = False


class PostResponse(BaseModel):
    post_id: str
    author_id: str
    author: Optional[AuthorSummary]
    content: str
    link_url: Optional[str]
    link_type: Optional[str]
    is_new_and_upcoming: bool
    upvote_count: int
    comment_count: int
    created_at: datetime
    communities: list[CommunitySummary]
    has_upvoted: bool


class PostPage(BaseModel):
    data: list[PostResponse]
    pagination: Pagination


# ──────────────────────────── Comments ────────────────────────────────────

class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=1000)
    parent_comment_id: Optional[str] = None


class CommentResponse(BaseModel):
    comment_id: str
    post_id: str
    parent_comment_id: Optional[str]
    author: Optional[AuthorSummary]
    content: str
    upvote_count: int
    created_at: datetime
    has_upvoted: bool
    replies: list["CommentResponse"] = []


class CommentPage(BaseModel):
    data: list[CommentResponse]
    pagination: Pagination


# ──────────────────────────── Ratings / reviews ───────────────────────────

class RatingRequest(BaseModel):
    rating: int
    title: Optional[str] = Field(None, max_length=255)
    body: Optional[str] = Field(None, max_length=5000)


class RatingResponse(BaseModel):
    """Stored value of a rating upsert."""
    review_id: str
    target_type: str
    target_id: str
    rating: int
    title: Optional[str]
    body: Optional[str]
    created: bool


class ReviewResponse(BaseModel):
    review_id: str
    author_id: str
    author: Optional[AuthorSummary]
    target_type: str
    target_id: str
    rating: int
    title: Optional[str]
    body: Optional[str]
    upvote_count: int
    created_at: datetime
    updated_at: datetime
    has_upvoted: bool


class ReviewPage(BaseModel):
    data: list[ReviewResponse]
    pagination: Pagination


# ──────────────────────────── Notifications ───────────────────────────────

class NotificationResponse(BaseModel):
    notification_id: str
    type: str
    actor: Optional[AuthorSummary]
    target_type: str
    target_id: str
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationPage(BaseModel):
    data: list[NotificationResponse]
    pagination: Pagination
    unreadCount: int


class UnreadCountResponse(BaseModel):
    count: int


# ──────────────────────────── Builders ────────────────────────────────────

def build_post_response(entry: Entry) -> PostResponse:
    post = entry.item
    return PostResponse(
        post_id=post.post_id,
        author_id=post.author_id,
        author=AuthorSummary.model_validate(post.author) if post.author else None,
        content=post.content,
        link_url=post.link_url,
        link_type=post.link_type,
        is_new_and_upcoming=post.is_new_and_upcoming,
        upvote_count=post.upvote_count,
        comment_count=post.comment_count,
        created_at=post.created_at,
        communities=[CommunitySummary.model_validate(c) for c in post.communities],
        has_upvoted=entry.has_upvoted,
    )


def build_comment_response(entry: Entry) -> CommentResponse:
    comment = entry.item
    return CommentResponse(
        comment_id=comment.comment_id,
        post_id=comment.post_id,
        parent_comment_id=comment.parent_comment_id,
        author=AuthorSummary.model_validate(comment.author) if comment.author else None,
        content=comment.content,
        upvote_count=comment.upvote_count,
        created_at=comment.created_at,
        has_upvoted=entry.has_upvoted,
        replies=[build_comment_response(reply) for reply in entry.replies],
    )


def build_review_response(entry: Entry) -> ReviewResponse:
    review = entry.item
    return ReviewResponse(
        review_id=review.review_id,
        author_id=review.author_id,
        author=AuthorSummary.model_validate(review.author) if review.author else None,
        target_type=review.target_type,
        target_id=review.target_id,
        rating=review.rating,
        title=review.title,
        body=review.body,
        upvote_count=review.upvote_count,
        created_at=review.created_at,
        updated_at=review.updated_at,
        has_upvoted=entry.has_upvoted,
    )
