"""
Post endpoints:
  POST   /posts                   — create a post
  GET    /posts/{id}              — fetch a single post
  DELETE /posts/{id}              — delete own post
  POST   /posts/{id}/upvote       — upvote (409 if already upvoted)
  DELETE /posts/{id}/upvote       — remove upvote (404 if not upvoted)
  GET    /posts/{id}/comments     — threaded comments
  POST   /posts/{id}/comments     — comment or reply
"""
import logging

from fastapi import APIRouter, Depends, Query, status

from needledrop.config import settings
from needledrop.core.content import ContentService
from needledrop.core.ledger import EngagementLedger
from needledrop.dependencies import current_user_id, get_content, get_ledger, optional_user_id
from needledrop.schemas import (
    CommentCreate,
    CommentPage,
    CommentResponse,
    PostCreate,
    PostResponse,
    SuccessResponse,
    build_comment_response,
    build_post_response,
    paginated,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
async def create_post(
    body: PostCreate,
    user_id: str = Depends(current_user_id),
    content: ContentService = Depends(get_content),
):
    entry = await content.create_post(
        author_id=user_id,
        content=body.content,
        link_url=body.link_url,
        link_type=body.link_type,
        community_ids=body.community_ids,
        is_new_and_upcoming=body.is_new_and_upcoming,
    )
    return build_post_response(entry)


@router.get("/{post_id}", response_model=PostResponse)
async def get_post(
    post_id: str,
    user_id: str | None = Depends(optional_user_id),
    content: ContentService = Depends(get_content),
):
    return build_post_response(await content.get_post(post_id, user_id))


@router.delete("/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(
    post_id: str,
    user_id: str = Depends(current_user_id),
    content: ContentService = Depends(get_content),
):
    await content.delete_post(post_id, user_id)


@router.post("/{post_id}/upvote", response_model=SuccessResponse, status_code=status.HTTP_201_CREATED)
async def upvote_post(
    post_id: str,
    user_id: str = Depends(current_user_id),
    ledger: EngagementLedger = Depends(get_ledger),
):
    await ledger.upvote(user_id, "post", post_id)
    return SuccessResponse()


@router.delete("/{post_id}/upvote", response_model=SuccessResponse)
async def remove_post_upvote(
    post_id: str,
    user_id: str = Depends(current_user_id),
    ledger: EngagementLedger = Depends(get_ledger),
):
    await ledger.remove_upvote(user_id, "post", post_id)
    return SuccessResponse()


@router.get("/{post_id}/comments", response_model=CommentPage)
async def list_comments(
    post_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.feed_default_limit, ge=1, le=settings.feed_max_limit),
    user_id: str | None = Depends(optional_user_id),
    content: ContentService = Depends(get_content),
):
    result = await content.list_comments(post_id, page, limit, user_id)
    return paginated(result, build_comment_response)


@router.post(
    "/{post_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_comment(
    post_id: str,
    body: CommentCreate,
    user_id: str = Depends(current_user_id),
    content: ContentService = Depends(get_content),
):
    entry = await content.create_comment(post_id, user_id, body.content, body.parent_comment_id)
    return build_comment_response(entry)
