"""
Community endpoints:
  GET    /communities/{id}/feed     — posts shared to one community
  POST   /communities/{id}/members  — join
  DELETE /communities/{id}/members  — leave
"""
from fastapi import APIRouter, Depends, Query, status

from needledrop.config import settings
from needledrop.core.content import ContentService
from needledrop.core.feed import FeedComposer, FeedSort
from needledrop.dependencies import (
    current_user_id,
    get_content,
    get_feed_composer,
    optional_user_id,
)
from needledrop.schemas import MembershipResponse, PostPage, build_post_response, paginated

router = APIRouter()


@router.get("/{community_id}/feed", response_model=PostPage)
async def get_community_feed(
    community_id: str,
    sort: FeedSort = Query(FeedSort.LATEST),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.feed_default_limit, ge=1, le=settings.feed_max_limit),
    user_id: str | None = Depends(optional_user_id),
    feed: FeedComposer = Depends(get_feed_composer),
):
    result = await feed.compose_community_feed(community_id, sort, page, limit, user_id)
    return paginated(result, build_post_response)


@router.post(
    "/{community_id}/members",
    response_model=MembershipResponse,
    status_code=status.HTTP_201_CREATED,
)
async def join_community(
    community_id: str,
    user_id: str = Depends(current_user_id),
    content: ContentService = Depends(get_content),
):
    return await content.join_community(user_id, community_id)


@router.delete("/{community_id}/members", status_code=status.HTTP_204_NO_CONTENT)
async def leave_community(
    community_id: str,
    user_id: str = Depends(current_user_id),
    content: ContentService = Depends(get_content),
):
    await content.leave_community(user_id, community_id)
