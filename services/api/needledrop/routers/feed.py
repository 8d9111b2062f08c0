"""
Feed endpoints:
  GET /feed/                  — home feed (filter=all|following|communities, sort=latest|top)
  GET /feed/following         — home feed restricted to followed accounts
  GET /feed/communities       — home feed restricted to joined communities
  GET /feed/new-and-upcoming  — public #NewAndUpcoming feed
  GET /feed/tags/{tag}        — public flag-scoped feed
  GET /feed/activity          — reviews/ratings from followed accounts, newest first
"""
import logging

from fastapi import APIRouter, Depends, Query

from needledrop.config import settings
from needledrop.core.activity import ActivityAggregator
from needledrop.core.feed import FeedComposer, FeedFilter, FeedSort
from needledrop.dependencies import (
    current_user_id,
    get_activity,
    get_feed_composer,
    optional_user_id,
)
from needledrop.schemas import (
    PostPage,
    ReviewPage,
    build_post_response,
    build_review_response,
    paginated,
)

logger = logging.getLogger(__name__)
router = APIRouter()

PAGE = Query(1, ge=1)
LIMIT = Query(settings.feed_default_limit, ge=1, le=settings.feed_max_limit)


@router.get("/", response_model=PostPage)
async def get_feed(
    filter_: FeedFilter = Query(FeedFilter.ALL, alias="filter"),
    sort: FeedSort = Query(FeedSort.LATEST),
    page: int = PAGE,
    limit: int = LIMIT,
    user_id: str = Depends(current_user_id),
    feed: FeedComposer = Depends(get_feed_composer),
):
    result = await feed.compose_feed(user_id, filter_, sort, page, limit)
    return paginated(result, build_post_response)


@router.get("/following", response_model=PostPage)
async def get_following_feed(
    sort: FeedSort = Query(FeedSort.LATEST),
    page: int = PAGE,
    limit: int = LIMIT,
    user_id: str = Depends(current_user_id),
    feed: FeedComposer = Depends(get_feed_composer),
):
    result = await feed.compose_feed(user_id, FeedFilter.FOLLOWING, sort, page, limit)
    return paginated(result, build_post_response)


@router.get("/communities", response_model=PostPage)
async def get_communities_feed(
    sort: FeedSort = Query(FeedSort.LATEST),
    page: int = PAGE,
    limit: int = LIMIT,
    user_id: str = Depends(current_user_id),
    feed: FeedComposer = Depends(get_feed_composer),
):
    result = await feed.compose_feed(user_id, FeedFilter.COMMUNITIES, sort, page, limit)
    return paginated(result, build_post_response)


@router.get("/new-and-upcoming", response_model=PostPage)
async def get_new_and_upcoming_feed(
    sort: FeedSort = Query(FeedSort.LATEST),
    page: int = PAGE,
    limit: int = LIMIT,
    user_id: str | None = Depends(optional_user_id),
    feed: FeedComposer = Depends(get_feed_composer),
):
    result = await feed.compose_tagged_feed("new-and-upcoming", sort, page, limit, user_id)
    return paginated(result, build_post_response)


@router.get("/tags/{tag}", response_model=PostPage)
async def get_tagged_feed(
    tag: str,
    sort: FeedSort = Query(FeedSort.LATEST),
    page: int = PAGE,
    limit: int = LIMIT,
    user_id: str | None = Depends(optional_user_id),
    feed: FeedComposer = Depends(get_feed_composer),
):
    result = await feed.compose_tagged_feed(tag, sort, page, limit, user_id)
    return paginated(result, build_post_response)


@router.get("/activity", response_model=ReviewPage)
async def get_activity_feed(
    page: int = PAGE,
    limit: int = LIMIT,
    user_id: str = Depends(current_user_id),
    activity: ActivityAggregator = Depends(get_activity),
):
    result = await activity.compose_activity(user_id, page, limit)
    return paginated(result, build_review_response)
