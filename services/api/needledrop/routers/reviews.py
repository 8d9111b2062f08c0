"""
Rating and review endpoints:
  PUT    /ratings/{target_type}/{target_id}  — rate (optionally review) an album/track/artist
  DELETE /ratings/{target_type}/{target_id}  — remove own rating (404 if none)
  GET    /reviews/popular                    — most-upvoted written reviews of a timeframe
  GET    /reviews/{id}                       — fetch a review
  POST   /reviews/{id}/upvote                — upvote (409 if already upvoted)
  DELETE /reviews/{id}/upvote                — remove upvote (404 if not upvoted)
"""
from fastapi import APIRouter, Depends, Query, status

from needledrop.core.activity import MAX_POPULAR, ActivityAggregator, Timeframe
from needledrop.core.content import ContentService
from needledrop.core.ledger import EngagementLedger
from needledrop.dependencies import (
    current_user_id,
    get_activity,
    get_content,
    get_ledger,
    optional_user_id,
)
from needledrop.schemas import (
    RatingRequest,
    RatingResponse,
    ReviewResponse,
    SuccessResponse,
    build_review_response,
)

ratings_router = APIRouter()
router = APIRouter()


@ratings_router.put(
    "/{target_type}/{target_id}",
    response_model=RatingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def rate(
    target_type: str,
    target_id: str,
    body: RatingRequest,
    user_id: str = Depends(current_user_id),
    ledger: EngagementLedger = Depends(get_ledger),
):
    result = await ledger.rate_or_review(
        user_id, target_type, target_id, body.rating, title=body.title, body=body.body
    )
    review = result.review
    return RatingResponse(
        review_id=review.review_id,
        target_type=review.target_type,
        target_id=review.target_id,
        rating=review.rating,
        title=review.title,
        body=review.body,
        created=result.created,
    )


@ratings_router.delete("/{target_type}/{target_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_rating(
    target_type: str,
    target_id: str,
    user_id: str = Depends(current_user_id),
    ledger: EngagementLedger = Depends(get_ledger),
):
    await ledger.remove_rating(user_id, target_type, target_id)


@router.get("/popular", response_model=list[ReviewResponse])
async def popular_reviews(
    timeframe: Timeframe = Query(Timeframe.WEEK),
    limit: int = Query(10, ge=1, le=MAX_POPULAR),
    user_id: str | None = Depends(optional_user_id),
    activity: ActivityAggregator = Depends(get_activity),
):
    entries = await activity.popular_reviews(timeframe, limit, user_id)
    return [build_review_response(entry) for entry in entries]


@router.get("/{review_id}", response_model=ReviewResponse)
async def get_review(
    review_id: str,
    user_id: str | None = Depends(optional_user_id),
    content: ContentService = Depends(get_content),
):
    return build_review_response(await content.get_review(review_id, user_id))


@router.post("/{review_id}/upvote", response_model=SuccessResponse, status_code=status.HTTP_201_CREATED)
async def upvote_review(
    review_id: str,
    user_id: str = Depends(current_user_id),
    ledger: EngagementLedger = Depends(get_ledger),
):
    await ledger.upvote(user_id, "review", review_id)
    return SuccessResponse()


@router.delete("/{review_id}/upvote", response_model=SuccessResponse)
async def remove_review_upvote(
    review_id: str,
    user_id: str = Depends(current_user_id),
    ledger: EngagementLedger = Depends(get_ledger),
):
    await ledger.remove_upvote(user_id, "review", review_id)
    return SuccessResponse()
