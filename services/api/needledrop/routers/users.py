"""
User endpoints:
  POST   /users                   — create a user profile
  GET    /users/{id}              — fetch a user profile
  POST   /users/{id}/follow       — follow user {id}
  DELETE /users/{id}/follow       — unfollow user {id}
  GET    /users/{id}/followers    — list followers
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from needledrop.core.content import ContentService
from needledrop.dependencies import current_user_id, get_content, get_db
from needledrop.models import Follow, User
from needledrop.schemas import FollowersResponse, SuccessResponse, UserCreate, UserResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(body: UserCreate, db: AsyncSession = Depends(get_db)):
    user = User(username=body.username, display_name=body.display_name)
    db.add(user)
    try:
        await db.flush()  # get user_id before commit
    except IntegrityError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Username '{body.username}' already taken",
        ) from None

    logger.info("Created user %s (id=%s)", user.username, user.user_id)
    return user


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, db: AsyncSession = Depends(get_db)):
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post("/{user_id}/follow", response_model=SuccessResponse, status_code=status.HTTP_201_CREATED)
async def follow_user(
    user_id: str,
    viewer_id: str = Depends(current_user_id),
    content: ContentService = Depends(get_content),
):
    await content.follow(viewer_id, user_id)
    return SuccessResponse()


@router.delete("/{user_id}/follow", status_code=status.HTTP_204_NO_CONTENT)
async def unfollow_user(
    user_id: str,
    viewer_id: str = Depends(current_user_id),
    content: ContentService = Depends(get_content),
):
    await content.unfollow(viewer_id, user_id)


@router.get("/{user_id}/followers", response_model=FollowersResponse)
async def list_followers(user_id: str, db: AsyncSession = Depends(get_db)):
    rows = await db.execute(
        select(Follow.follower_id).where(Follow.following_id == user_id)
    )
    return {"user_id": user_id, "followers": [r[0] for r in rows.all()]}
