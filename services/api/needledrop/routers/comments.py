"""
Comment endpoints:
  DELETE /comments/{id}         — delete own comment (and its replies)
  POST   /comments/{id}/upvote  — upvote (409 if already upvoted)
  DELETE /comments/{id}/upvote  — remove upvote (404 if not upvoted)
"""
from fastapi import APIRouter, Depends, status

from needledrop.core.content import ContentService
from needledrop.core.ledger import EngagementLedger
from needledrop.dependencies import current_user_id, get_content, get_ledger
from needledrop.schemas import SuccessResponse

router = APIRouter()


@router.delete("/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(
    comment_id: str,
    user_id: str = Depends(current_user_id),
    content: ContentService = Depends(get_content),
):
    await content.delete_comment(comment_id, user_id)


@router.post("/{comment_id}/upvote", response_model=SuccessResponse, status_code=status.HTTP_201_CREATED)
async def upvote_comment(
    comment_id: str,
    user_id: str = Depends(current_user_id),
    ledger: EngagementLedger = Depends(get_ledger),
):
    await ledger.upvote(user_id, "comment", comment_id)
    return SuccessResponse()


@router.delete("/{comment_id}/upvote", response_model=SuccessResponse)
async def remove_comment_upvote(
    comment_id: str,
    user_id: str = Depends(current_user_id),
    ledger: EngagementLedger = Depends(get_ledger),
):
    await ledger.remove_upvote(user_id, "comment", comment_id)
    return SuccessResponse()
