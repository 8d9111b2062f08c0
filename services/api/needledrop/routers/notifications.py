"""
Notification inbox endpoints:
  GET  /notifications                 — newest first, with unread count
  GET  /notifications/unread-count
  POST /notifications/read-all
  POST /notifications/{id}/read
"""
from fastapi import APIRouter, Depends, Query

from needledrop.config import settings
from needledrop.core.notifications import NotificationInbox
from needledrop.dependencies import current_user_id, get_inbox
from needledrop.schemas import (
    NotificationPage,
    NotificationResponse,
    SuccessResponse,
    UnreadCountResponse,
    paginated,
)

router = APIRouter()


@router.get("/", response_model=NotificationPage)
async def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.feed_default_limit, ge=1, le=settings.feed_max_limit),
    user_id: str = Depends(current_user_id),
    inbox: NotificationInbox = Depends(get_inbox),
):
    result, unread = await inbox.list_notifications(user_id, page, limit)
    envelope = paginated(result, lambda entry: NotificationResponse.model_validate(entry.item))
    envelope["unreadCount"] = unread
    return envelope


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    user_id: str = Depends(current_user_id),
    inbox: NotificationInbox = Depends(get_inbox),
):
    return UnreadCountResponse(count=await inbox.unread_count(user_id))


@router.post("/read-all", response_model=SuccessResponse)
async def mark_all_read(
    user_id: str = Depends(current_user_id),
    inbox: NotificationInbox = Depends(get_inbox),
):
    await inbox.mark_all_read(user_id)
    return SuccessResponse()


@router.post("/{notification_id}/read", response_model=SuccessResponse)
async def mark_read(
    notification_id: str,
    user_id: str = Depends(current_user_id),
    inbox: NotificationInbox = Depends(get_inbox),
):
    await inbox.mark_read(notification_id, user_id)
    return SuccessResponse()
