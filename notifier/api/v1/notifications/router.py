"""Notification endpoints"""

from fastapi import APIRouter, Depends, Query, status
from typing import List

from notifier.api.deps import get_services
from notifier.core.config import settings
from notifier.core.exceptions import ConflictException, NotFoundException
from notifier.core.security import get_current_user_id, require_api_key
from notifier.models.notification import NotificationStatus
from notifier.schemas.notification import (
    DeliveryLogRead,
    DispatchResponse,
    InboxItem,
    NotificationCreate,
    NotificationRead,
)
from notifier.services.factory import NotifierServices

router = APIRouter()

@router.post(
    "",
    response_model=DispatchResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_api_key)],
)
async def submit_notification(
    data: NotificationCreate,
    services: NotifierServices = Depends(get_services),
):
    """Create a notification and deliver it now, at scheduled_at, or via the queue"""
    return await services.notifications.submit(data)

@router.get("", response_model=List[InboxItem])
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    services: NotifierServices = Depends(get_services),
):
    """Current user's inbox, newest first"""
    return await services.notifications.list_for_user(
        user_id, unread_only=unread_only, limit=limit, offset=offset
    )

@router.get("/unread-count")
async def get_unread_count(
    user_id: str = Depends(get_current_user_id),
    services: NotifierServices = Depends(get_services),
):
    count = await services.notifications.unread_count(user_id)
    return {"unread_count": count}

@router.post("/read-all")
async def mark_all_read(
    user_id: str = Depends(get_current_user_id),
    services: NotifierServices = Depends(get_services),
):
    updated = await services.notifications.mark_all_read(user_id)
    return {"updated": updated}

@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    services: NotifierServices = Depends(get_services),
):
    updated = await services.notifications.mark_read(user_id, notification_id)
    return {"updated": updated}

@router.get(
    "/{notification_id}",
    response_model=NotificationRead,
    dependencies=[Depends(require_api_key)],
)
async def get_notification(
    notification_id: str,
    services: NotifierServices = Depends(get_services),
):
    notification = await services.notifications.get(notification_id)
    if not notification:
        raise NotFoundException("Notification not found")
    return notification

@router.get(
    "/{notification_id}/deliveries",
    response_model=List[DeliveryLogRead],
    dependencies=[Depends(require_api_key)],
)
async def get_deliveries(
    notification_id: str,
    services: NotifierServices = Depends(get_services),
):
    """Per channel and recipient delivery log"""
    if not await services.notifications.get(notification_id):
        raise NotFoundException("Notification not found")
    return await services.notifications.deliveries(notification_id)

@router.post(
    "/{notification_id}/cancel",
    dependencies=[Depends(require_api_key)],
)
async def cancel_notification(
    notification_id: str,
    services: NotifierServices = Depends(get_services),
):
    """Cancel a scheduled or deferred notification"""
    notification = await services.notifications.get(notification_id)
    if not notification:
        raise NotFoundException("Notification not found")

    if not await services.notifications.cancel(notification_id):
        raise ConflictException(
            f"Notification is {NotificationStatus(notification.status).value} and can no longer be cancelled"
        )
    return {"notification_id": notification_id, "status": NotificationStatus.CANCELLED.value}
