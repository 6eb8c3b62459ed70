"""Notification preference endpoints"""

from typing import Dict
from fastapi import APIRouter, Depends

from notifier.api.deps import get_services
from notifier.core.exceptions import BadRequestException
from notifier.core.security import get_current_user_id
from notifier.models.notification import DeliveryChannel
from notifier.schemas.preference import (
    ChannelToggle,
    PreferenceRead,
    PreferenceUpdate,
    QuietHoursUpdate,
)
from notifier.services.factory import NotifierServices

router = APIRouter()

@router.get("/preferences", response_model=PreferenceRead)
async def get_preferences(
    user_id: str = Depends(get_current_user_id),
    services: NotifierServices = Depends(get_services),
):
    """Current user's preferences (defaults when none are stored)"""
    return await services.preferences.get_or_default(user_id)

@router.put("/preferences", response_model=PreferenceRead)
async def update_preferences(
    request: PreferenceUpdate,
    user_id: str = Depends(get_current_user_id),
    services: NotifierServices = Depends(get_services),
):
    return await services.preferences.update(user_id, request)

@router.put("/preferences/channels/{channel}", response_model=PreferenceRead)
async def toggle_channel(
    channel: DeliveryChannel,
    request: ChannelToggle,
    user_id: str = Depends(get_current_user_id),
    services: NotifierServices = Depends(get_services),
):
    try:
        return await services.preferences.toggle_channel(user_id, channel, request.enabled)
    except ValueError as e:
        raise BadRequestException(str(e))

@router.put("/preferences/quiet-hours", response_model=PreferenceRead)
async def set_quiet_hours(
    request: QuietHoursUpdate,
    user_id: str = Depends(get_current_user_id),
    services: NotifierServices = Depends(get_services),
):
    return await services.preferences.set_quiet_hours(
        user_id,
        enabled=request.enabled,
        start_time=request.start_time,
        end_time=request.end_time,
        days=request.days,
    )

@router.put("/preferences/types/{category}/{notification_type}", response_model=PreferenceRead)
async def set_type_preference(
    category: str,
    notification_type: str,
    request: Dict[str, bool],
    user_id: str = Depends(get_current_user_id),
    services: NotifierServices = Depends(get_services),
):
    """Per-channel switches for one notification category and type"""
    return await services.preferences.set_type_preference(user_id, category, notification_type, request)

@router.delete("/preferences")
async def reset_preferences(
    user_id: str = Depends(get_current_user_id),
    services: NotifierServices = Depends(get_services),
):
    await services.preferences.reset(user_id)
    return {"message": "Notification preferences reset to defaults"}
