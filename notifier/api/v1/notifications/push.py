"""Device token endpoints"""

from fastapi import APIRouter, Depends

from notifier.api.deps import get_services
from notifier.core.exceptions import NotFoundException
from notifier.core.security import get_current_user_id
from notifier.schemas.subscription import DeviceTokenRead, DeviceTokenRequest
from notifier.services.factory import NotifierServices

router = APIRouter()

@router.post("/device-token/register", response_model=DeviceTokenRead)
async def register_device_token(
    request: DeviceTokenRequest,
    user_id: str = Depends(get_current_user_id),
    services: NotifierServices = Depends(get_services),
):
    """Register a device token for push notifications"""
    return await services.push.register_device_token(
        user_id=user_id,
        token=request.token,
        platform=request.platform,
        device_info=request.device_info,
    )

@router.delete("/device-token/{token}")
async def unregister_device_token(
    token: str,
    user_id: str = Depends(get_current_user_id),
    services: NotifierServices = Depends(get_services),
):
    if not await services.push.unregister_device_token(token, user_id=user_id):
        raise NotFoundException("Device token not found")
    return {"message": "Device token unregistered successfully"}
