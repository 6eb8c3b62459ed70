"""Outbound webhook subscription endpoints (collaborators only)"""

from fastapi import APIRouter, Depends, status

from notifier.api.deps import get_services
from notifier.core.exceptions import NotFoundException
from notifier.core.security import require_api_key
from notifier.schemas.subscription import WebhookSubscriptionCreate, WebhookSubscriptionRead
from notifier.services.factory import NotifierServices

router = APIRouter(dependencies=[Depends(require_api_key)])

@router.post("", response_model=WebhookSubscriptionRead, status_code=status.HTTP_201_CREATED)
async def create_subscription(
    data: WebhookSubscriptionCreate,
    services: NotifierServices = Depends(get_services),
):
    return await services.webhooks.register_subscription(**data.model_dump())

@router.delete("/{subscription_id}")
async def deactivate_subscription(
    subscription_id: str,
    services: NotifierServices = Depends(get_services),
):
    if not await services.webhooks.deactivate_subscription(subscription_id):
        raise NotFoundException("Webhook subscription not found")
    return {"message": "Webhook subscription deactivated"}
