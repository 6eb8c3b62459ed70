"""API v1 routes aggregation"""

from fastapi import APIRouter

from .notifications.router import router as notifications_router
from .notifications.push import router as push_router
from .notifications.preferences import router as preferences_router
from .webhooks.router import router as webhooks_router
from .webhooks.subscriptions import router as subscriptions_router

# Create v1 router
api_router = APIRouter()

api_router.include_router(push_router, prefix="/notifications", tags=["Device Tokens"])
api_router.include_router(preferences_router, prefix="/notifications", tags=["Notification Preferences"])
api_router.include_router(notifications_router, prefix="/notifications", tags=["Notifications"])
api_router.include_router(subscriptions_router, prefix="/webhook-subscriptions", tags=["Webhook Subscriptions"])
api_router.include_router(webhooks_router, prefix="/webhooks", tags=["Provider Webhooks"])
