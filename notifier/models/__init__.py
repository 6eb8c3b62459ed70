"""Models package initialization"""

from .base import Base
from .notification import (
    Notification,
    UserNotification,
    NotificationStatus,
    NotificationPriority,
    DeliveryChannel,
)
from .delivery_log import DeliveryLog, DeliveryStatus
from .push_notification import DeviceToken
from .webhook import WebhookSubscription
from .preference import NotificationPreference

__all__ = [
    "Base",
    "Notification",
    "UserNotification",
    "NotificationStatus",
    "NotificationPriority",
    "DeliveryChannel",
    "DeliveryLog",
    "DeliveryStatus",
    "DeviceToken",
    "WebhookSubscription",
    "NotificationPreference",
]
