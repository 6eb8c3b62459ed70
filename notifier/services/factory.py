"""
Explicit construction of the delivery stack
Providers, channels, router and queue are built once at startup and passed
down as dependencies.
"""

from typing import Dict, Optional
from sqlalchemy.ext.asyncio import async_sessionmaker
import redis.asyncio as redis
import logging

from notifier.core.config import Settings
from notifier.models.notification import DeliveryChannel
from notifier.services.channels import (
    ConnectionRegistry,
    DeviceTokenStore,
    EmailChannel,
    InAppChannel,
    PushChannel,
    SMSChannel,
    WebhookChannel,
)
from notifier.services.delivery_status import DeliveryStatusStore
from notifier.services.inbox import InboxService
from notifier.services.job_queue import JobQueue
from notifier.services.notification_dispatcher import Channel, ChannelRouter
from notifier.services.notification_service import NotificationService
from notifier.services.preferences import PreferenceStore
from notifier.services.providers import ProviderChain, build_providers
from notifier.services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)

class NotifierServices:
    """Everything the API and workers need, wired together"""

    def __init__(
        self,
        router: ChannelRouter,
        notifications: NotificationService,
        reconciler: WebhookReconciler,
        status_store: DeliveryStatusStore,
        inbox: InboxService,
        in_app: InAppChannel,
        push: PushChannel,
        webhooks: WebhookChannel,
        preferences: PreferenceStore,
        job_queue: Optional[JobQueue] = None,
    ):
        self.router = router
        self.notifications = notifications
        self.reconciler = reconciler
        self.status_store = status_store
        self.inbox = inbox
        self.in_app = in_app
        self.push = push
        self.webhooks = webhooks
        self.preferences = preferences
        self.job_queue = job_queue

def build_services(
    settings: Settings,
    session_factory: async_sessionmaker,
    redis_client: Optional[redis.Redis] = None,
) -> NotifierServices:
    status_store = DeliveryStatusStore(session_factory)
    inbox = InboxService(session_factory)
    preferences = PreferenceStore(session_factory)

    email = EmailChannel(
        ProviderChain("EMAIL", build_providers(DeliveryChannel.EMAIL, settings.EMAIL_PROVIDERS, settings))
    ) if settings.EMAIL_ENABLED else None

    sms = SMSChannel(
        ProviderChain("SMS", build_providers(DeliveryChannel.SMS, settings.SMS_PROVIDERS, settings)),
        default_country_code=settings.SMS_DEFAULT_COUNTRY_CODE,
        max_length=settings.SMS_MAX_LENGTH,
    ) if settings.SMS_ENABLED else None

    # Push and webhook channels also own the token and subscription registries
    push = PushChannel(
        ProviderChain(
            "PUSH",
            build_providers(DeliveryChannel.PUSH, settings.PUSH_PROVIDERS, settings) if settings.PUSH_ENABLED else [],
        ),
        DeviceTokenStore(session_factory),
    )
    webhooks = WebhookChannel(
        session_factory,
        secret=settings.WEBHOOK_SECRET,
        timeout=settings.webhook_timeout_seconds,
        max_retries=settings.WEBHOOK_MAX_RETRIES,
        retry_delay_ms=settings.WEBHOOK_RETRY_DELAY_MS,
        user_agent=settings.WEBHOOK_USER_AGENT,
    )
    in_app = InAppChannel(ConnectionRegistry(), inbox, replay_limit=settings.IN_APP_REPLAY_LIMIT)

    enabled = {
        DeliveryChannel.EMAIL: email,
        DeliveryChannel.SMS: sms,
        DeliveryChannel.PUSH: push if settings.PUSH_ENABLED else None,
        DeliveryChannel.WEBHOOK: webhooks if settings.WEBHOOK_ENABLED else None,
        DeliveryChannel.IN_APP: in_app if settings.IN_APP_ENABLED else None,
    }
    channels: Dict[DeliveryChannel, Channel] = {
        name: channel for name, channel in enabled.items() if channel is not None
    }
    router = ChannelRouter(channels, status_store)

    job_queue = None
    if redis_client is not None:
        job_queue = JobQueue(redis_client, backoff_base_ms=settings.JOB_BACKOFF_BASE_MS)

    notifications = NotificationService(
        session_factory,
        router,
        inbox,
        status_store,
        job_queue=job_queue,
        in_app=in_app,
        preferences=preferences,
        queue_name=settings.JOB_QUEUE_NAME,
        max_attempts=settings.JOB_MAX_ATTEMPTS,
    )
    if job_queue is not None:
        job_queue.on_dead_letter = notifications.handle_dead_letter

    logger.info(f"Enabled channels: {', '.join(c.value for c in channels)}")

    return NotifierServices(
        router=router,
        notifications=notifications,
        reconciler=WebhookReconciler(status_store),
        status_store=status_store,
        inbox=inbox,
        in_app=in_app,
        push=push,
        webhooks=webhooks,
        preferences=preferences,
        job_queue=job_queue,
    )
