"""Channel router: fans a notification out to its channels for one recipient"""

from typing import Any, Dict, Iterable, Mapping, Optional, Protocol
from pydantic import BaseModel
import logging

from notifier.core.exceptions import DeliveryError
from notifier.models.delivery_log import DeliveryStatus
from notifier.models.notification import DeliveryChannel, Notification, NotificationStatus
from notifier.schemas.notification import NotificationContent, RecipientUser
from notifier.services.delivery_status import DeliveryStatusStore
from notifier.services.providers import ProviderResult

logger = logging.getLogger(__name__)

class Channel(Protocol):
    channel: DeliveryChannel

    def recipient_for(self, user: RecipientUser) -> str:
        ...

    async def send(
        self,
        user: RecipientUser,
        content: NotificationContent,
        notification: Notification,
    ) -> ProviderResult:
        ...

class ChannelOutcome(BaseModel):
    channel: DeliveryChannel
    success: bool
    recipient: str
    status: DeliveryStatus
    provider: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None

class ChannelRouter:
    """Invokes each requested channel independently and records every outcome"""

    def __init__(self, channels: Mapping[DeliveryChannel, Channel], status_store: DeliveryStatusStore):
        self.channels = dict(channels)
        self.status_store = status_store

    @staticmethod
    def content_for(notification: Notification) -> NotificationContent:
        overrides = dict(notification.content or {})
        overrides.pop("title", None)
        overrides.pop("message", None)
        return NotificationContent(title=notification.title, message=notification.message, **overrides)

    async def dispatch(
        self,
        notification: Notification,
        user: RecipientUser,
        content: Optional[NotificationContent] = None,
        channels: Optional[Iterable[DeliveryChannel]] = None,
    ) -> Dict[DeliveryChannel, ChannelOutcome]:
        """
        Send a notification to one recipient on every requested channel

        Args:
            channels: Subset of the notification's channels to use (after
                recipient preferences); defaults to all of them

        Returns:
            Outcome per channel. A failure on one channel never stops the others.
        """
        content = content or self.content_for(notification)
        outcomes: Dict[DeliveryChannel, ChannelOutcome] = {}

        for name in (notification.channels if channels is None else channels):
            channel = DeliveryChannel(name)
            outcome = await self._dispatch_channel(channel, notification, user, content)
            outcomes[channel] = outcome

            await self.status_store.record(
                notification_id=notification.id,
                channel=channel,
                recipient=outcome.recipient,
                status=outcome.status,
                provider=outcome.provider,
                message_id=outcome.message_id,
                error=outcome.error,
            )

        sent = [c.value for c, o in outcomes.items() if o.success]
        logger.info(
            f"Notification {notification.id} to user {user.id}: "
            f"{len(sent)}/{len(outcomes)} channel(s) succeeded {sent}"
        )
        return outcomes

    async def _dispatch_channel(
        self,
        channel: DeliveryChannel,
        notification: Notification,
        user: RecipientUser,
        content: NotificationContent,
    ) -> ChannelOutcome:
        adapter = self.channels.get(channel)
        if adapter is None:
            return self._failed(channel, user.id, f"Channel {channel.value} is not enabled")

        try:
            recipient = adapter.recipient_for(user)
        except DeliveryError as e:
            return self._failed(channel, user.id, str(e))

        try:
            result = await adapter.send(user, content, notification)
        except DeliveryError as e:
            logger.error(f"{channel.value} delivery of {notification.id} to {recipient} failed: {e}")
            return self._failed(channel, recipient, str(e))
        except Exception as e:
            logger.exception(f"Unexpected {channel.value} error for notification {notification.id}")
            return self._failed(channel, recipient, f"Unexpected error: {e}")

        return ChannelOutcome(
            channel=channel,
            success=True,
            recipient=recipient,
            status=result.status,
            provider=result.provider,
            message_id=result.message_id,
        )

    @staticmethod
    def _failed(channel: DeliveryChannel, recipient: str, error: str) -> ChannelOutcome:
        return ChannelOutcome(
            channel=channel,
            success=False,
            recipient=recipient,
            status=DeliveryStatus.FAILED,
            error=error,
        )

    @staticmethod
    def aggregate_status(outcomes: Mapping[Any, ChannelOutcome]) -> NotificationStatus:
        """SENT if any channel succeeded, FAILED otherwise"""
        if any(outcome.success for outcome in outcomes.values()):
            return NotificationStatus.SENT
        return NotificationStatus.FAILED
