"""
Webhook reconciler
Maps provider delivery callbacks onto canonical statuses and applies them to
the delivery log. Every update is idempotent, so providers may replay events.
"""

from typing import Any, Dict, Iterable, NamedTuple, Optional
import logging

from notifier.models.delivery_log import DeliveryStatus
from notifier.models.notification import DeliveryChannel
from notifier.services.delivery_status import DeliveryStatusStore
from notifier.services.providers.sms import TWILIO_STATUS_MAP, VONAGE_STATUS_MAP

logger = logging.getLogger(__name__)

SENDGRID_EVENT_MAP = {
    "processed": DeliveryStatus.SENT,
    "delivered": DeliveryStatus.DELIVERED,
    "open": DeliveryStatus.DELIVERED,
    "click": DeliveryStatus.DELIVERED,
    "bounce": DeliveryStatus.BOUNCED,
    "dropped": DeliveryStatus.FAILED,
    "deferred": DeliveryStatus.PENDING,
    "blocked": DeliveryStatus.REJECTED,
    "spam_report": DeliveryStatus.REJECTED,
    "spamreport": DeliveryStatus.REJECTED,
    "unsubscribe": DeliveryStatus.DELIVERED,
}

# Self-owned callbacks may send canonical names or the common vendor words
GENERIC_EVENT_MAP = {
    **{status.value.lower(): status for status in DeliveryStatus},
    **SENDGRID_EVENT_MAP,
}

STATUS_MAPS = {
    "sendgrid": SENDGRID_EVENT_MAP,
    "twilio": TWILIO_STATUS_MAP,
    "vonage": VONAGE_STATUS_MAP,
    "generic": GENERIC_EVENT_MAP,
}

class CallbackEvent(NamedTuple):
    """Correlation data and status extracted from one provider event"""
    event: str
    notification_id: Optional[str]
    recipient: Optional[str]
    message_id: Optional[str]
    channel: Optional[DeliveryChannel]

def map_status(provider: str, event: Optional[str]) -> DeliveryStatus:
    """Vendor event name -> canonical status; unknown names mean still in flight"""
    table = STATUS_MAPS.get(provider, {})
    return table.get((event or "").strip().lower(), DeliveryStatus.SENT)

def _sendgrid(event: Dict[str, Any]) -> CallbackEvent:
    message_id = event.get("sg_message_id")
    return CallbackEvent(
        event=event.get("event", ""),
        notification_id=event.get("notification_id"),
        recipient=event.get("recipient") or event.get("email"),
        # sg_message_id is "<X-Message-Id>.filter..."
        message_id=message_id.split(".")[0] if message_id else None,
        channel=DeliveryChannel.EMAIL,
    )

def _twilio(event: Dict[str, Any]) -> CallbackEvent:
    return CallbackEvent(
        event=event.get("MessageStatus") or event.get("SmsStatus", ""),
        notification_id=event.get("notification_id"),
        recipient=event.get("recipient") or event.get("To"),
        message_id=event.get("MessageSid") or event.get("SmsSid"),
        channel=DeliveryChannel.SMS,
    )

def _vonage(event: Dict[str, Any]) -> CallbackEvent:
    msisdn = event.get("msisdn") or event.get("to")
    return CallbackEvent(
        event=event.get("status", ""),
        notification_id=event.get("client-ref") or event.get("client_ref"),
        recipient=f"+{str(msisdn).lstrip('+')}" if msisdn else None,
        message_id=event.get("messageId") or event.get("message-id"),
        channel=DeliveryChannel.SMS,
    )

def _generic(event: Dict[str, Any]) -> CallbackEvent:
    channel = event.get("channel")
    return CallbackEvent(
        event=event.get("status") or event.get("event", ""),
        notification_id=event.get("notification_id"),
        recipient=event.get("recipient"),
        message_id=event.get("message_id"),
        channel=DeliveryChannel(channel.upper()) if channel else None,
    )

EXTRACTORS = {
    "sendgrid": _sendgrid,
    "twilio": _twilio,
    "vonage": _vonage,
    "generic": _generic,
}

class WebhookReconciler:
    """Applies provider callbacks to the delivery status store"""

    def __init__(self, status_store: DeliveryStatusStore):
        self.status_store = status_store

    async def reconcile(self, provider: str, events: Iterable[Dict[str, Any]]) -> int:
        """
        Apply a batch of provider events

        Returns:
            Number of events that matched at least one delivery log row
        """
        extract = EXTRACTORS.get(provider)
        if extract is None:
            raise ValueError(f"Unknown callback provider '{provider}'")

        applied = 0
        for raw in events:
            try:
                event = extract(raw)
            except (ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed {provider} event: {e}")
                continue

            status = map_status(provider, event.event)
            if event.notification_id:
                rows = await self.status_store.update_status(
                    event.notification_id,
                    status,
                    channel=event.channel,
                    recipient=event.recipient,
                    response=raw,
                )
            elif event.message_id:
                rows = await self.status_store.update_status_by_message_id(event.message_id, status, response=raw)
            else:
                logger.warning(f"{provider} event '{event.event}' has no correlation data, skipped")
                continue

            if rows:
                applied += 1
            else:
                logger.info(
                    f"{provider} event '{event.event}' for notification {event.notification_id} "
                    f"matched no delivery rows"
                )

        logger.info(f"Reconciled {applied} {provider} event(s)")
        return applied
