"""
Outbound webhook channel

Each matching subscription receives a JSON event. When a secret is available
the exact request body is signed with HMAC-SHA256 and sent as X-Signature
(hex) and X-Signature-256 (sha256=<hex>).
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from datetime import datetime, timezone
from urllib.parse import urlparse
from sqlalchemy import select, update, or_, and_
from sqlalchemy.ext.asyncio import async_sessionmaker
import asyncio
import hashlib
import hmac
import httpx
import json
import logging
import uuid

from notifier.core.exceptions import ExhaustionError, ProviderError, ValidationError
from notifier.models.delivery_log import DeliveryStatus
from notifier.models.notification import DeliveryChannel, Notification, NotificationPriority
from notifier.models.webhook import WebhookSubscription
from notifier.schemas.notification import NotificationContent, RecipientUser
from notifier.services.providers import ProviderResult

logger = logging.getLogger(__name__)

EVENT_NOTIFICATION_SENT = "notification.sent"
RETRYABLE_STATUS_CODES = (408, 429)
ALLOWED_METHODS = ("POST", "PUT", "PATCH")

def sign_payload(body: Union[str, bytes], secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body"""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()

def verify_signature(body: Union[str, bytes], signature: Optional[str], secret: Optional[str]) -> bool:
    """Constant-time check of a hex or sha256=<hex> signature"""
    if not signature or not secret:
        return False
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    expected = sign_payload(body, secret)
    return hmac.compare_digest(expected, signature)

def validate_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"Invalid webhook URL: {url}")
    return url

class WebhookChannel:
    """Delivers notification events to subscriber endpoints"""

    channel = DeliveryChannel.WEBHOOK

    def __init__(
        self,
        session_factory: async_sessionmaker,
        secret: Optional[str] = None,
        timeout: float = 5.0,
        max_retries: int = 3,
        retry_delay_ms: int = 1000,
        user_agent: str = "Notifier-Webhook/1.0",
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.secret = secret
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay_ms = retry_delay_ms
        self.user_agent = user_agent
        self.client = client
        self.sleep = sleep

    def recipient_for(self, user: RecipientUser) -> str:
        return user.id

    # Subscription management

    async def register_subscription(
        self,
        url: str,
        user_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        method: str = "POST",
        headers: Optional[Dict[str, str]] = None,
        events: Optional[List[str]] = None,
        secret: Optional[str] = None,
        description: Optional[str] = None,
    ) -> WebhookSubscription:
        validate_url(url)
        if not user_id and not tenant_id:
            raise ValidationError("A webhook subscription needs a user or tenant owner")
        method = method.upper()
        if method not in ALLOWED_METHODS:
            raise ValidationError(f"Unsupported webhook method '{method}'")

        subscription = WebhookSubscription(
            url=url,
            user_id=user_id,
            tenant_id=tenant_id,
            method=method,
            headers=headers or {},
            events=events or [EVENT_NOTIFICATION_SENT],
            secret=secret,
            description=description,
            is_active=True,
        )
        async with self.session_factory() as session:
            session.add(subscription)
            await session.commit()
            await session.refresh(subscription)

        logger.info(f"Registered webhook subscription {subscription.id} -> {url}")
        return subscription

    async def deactivate_subscription(self, subscription_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(WebhookSubscription)
                .where(WebhookSubscription.id == subscription_id)
                .values(is_active=False)
            )
            await session.commit()
        return result.rowcount > 0

    async def subscriptions_for(
        self,
        user: RecipientUser,
        tenant_id: Optional[str],
        event: str = EVENT_NOTIFICATION_SENT,
    ) -> List[WebhookSubscription]:
        """Active subscriptions of the user, plus tenant-wide ones"""
        owner = WebhookSubscription.user_id == user.id
        if tenant_id:
            owner = or_(
                owner,
                and_(WebhookSubscription.tenant_id == tenant_id, WebhookSubscription.user_id.is_(None)),
            )

        async with self.session_factory() as session:
            result = await session.execute(
                select(WebhookSubscription).where(WebhookSubscription.is_active.is_(True), owner)
            )
            subscriptions = result.scalars().all()

        return [s for s in subscriptions if event in (s.events or []) or "*" in (s.events or [])]

    # Delivery

    @staticmethod
    def build_payload(
        user: RecipientUser,
        content: NotificationContent,
        notification: Notification,
        tenant_id: Optional[str],
    ) -> Dict[str, Any]:
        return {
            "event": EVENT_NOTIFICATION_SENT,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "notification": {
                "id": notification.id,
                "title": content.title,
                "message": content.message,
                "type": notification.type,
                "priority": NotificationPriority(notification.priority).value,
                "category": notification.category,
                "metadata": notification.notification_metadata or {},
            },
            "user": {
                "id": user.id,
                "email": user.email,
                "name": user.name or None,
                "role": user.role,
            },
            "tenant": {"id": tenant_id},
            "channels": [DeliveryChannel(c).value for c in notification.channels],
            "created_at": notification.created_at.isoformat() if notification.created_at else None,
        }

    def build_headers(self, subscription: WebhookSubscription, body: bytes, delivery_id: str) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            "X-Webhook-Event": EVENT_NOTIFICATION_SENT,
            "X-Webhook-Delivery": delivery_id,
        }

        secret = subscription.secret or self.secret
        if secret:
            signature = sign_payload(body, secret)
            headers["X-Signature"] = signature
            headers["X-Signature-256"] = f"sha256={signature}"

        # Subscriber headers never override the signature headers
        for key, value in (subscription.headers or {}).items():
            headers.setdefault(key, value)
        return headers

    async def _request(self, method: str, url: str, body: bytes, headers: Dict[str, str]) -> httpx.Response:
        if self.client is not None:
            return await self.client.request(method, url, content=body, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, content=body, headers=headers)

    async def deliver(self, subscription: WebhookSubscription, body: bytes, headers: Dict[str, str]) -> Dict[str, Any]:
        """
        Call one subscriber, retrying network errors, 5xx, 408 and 429
        with exponential backoff. Other 4xx responses fail immediately.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self._request(subscription.method, subscription.url, body, headers)
            except httpx.RequestError as e:
                error = ProviderError(f"Webhook {subscription.url} unreachable: {e}", provider="webhook")
                retryable = True
            else:
                if 200 <= response.status_code < 300:
                    return {
                        "subscription_id": subscription.id,
                        "url": subscription.url,
                        "status_code": response.status_code,
                        "attempts": attempt,
                    }
                error = ProviderError(
                    f"Webhook {subscription.url} returned {response.status_code}",
                    provider="webhook",
                    status_code=response.status_code,
                )
                retryable = response.status_code >= 500 or response.status_code in RETRYABLE_STATUS_CODES

            if not retryable or attempt == self.max_retries:
                raise error

            delay = self.retry_delay_ms * (2 ** (attempt - 1))
            logger.warning(f"{error}; retry {attempt}/{self.max_retries - 1} in {delay}ms")
            await self.sleep(delay / 1000)

    async def send(
        self,
        user: RecipientUser,
        content: NotificationContent,
        notification: Notification,
    ) -> ProviderResult:
        tenant_id = notification.tenant_id or user.tenant_id
        subscriptions = await self.subscriptions_for(user, tenant_id)
        if not subscriptions:
            raise ValidationError("No webhook URLs configured")

        payload = self.build_payload(user, content, notification, tenant_id)
        body = json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")
        delivery_id = str(uuid.uuid4())

        results = await asyncio.gather(
            *[
                self.deliver(subscription, body, self.build_headers(subscription, body, delivery_id))
                for subscription in subscriptions
            ],
            return_exceptions=True,
        )

        delivered = [r for r in results if not isinstance(r, BaseException)]
        errors = [
            (subscription.url, r)
            for subscription, r in zip(subscriptions, results)
            if isinstance(r, BaseException)
        ]
        for url, error in errors:
            logger.error(f"Webhook delivery to {url} failed: {error}")

        if not delivered:
            raise ExhaustionError(
                f"All {len(subscriptions)} webhook deliveries failed",
                last_error=errors[-1][1],
                errors=errors,
            )

        return ProviderResult(
            provider="webhook",
            message_id=delivery_id,
            status=DeliveryStatus.SENT,
            raw={
                "delivered": delivered,
                "failed": [{"url": url, "error": str(error)} for url, error in errors],
            },
        )
