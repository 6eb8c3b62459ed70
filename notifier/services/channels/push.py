"""Push channel adapter and device token registry"""

from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime, timezone
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker
import logging

from notifier.core.exceptions import NoDeviceTokensError, ProviderError, ValidationError
from notifier.models.notification import DeliveryChannel, Notification
from notifier.models.push_notification import DeviceToken
from notifier.schemas.notification import NotificationContent, RecipientUser
from notifier.services.providers import ProviderChain, ProviderResult
from notifier.services.providers.push import PushMessage

logger = logging.getLogger(__name__)

PLATFORMS = ("IOS", "ANDROID", "WEB")

class DeviceTokenStore:
    """Device token persistence"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def register(
        self,
        user_id: str,
        token: str,
        platform: str,
        device_info: Optional[Dict[str, Any]] = None,
    ) -> DeviceToken:
        """Register a token for a user, replacing any previous registration of the same token"""
        platform = platform.upper()
        if platform not in PLATFORMS:
            raise ValidationError(f"Unsupported platform '{platform}'")

        async with self.session_factory() as session:
            result = await session.execute(select(DeviceToken).where(DeviceToken.token == token))
            record = result.scalar_one_or_none()

            # A token moves with the device, e.g. after another user logs in
            if record is None:
                record = DeviceToken(token=token)
                session.add(record)
            record.user_id = user_id
            record.platform = platform
            record.device_info = device_info or {}
            record.is_active = True
            record.last_used_at = datetime.now(timezone.utc)

            await session.commit()
            await session.refresh(record)
            logger.info(f"Registered {platform} device token for user {user_id}")
            return record

    async def unregister(self, token: str, user_id: Optional[str] = None) -> bool:
        conditions = [DeviceToken.token == token]
        if user_id is not None:
            conditions.append(DeviceToken.user_id == user_id)

        async with self.session_factory() as session:
            result = await session.execute(
                update(DeviceToken).where(*conditions).values(is_active=False)
            )
            await session.commit()
        return result.rowcount > 0

    async def active_tokens(self, user_id: str) -> List[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DeviceToken.token).where(
                    DeviceToken.user_id == user_id,
                    DeviceToken.is_active.is_(True),
                )
            )
            return list(result.scalars().all())

    async def deactivate(self, tokens: Iterable[str]) -> int:
        tokens = list(set(tokens))
        if not tokens:
            return 0

        async with self.session_factory() as session:
            result = await session.execute(
                update(DeviceToken).where(DeviceToken.token.in_(tokens)).values(is_active=False)
            )
            await session.commit()

        logger.info(f"Deactivated {result.rowcount} invalid device token(s)")
        return result.rowcount

class PushChannel:
    """Sends to every active device of a user via the push provider chain"""

    channel = DeliveryChannel.PUSH

    def __init__(self, chain: ProviderChain, tokens: DeviceTokenStore):
        self.chain = chain
        self.tokens = tokens

    def recipient_for(self, user: RecipientUser) -> str:
        return user.id

    # Registry operations exposed to the API layer
    async def register_device_token(self, user_id: str, token: str, platform: str, device_info=None) -> DeviceToken:
        return await self.tokens.register(user_id, token, platform, device_info)

    async def unregister_device_token(self, token: str, user_id: Optional[str] = None) -> bool:
        return await self.tokens.unregister(token, user_id)

    @staticmethod
    def build_data(content: NotificationContent, notification: Notification) -> Dict[str, str]:
        # FCM data payloads only carry string values
        data = {key: str(value) for key, value in content.data.items() if value is not None}
        data.update({
            "notification_id": notification.id,
            "type": notification.type,
            "category": notification.category,
        })
        if content.action_url:
            data["action_url"] = content.action_url
        return data

    async def send(
        self,
        user: RecipientUser,
        content: NotificationContent,
        notification: Notification,
    ) -> ProviderResult:
        device_tokens = await self.tokens.active_tokens(user.id)
        if not device_tokens:
            raise NoDeviceTokensError(user.id)

        message = PushMessage(
            tokens=device_tokens,
            title=content.push_title or content.title,
            body=content.push_body or content.message,
            data=self.build_data(content, notification),
            priority=notification.priority,
            category=notification.category,
            image_url=content.image_url,
            notification_id=notification.id,
        )

        invalid_tokens: List[str] = []

        async def collect_invalid(provider: str, error: Exception) -> None:
            if isinstance(error, ProviderError):
                invalid_tokens.extend(error.invalid_tokens)

        try:
            result = await self.chain.send(message, on_error=collect_invalid)
            invalid_tokens.extend(result.invalid_tokens)
            return result
        finally:
            if invalid_tokens:
                await self.tokens.deactivate(invalid_tokens)
