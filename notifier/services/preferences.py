"""
Notification preferences
Users opt out of channels, per notification type, or entirely, and may set
quiet hours. A user with no stored preferences receives everything.
"""

from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker
import logging

from notifier.models.notification import DeliveryChannel, NotificationPriority
from notifier.models.preference import NotificationPreference, WEEKDAYS
from notifier.schemas.preference import PreferenceRead, PreferenceUpdate

logger = logging.getLogger(__name__)

# Priorities delivered even during quiet hours
QUIET_HOURS_BYPASS = (NotificationPriority.CRITICAL, NotificationPriority.URGENT)

# Channel -> (global flag, key inside type_preferences)
CHANNEL_FLAGS = {
    DeliveryChannel.EMAIL: ("email_enabled", "email"),
    DeliveryChannel.SMS: ("sms_enabled", "sms"),
    DeliveryChannel.PUSH: ("push_enabled", "push"),
    DeliveryChannel.IN_APP: ("in_app_enabled", "in_app"),
}

def _minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)

def in_quiet_hours(prefs: PreferenceRead, now: datetime) -> bool:
    """Whether `now` (UTC) falls in the user's quiet hours; windows may span midnight"""
    if not prefs.quiet_hours_enabled:
        return False
    if WEEKDAYS[now.weekday()] not in prefs.quiet_hours_days:
        return False

    current = now.hour * 60 + now.minute
    start = _minutes(prefs.quiet_hours_start)
    end = _minutes(prefs.quiet_hours_end)
    if start <= end:
        return start <= current <= end
    return current >= start or current <= end

def allowed_channels(
    prefs: Optional[PreferenceRead],
    channels: Iterable[DeliveryChannel],
    notification_type: str,
    category: str,
    priority: NotificationPriority,
    now: datetime,
) -> List[DeliveryChannel]:
    """Subset of `channels` the user accepts for this notification right now"""
    channels = list(channels)
    if prefs is None:
        return channels
    if not prefs.is_enabled:
        return []
    if in_quiet_hours(prefs, now) and priority not in QUIET_HOURS_BYPASS:
        return []

    type_prefs = prefs.type_preferences.get(category, {}).get(notification_type, {})
    allowed = []
    for channel in channels:
        flags = CHANNEL_FLAGS.get(channel)
        # Webhooks are owned by subscriptions, not user preferences
        if flags is None:
            allowed.append(channel)
            continue
        field, key = flags
        if getattr(prefs, field) and type_prefs.get(key) is not False:
            allowed.append(channel)
    return allowed

class PreferenceStore:
    """Persistence for NotificationPreference rows"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def get(self, user_id: str) -> Optional[PreferenceRead]:
        async with self.session_factory() as session:
            row = await self._find(session, user_id)
            return PreferenceRead.model_validate(row) if row else None

    async def get_or_default(self, user_id: str) -> PreferenceRead:
        return await self.get(user_id) or PreferenceRead(user_id=user_id)

    async def get_many(self, user_ids: Iterable[str]) -> Dict[str, PreferenceRead]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationPreference).where(NotificationPreference.user_id.in_(list(user_ids)))
            )
            return {row.user_id: PreferenceRead.model_validate(row) for row in result.scalars().all()}

    async def update(self, user_id: str, updates: PreferenceUpdate) -> PreferenceRead:
        """Upsert the given fields, leaving the rest untouched"""
        values = updates.model_dump(exclude_none=True)
        async with self.session_factory() as session:
            row = await self._find(session, user_id)
            if row is None:
                row = NotificationPreference(user_id=user_id)
                session.add(row)
            for field, value in values.items():
                setattr(row, field, value)
            await session.commit()
            await session.refresh(row)
            saved = PreferenceRead.model_validate(row)

        logger.info(f"Updated notification preferences for user {user_id}: {sorted(values)}")
        return saved

    async def toggle_all(self, user_id: str, enabled: bool) -> PreferenceRead:
        return await self.update(user_id, PreferenceUpdate(is_enabled=enabled))

    async def toggle_channel(self, user_id: str, channel: DeliveryChannel, enabled: bool) -> PreferenceRead:
        if channel not in CHANNEL_FLAGS:
            raise ValueError(f"Channel {channel.value} has no user preference")
        field, _ = CHANNEL_FLAGS[channel]
        return await self.update(user_id, PreferenceUpdate(**{field: enabled}))

    async def set_quiet_hours(
        self,
        user_id: str,
        enabled: bool,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        days: Optional[List[str]] = None,
    ) -> PreferenceRead:
        return await self.update(user_id, PreferenceUpdate(
            quiet_hours_enabled=enabled,
            quiet_hours_start=start_time,
            quiet_hours_end=end_time,
            quiet_hours_days=days,
        ))

    async def set_type_preference(
        self,
        user_id: str,
        category: str,
        notification_type: str,
        channels: Dict[str, bool],
    ) -> PreferenceRead:
        """Merge channel flags for one category/type pair"""
        current = await self.get_or_default(user_id)
        merged: Dict[str, Any] = {k: {t: dict(v) for t, v in types.items()} for k, types in current.type_preferences.items()}
        merged.setdefault(category, {}).setdefault(notification_type, {}).update(channels)
        return await self.update(user_id, PreferenceUpdate(type_preferences=merged))

    async def reset(self, user_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(NotificationPreference).where(NotificationPreference.user_id == user_id)
            )
            await session.commit()
        return result.rowcount > 0

    @staticmethod
    async def _find(session, user_id: str) -> Optional[NotificationPreference]:
        result = await session.execute(
            select(NotificationPreference).where(NotificationPreference.user_id == user_id)
        )
        return result.scalar_one_or_none()
