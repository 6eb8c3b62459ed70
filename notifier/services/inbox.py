"""
Per-user notification inbox
Backs in-app retrieval, pending replay on reconnect and unread counts
"""

from typing import Iterable, List
from datetime import datetime, timezone
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import async_sessionmaker
import logging

from notifier.models.notification import Notification, UserNotification
from notifier.schemas.notification import InboxItem

logger = logging.getLogger(__name__)

class InboxService:
    """Read and unread state of notifications per recipient"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def create_entries(self, notification_id: str, user_ids: Iterable[str]) -> int:
        """Create inbox entries, skipping users who already have one"""
        user_ids = list(dict.fromkeys(user_ids))
        async with self.session_factory() as session:
            result = await session.execute(
                select(UserNotification.user_id).where(
                    UserNotification.notification_id == notification_id,
                    UserNotification.user_id.in_(user_ids),
                )
            )
            existing = set(result.scalars().all())

            new_ids = [user_id for user_id in user_ids if user_id not in existing]
            session.add_all(
                UserNotification(user_id=user_id, notification_id=notification_id)
                for user_id in new_ids
            )
            await session.commit()
        return len(new_ids)

    async def list_for_user(
        self,
        user_id: str,
        unread_only: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> List[InboxItem]:
        query = (
            select(UserNotification, Notification)
            .join(Notification, Notification.id == UserNotification.notification_id)
            .where(UserNotification.user_id == user_id)
        )
        if unread_only:
            query = query.where(UserNotification.is_read.is_(False))
        query = query.order_by(UserNotification.created_at.desc()).limit(limit).offset(offset)

        async with self.session_factory() as session:
            rows = (await session.execute(query)).all()

        return [
            InboxItem(
                id=entry.id,
                notification_id=notification.id,
                is_read=entry.is_read,
                read_at=entry.read_at,
                title=notification.title,
                message=notification.message,
                type=notification.type,
                category=notification.category,
                priority=notification.priority,
                created_at=entry.created_at,
            )
            for entry, notification in rows
        ]

    async def unread_count(self, user_id: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(UserNotification.id)).where(
                    UserNotification.user_id == user_id,
                    UserNotification.is_read.is_(False),
                )
            )
            return result.scalar_one()

    async def mark_read(self, user_id: str, notification_id: str) -> bool:
        """Mark one entry read; True if it was unread"""
        async with self.session_factory() as session:
            result = await session.execute(
                update(UserNotification)
                .where(
                    UserNotification.user_id == user_id,
                    UserNotification.notification_id == notification_id,
                    UserNotification.is_read.is_(False),
                )
                .values(is_read=True, read_at=datetime.now(timezone.utc))
            )
            changed = result.rowcount > 0
            if changed:
                await session.execute(
                    update(Notification)
                    .where(Notification.id == notification_id)
                    .values(read_count=Notification.read_count + 1)
                )
            await session.commit()
        return changed

    async def mark_all_read(self, user_id: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(UserNotification.notification_id).where(
                    UserNotification.user_id == user_id,
                    UserNotification.is_read.is_(False),
                )
            )
            notification_ids = list(result.scalars().all())
            if not notification_ids:
                return 0

            await session.execute(
                update(UserNotification)
                .where(
                    UserNotification.user_id == user_id,
                    UserNotification.notification_id.in_(notification_ids),
                )
                .values(is_read=True, read_at=datetime.now(timezone.utc))
            )
            await session.execute(
                update(Notification)
                .where(Notification.id.in_(notification_ids))
                .values(read_count=Notification.read_count + 1)
            )
            await session.commit()

        logger.info(f"Marked {len(notification_ids)} notification(s) read for user {user_id}")
        return len(notification_ids)
