"""
Delivery status store
Durable record of every delivery attempt per (notification, channel, recipient).
Writes are upserts and status changes are "update matching rows", so replayed
provider callbacks never create duplicates.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import logging

from notifier.models.delivery_log import DeliveryLog, DeliveryStatus, FAILURE_STATUSES
from notifier.models.notification import DeliveryChannel

logger = logging.getLogger(__name__)

# In-flight statuses never overwrite a final one
IN_FLIGHT_STATUSES = (DeliveryStatus.PENDING, DeliveryStatus.SENT)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class DeliveryStatusStore:
    """Persists and reconciles DeliveryLog rows"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def record(
        self,
        notification_id: str,
        channel: DeliveryChannel,
        recipient: str,
        status: DeliveryStatus,
        provider: Optional[str] = None,
        message_id: Optional[str] = None,
        response: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> DeliveryLog:
        """Write the outcome of a send attempt (insert, or update on repeat)"""
        values = dict(
            status=status,
            provider=provider,
            message_id=message_id,
            response=response,
            error=error,
        )

        async with self.session_factory() as session:
            log = await self._find(session, notification_id, channel, recipient)
            if log is None:
                log = DeliveryLog(
                    notification_id=notification_id,
                    channel=channel,
                    recipient=recipient,
                    attempts=1,
                    **values,
                )
                self._stamp(log, status)
                session.add(log)
                try:
                    await session.commit()
                    return log
                except IntegrityError:
                    # Concurrent writer inserted the same target first
                    await session.rollback()
                    log = await self._find(session, notification_id, channel, recipient)

            for key, value in values.items():
                setattr(log, key, value)
            log.attempts = (log.attempts or 0) + 1
            self._stamp(log, status)
            await session.commit()
            return log

    @staticmethod
    async def _find(
        session: AsyncSession,
        notification_id: str,
        channel: DeliveryChannel,
        recipient: str,
    ) -> Optional[DeliveryLog]:
        result = await session.execute(
            select(DeliveryLog).where(
                DeliveryLog.notification_id == notification_id,
                DeliveryLog.channel == channel,
                DeliveryLog.recipient == recipient,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _stamp(log: DeliveryLog, status: DeliveryStatus) -> None:
        now = utcnow()
        if status == DeliveryStatus.SENT and log.sent_at is None:
            log.sent_at = now
        elif status == DeliveryStatus.DELIVERED and log.delivered_at is None:
            log.delivered_at = now
        elif status in FAILURE_STATUSES and log.failed_at is None:
            log.failed_at = now

    def _status_values(self, status: DeliveryStatus, response: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        values: Dict[str, Any] = {"status": status, "updated_at": utcnow()}
        if response is not None:
            values["response"] = response
        if status == DeliveryStatus.DELIVERED:
            values["delivered_at"] = func.coalesce(DeliveryLog.delivered_at, utcnow())
        elif status in FAILURE_STATUSES:
            values["failed_at"] = func.coalesce(DeliveryLog.failed_at, utcnow())
        return values

    async def update_status(
        self,
        notification_id: str,
        status: DeliveryStatus,
        channel: Optional[DeliveryChannel] = None,
        recipient: Optional[str] = None,
        response: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Apply a reconciled status to every matching row

        Returns the number of rows updated. Safe to replay.
        """
        conditions = [DeliveryLog.notification_id == notification_id]
        if channel is not None:
            conditions.append(DeliveryLog.channel == channel)
        if recipient is not None:
            conditions.append(DeliveryLog.recipient == recipient)
        if status in IN_FLIGHT_STATUSES:
            conditions.append(DeliveryLog.status.in_(IN_FLIGHT_STATUSES))

        async with self.session_factory() as session:
            result = await session.execute(
                update(DeliveryLog)
                .where(*conditions)
                .values(**self._status_values(status, response))
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        logger.info(
            f"Delivery status {status.value} applied to {result.rowcount} row(s) "
            f"for notification {notification_id}"
        )
        return result.rowcount

    async def update_status_by_message_id(
        self,
        message_id: str,
        status: DeliveryStatus,
        response: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Same as update_status, correlated by the provider's message id"""
        conditions = [DeliveryLog.message_id == message_id]
        if status in IN_FLIGHT_STATUSES:
            conditions.append(DeliveryLog.status.in_(IN_FLIGHT_STATUSES))

        async with self.session_factory() as session:
            result = await session.execute(
                update(DeliveryLog)
                .where(*conditions)
                .values(**self._status_values(status, response))
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return result.rowcount

    async def for_notification(self, notification_id: str) -> List[DeliveryLog]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DeliveryLog)
                .where(DeliveryLog.notification_id == notification_id)
                .order_by(DeliveryLog.channel, DeliveryLog.recipient)
            )
            return list(result.scalars().all())
