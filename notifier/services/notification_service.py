"""
Notification service
Entry point for collaborators: submit notifications, process them directly or
through the job queue, cancel scheduled ones and query inbox state.
"""

from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import async_sessionmaker
import logging

from notifier.core.exceptions import ExhaustionError
from notifier.models.delivery_log import DeliveryLog
from notifier.models.notification import (
    DeliveryChannel,
    Notification,
    NotificationPriority,
    NotificationStatus,
    PRIORITY_WEIGHTS,
)
from notifier.schemas.notification import (
    DispatchResponse,
    InboxItem,
    NotificationCreate,
    RecipientUser,
)
from notifier.services.channels.in_app import InAppChannel
from notifier.services.delivery_status import DeliveryStatusStore
from notifier.services.inbox import InboxService
from notifier.services.job_queue import Job, JobQueue
from notifier.services.notification_dispatcher import ChannelOutcome, ChannelRouter
from notifier.services.preferences import PreferenceStore, allowed_channels

logger = logging.getLogger(__name__)

PROCESSABLE_STATUSES = (NotificationStatus.PENDING, NotificationStatus.SCHEDULED)

def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

class NotificationService:
    """Submission, processing and inbox operations"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        router: ChannelRouter,
        inbox: InboxService,
        status_store: DeliveryStatusStore,
        job_queue: Optional[JobQueue] = None,
        in_app: Optional[InAppChannel] = None,
        preferences: Optional[PreferenceStore] = None,
        queue_name: str = "notifications",
        max_attempts: int = 3,
    ):
        self.session_factory = session_factory
        self.router = router
        self.inbox = inbox
        self.status_store = status_store
        self.job_queue = job_queue
        self.in_app = in_app
        self.preferences = preferences
        self.queue_name = queue_name
        self.max_attempts = max_attempts

    async def submit(self, data: NotificationCreate) -> DispatchResponse:
        """
        Persist a notification and deliver it

        Scheduled (future scheduled_at) and deferred notifications go through
        the job queue; everything else is processed immediately.
        """
        now = datetime.now(timezone.utc)
        scheduled_at = _as_utc(data.scheduled_at) if data.scheduled_at else None
        queued = data.defer or (scheduled_at is not None and scheduled_at > now)

        if queued and self.job_queue is None:
            raise RuntimeError("Job queue is not configured; cannot schedule notifications")

        notification = Notification(
            tenant_id=data.tenant_id,
            created_by=data.created_by,
            title=data.title,
            message=data.message,
            type=data.type,
            category=data.category,
            priority=data.priority,
            channels=[channel.value for channel in data.channels],
            content=data.content,
            recipients=[recipient.model_dump(mode="json") for recipient in data.recipients],
            notification_metadata=data.metadata,
            status=NotificationStatus.SCHEDULED if queued else NotificationStatus.PENDING,
            scheduled_at=scheduled_at,
        )
        async with self.session_factory() as session:
            session.add(notification)
            await session.commit()

        logger.info(
            f"Notification {notification.id} created for {len(data.recipients)} recipient(s) "
            f"on {notification.channels}"
        )

        if not queued:
            return await self.process(notification.id)

        delay = int((scheduled_at - now).total_seconds() * 1000) if scheduled_at else 0
        job_id = await self.job_queue.enqueue(
            self.queue_name,
            {"notification_id": notification.id},
            delay=max(0, delay),
            priority=PRIORITY_WEIGHTS[data.priority],
            max_attempts=self.max_attempts,
        )
        async with self.session_factory() as session:
            stored = await session.get(Notification, notification.id)
            stored.job_id = job_id
            await session.commit()

        return DispatchResponse(
            notification_id=notification.id,
            status=NotificationStatus.SCHEDULED,
            job_id=job_id,
        )

    async def process(self, notification_id: str, retry_on_failure: bool = False) -> Optional[DispatchResponse]:
        """
        Deliver a pending or scheduled notification to all recipients

        Args:
            notification_id: Notification to deliver
            retry_on_failure: Queued processing. When nothing could be delivered
                the notification returns to SCHEDULED and ExhaustionError is
                raised so the job queue retries it and eventually dead-letters it.
                Otherwise the notification is marked FAILED.
        """
        async with self.session_factory() as session:
            notification = await session.get(Notification, notification_id)
            if notification is None:
                logger.warning(f"Notification {notification_id} not found, nothing to process")
                return None
            if notification.status not in PROCESSABLE_STATUSES:
                logger.info(f"Notification {notification_id} is {notification.status.value}, skipping")
                return None

            notification.status = NotificationStatus.SENDING
            await session.commit()

        try:
            results, outcomes = await self._deliver(notification)
        except Exception:
            # Never leave the notification in SENDING; a queued retry must find it processable
            await self._set_status(
                notification_id,
                NotificationStatus.SCHEDULED if retry_on_failure else NotificationStatus.FAILED,
            )
            logger.exception(f"Processing of notification {notification_id} aborted")
            raise

        if outcomes:
            status = ChannelRouter.aggregate_status(outcomes)
        else:
            # Every recipient opted out, nothing left to deliver
            status = NotificationStatus.SENT

        if status == NotificationStatus.FAILED and retry_on_failure:
            await self._set_status(notification_id, NotificationStatus.SCHEDULED)
            raise ExhaustionError(f"No channel delivered notification {notification_id}")

        await self._set_status(notification_id, status)
        logger.info(f"Notification {notification_id} finished with status {status.value}")
        return DispatchResponse(notification_id=notification_id, status=status, results=results)

    async def _deliver(self, notification: Notification) -> Tuple[Dict[str, Dict[str, Any]], Dict[Any, ChannelOutcome]]:
        recipients = [RecipientUser.model_validate(r) for r in notification.recipients]
        plan = await self._channel_plan(notification, recipients)

        await self.inbox.create_entries(notification.id, [r.id for r in recipients if plan[r.id]])

        content = self.router.content_for(notification)
        results: Dict[str, Dict[str, Any]] = {}
        all_outcomes: Dict[Any, ChannelOutcome] = {}
        for user in recipients:
            if not plan[user.id]:
                logger.info(f"User {user.id} opted out of notification {notification.id}")
                results[user.id] = {}
                continue

            outcomes = await self.router.dispatch(notification, user, content, channels=plan[user.id])
            results[user.id] = {
                channel.value: outcome.model_dump(mode="json") for channel, outcome in outcomes.items()
            }
            all_outcomes.update({(user.id, channel): outcome for channel, outcome in outcomes.items()})

        return results, all_outcomes

    async def _channel_plan(
        self,
        notification: Notification,
        recipients: List[RecipientUser],
    ) -> Dict[str, List[DeliveryChannel]]:
        """Channels each recipient accepts, after preferences and quiet hours"""
        requested = [DeliveryChannel(name) for name in notification.channels]
        if self.preferences is None:
            return {user.id: requested for user in recipients}

        stored = await self.preferences.get_many(user.id for user in recipients)
        now = datetime.now(timezone.utc)
        return {
            user.id: allowed_channels(
                stored.get(user.id),
                requested,
                notification.type,
                notification.category,
                NotificationPriority(notification.priority),
                now,
            )
            for user in recipients
        }

    async def _set_status(self, notification_id: str, status: NotificationStatus) -> None:
        async with self.session_factory() as session:
            stored = await session.get(Notification, notification_id)
            stored.status = status
            if status == NotificationStatus.SENT:
                stored.sent_at = datetime.now(timezone.utc)
            await session.commit()

    async def handle_job(self, job: Job) -> None:
        """Job queue processor for the notifications queue"""
        notification_id = job.payload.get("notification_id")
        if not notification_id:
            logger.error(f"Job {job.id} has no notification_id, ignoring")
            return
        await self.process(notification_id, retry_on_failure=True)

    async def handle_dead_letter(self, job: Job) -> None:
        """A notification job exhausted its attempts: mark the notification failed"""
        notification_id = job.payload.get("notification_id")
        if not notification_id:
            return

        async with self.session_factory() as session:
            notification = await session.get(Notification, notification_id)
            if notification is None or notification.status not in (
                NotificationStatus.SCHEDULED,
                NotificationStatus.SENDING,
            ):
                return
            notification.status = NotificationStatus.FAILED
            await session.commit()

        logger.error(f"Notification {notification_id} failed permanently: {job.last_error}")

    async def cancel(self, notification_id: str) -> bool:
        """Cancel a notification that is still waiting in the job queue"""
        async with self.session_factory() as session:
            notification = await session.get(Notification, notification_id)
            if notification is None or notification.status != NotificationStatus.SCHEDULED:
                return False
            notification.status = NotificationStatus.CANCELLED
            await session.commit()

        logger.info(f"Notification {notification_id} cancelled")
        return True

    async def get(self, notification_id: str) -> Optional[Notification]:
        async with self.session_factory() as session:
            return await session.get(Notification, notification_id)

    async def deliveries(self, notification_id: str) -> List[DeliveryLog]:
        return await self.status_store.for_notification(notification_id)

    # Inbox

    async def list_for_user(self, user_id: str, unread_only: bool = False, limit: int = 20, offset: int = 0) -> List[InboxItem]:
        return await self.inbox.list_for_user(user_id, unread_only=unread_only, limit=limit, offset=offset)

    async def unread_count(self, user_id: str) -> int:
        return await self.inbox.unread_count(user_id)

    async def mark_read(self, user_id: str, notification_id: str) -> bool:
        if self.in_app:
            return await self.in_app.mark_read(user_id, notification_id)
        return await self.inbox.mark_read(user_id, notification_id)

    async def mark_all_read(self, user_id: str) -> int:
        if self.in_app:
            return await self.in_app.mark_all_read(user_id)
        return await self.inbox.mark_all_read(user_id)
