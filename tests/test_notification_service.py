"""Tests for notification submission, queued processing and cancellation"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy import select
import pytest

from notifier.core.exceptions import ExhaustionError
from notifier.models.delivery_log import DeliveryStatus
from notifier.models.notification import DeliveryChannel, Notification, NotificationPriority, NotificationStatus
from notifier.schemas.notification import NotificationCreate
from notifier.services.delivery_status import DeliveryStatusStore
from notifier.services.inbox import InboxService
from notifier.services.job_queue import Job, JobQueue
from notifier.services.notification_dispatcher import ChannelRouter
from notifier.services.notification_service import NotificationService
from notifier.services.providers import ProviderResult

from conftest import build_user

QUEUE = "notifications"

class FakeClock:
    def __init__(self, now: int = 1_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

def email_channel(error=None):
    adapter = MagicMock()
    adapter.channel = DeliveryChannel.EMAIL
    adapter.recipient_for.side_effect = lambda user: str(user.email)
    adapter.send = AsyncMock(
        return_value=ProviderResult(provider="sendgrid", message_id="sg-1"),
        side_effect=error,
    )
    return adapter

@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def job_queue(redis_client, clock):
    return JobQueue(redis_client, backoff_base_ms=1000, clock=clock)

@pytest.fixture
def email():
    return email_channel()

@pytest.fixture
def service(session_factory, job_queue, email):
    status_store = DeliveryStatusStore(session_factory)
    inbox = InboxService(session_factory)
    router = ChannelRouter({DeliveryChannel.EMAIL: email}, status_store)
    return NotificationService(
        session_factory, router, inbox, status_store, job_queue=job_queue, queue_name=QUEUE, max_attempts=2
    )

def request(**overrides):
    data = {
        "tenant_id": "tenant-1",
        "title": "Fee reminder",
        "message": "Term fees are due Friday.",
        "type": "FEE_REMINDER",
        "channels": [DeliveryChannel.EMAIL],
        "recipients": [build_user(), build_user(id="user-2", email="sam@example.com")],
    }
    data.update(overrides)
    return NotificationCreate(**data)

class TestSubmit:
    async def test_immediate_delivery(self, service, email):
        response = await service.submit(request())

        assert response.status == NotificationStatus.SENT
        assert set(response.results) == {"user-1", "user-2"}
        assert response.results["user-1"]["EMAIL"]["success"] is True
        assert email.send.await_count == 2

        notification = await service.get(response.notification_id)
        assert notification.status == NotificationStatus.SENT
        assert notification.sent_at is not None

        logs = await service.deliveries(response.notification_id)
        assert {log.recipient for log in logs} == {"jane@example.com", "sam@example.com"}
        assert all(log.status == DeliveryStatus.SENT for log in logs)
        assert await service.unread_count("user-1") == 1

    async def test_all_channels_failing_marks_failed(self, session_factory, job_queue):
        status_store = DeliveryStatusStore(session_factory)
        router = ChannelRouter({DeliveryChannel.EMAIL: email_channel(error=ExhaustionError("down"))}, status_store)
        service = NotificationService(session_factory, router, InboxService(session_factory), status_store, job_queue)

        response = await service.submit(request())

        assert response.status == NotificationStatus.FAILED
        assert response.results["user-1"]["EMAIL"]["error"] == "down"

    async def test_deferred_goes_through_queue(self, service, job_queue, email):
        response = await service.submit(request(defer=True))

        assert response.status == NotificationStatus.SCHEDULED
        assert response.job_id
        email.send.assert_not_awaited()

        notification = await service.get(response.notification_id)
        assert notification.job_id == response.job_id

        job = await job_queue.process_next(QUEUE, service.handle_job)

        assert job.id == response.job_id
        assert email.send.await_count == 2
        assert (await service.get(response.notification_id)).status == NotificationStatus.SENT

    async def test_future_schedule_is_delayed(self, service, job_queue, redis_client, clock):
        scheduled_at = datetime.now(timezone.utc) + timedelta(hours=1)

        response = await service.submit(request(scheduled_at=scheduled_at))

        score = await redis_client.zscore(JobQueue.queue_key(QUEUE), response.job_id)
        assert 3_500_000 < score - clock.now <= 3_600_000
        assert await job_queue.claim(QUEUE) is None

    async def test_priority_moves_job_earlier(self, service, redis_client, clock):
        response = await service.submit(request(defer=True, priority=NotificationPriority.CRITICAL))

        score = await redis_client.zscore(JobQueue.queue_key(QUEUE), response.job_id)
        assert score == clock.now - 60_000

    async def test_queued_without_job_queue(self, session_factory, email):
        status_store = DeliveryStatusStore(session_factory)
        service = NotificationService(
            session_factory,
            ChannelRouter({DeliveryChannel.EMAIL: email}, status_store),
            InboxService(session_factory),
            status_store,
        )

        with pytest.raises(RuntimeError):
            await service.submit(request(defer=True))

class TestQueuedProcessing:
    async def test_non_final_failure_is_retried_by_queue(self, session_factory, job_queue, clock):
        flaky = email_channel()
        flaky.send.side_effect = [
            ExhaustionError("down"),
            ExhaustionError("down"),
            ProviderResult(provider="smtp", message_id="m1"),
            ProviderResult(provider="smtp", message_id="m2"),
        ]
        status_store = DeliveryStatusStore(session_factory)
        service = NotificationService(
            session_factory,
            ChannelRouter({DeliveryChannel.EMAIL: flaky}, status_store),
            InboxService(session_factory),
            status_store,
            job_queue=job_queue,
            queue_name=QUEUE,
            max_attempts=3,
        )
        response = await service.submit(request(defer=True))

        job = await job_queue.process_next(QUEUE, service.handle_job)
        assert job.attempts == 1
        assert (await service.get(response.notification_id)).status == NotificationStatus.SCHEDULED

        clock.now += job_queue.retry_delay(1)
        await job_queue.process_next(QUEUE, service.handle_job)

        notification = await service.get(response.notification_id)
        assert notification.status == NotificationStatus.SENT
        logs = await service.deliveries(response.notification_id)
        assert all(log.attempts == 2 for log in logs)

    async def test_single_attempt_failure_is_dead_lettered(self, session_factory, job_queue, clock):
        status_store = DeliveryStatusStore(session_factory)
        service = NotificationService(
            session_factory,
            ChannelRouter({DeliveryChannel.EMAIL: email_channel(error=ExhaustionError("down"))}, status_store),
            InboxService(session_factory),
            status_store,
            job_queue=job_queue,
            queue_name=QUEUE,
            max_attempts=1,
        )
        job_queue.on_dead_letter = service.handle_dead_letter
        response = await service.submit(request(defer=True))

        await job_queue.process_next(QUEUE, service.handle_job)

        assert (await service.get(response.notification_id)).status == NotificationStatus.FAILED
        assert await job_queue.dead_letter_count(QUEUE) == 1

    async def test_every_attempt_failing_dead_letters_once(self, session_factory, job_queue, clock):
        failing = email_channel(error=ExhaustionError("down"))
        status_store = DeliveryStatusStore(session_factory)
        service = NotificationService(
            session_factory,
            ChannelRouter({DeliveryChannel.EMAIL: failing}, status_store),
            InboxService(session_factory),
            status_store,
            job_queue=job_queue,
            queue_name=QUEUE,
            max_attempts=3,
        )
        job_queue.on_dead_letter = service.handle_dead_letter
        response = await service.submit(request(defer=True))

        for attempt in range(3):
            job = await job_queue.process_next(QUEUE, service.handle_job)
            assert job.attempts == attempt + 1
            clock.now += job_queue.retry_delay(job.attempts)

        assert await job_queue.process_next(QUEUE, service.handle_job) is None
        assert failing.send.await_count == 6
        assert await job_queue.dead_letter_count(QUEUE) == 1
        assert (await service.get(response.notification_id)).status == NotificationStatus.FAILED

    async def test_error_after_sending_returns_notification_to_queue(self, session_factory, job_queue, clock):
        status_store = DeliveryStatusStore(session_factory)
        record = status_store.record
        calls = []

        async def flaky_record(**kwargs):
            calls.append(kwargs)
            if len(calls) == 1:
                raise RuntimeError("db blip")
            return await record(**kwargs)

        status_store.record = flaky_record
        email = email_channel()
        service = NotificationService(
            session_factory,
            ChannelRouter({DeliveryChannel.EMAIL: email}, status_store),
            InboxService(session_factory),
            status_store,
            job_queue=job_queue,
            queue_name=QUEUE,
            max_attempts=3,
        )
        response = await service.submit(request(defer=True))

        job = await job_queue.process_next(QUEUE, service.handle_job)

        assert job.attempts == 1
        assert job.last_error == "db blip"
        assert (await service.get(response.notification_id)).status == NotificationStatus.SCHEDULED

        clock.now += job_queue.retry_delay(1)
        await job_queue.process_next(QUEUE, service.handle_job)

        assert (await service.get(response.notification_id)).status == NotificationStatus.SENT
        assert email.send.await_count == 3

    async def test_error_during_direct_processing_marks_failed(self, session_factory):
        status_store = DeliveryStatusStore(session_factory)
        status_store.record = AsyncMock(side_effect=RuntimeError("db blip"))
        service = NotificationService(
            session_factory,
            ChannelRouter({DeliveryChannel.EMAIL: email_channel()}, status_store),
            InboxService(session_factory),
            status_store,
        )

        with pytest.raises(RuntimeError):
            await service.submit(request())

        async with session_factory() as session:
            notification = (await session.execute(select(Notification))).scalar_one()
        assert notification.status == NotificationStatus.FAILED

    async def test_dead_letter_marks_notification_failed(self, service):
        response = await service.submit(request(defer=True))
        job = Job(id=response.job_id, queue=QUEUE, payload={"notification_id": response.notification_id})

        await service.handle_dead_letter(job)

        assert (await service.get(response.notification_id)).status == NotificationStatus.FAILED

    async def test_job_without_notification_id_is_ignored(self, service, email):
        await service.handle_job(Job(id="job:x", queue=QUEUE, payload={}))

        email.send.assert_not_awaited()

class TestCancel:
    async def test_cancel_scheduled(self, service, job_queue, email):
        response = await service.submit(request(defer=True))

        assert await service.cancel(response.notification_id) is True
        await job_queue.process_next(QUEUE, service.handle_job)

        email.send.assert_not_awaited()
        assert (await service.get(response.notification_id)).status == NotificationStatus.CANCELLED

    async def test_cannot_cancel_sent(self, service):
        response = await service.submit(request())

        assert await service.cancel(response.notification_id) is False

    async def test_cancel_unknown(self, service):
        assert await service.cancel("missing") is False

class TestInboxOperations:
    async def test_mark_read_and_list(self, service):
        response = await service.submit(request())

        items = await service.list_for_user("user-1")
        assert [item.notification_id for item in items] == [response.notification_id]

        assert await service.mark_read("user-1", response.notification_id) is True
        assert await service.unread_count("user-1") == 0
        assert (await service.get(response.notification_id)).read_count == 1

        assert await service.mark_all_read("user-2") == 1
