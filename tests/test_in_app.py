"""Tests for the in-app channel, connection registry and inbox"""

from unittest.mock import AsyncMock
import pytest

from notifier.models.delivery_log import DeliveryStatus
from notifier.services.channels import ConnectionRegistry, InAppChannel
from notifier.services.channels.in_app import build_actions
from notifier.services.inbox import InboxService
from notifier.services.notification_dispatcher import ChannelRouter

from conftest import build_notification

class FakeSocket:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.send_json = AsyncMock(side_effect=self._record if not fail else RuntimeError("closed"))

    async def _record(self, message):
        self.sent.append(message)

    def of_type(self, message_type):
        return [m for m in self.sent if m["type"] == message_type]

@pytest.fixture
def inbox(session_factory):
    return InboxService(session_factory)

@pytest.fixture
def channel(inbox):
    return InAppChannel(ConnectionRegistry(), inbox, replay_limit=10)

class TestInAppChannel:
    async def test_offline_user_is_stored_then_replayed(self, channel, inbox, user, saved_notification):
        notification = await saved_notification(channels=["IN_APP"])
        await inbox.create_entries(notification.id, [user.id])

        result = await channel.send(user, ChannelRouter.content_for(notification), notification)

        assert result.status == DeliveryStatus.PENDING
        assert result.raw == {"status": "stored"}

        socket = FakeSocket()
        await channel.connect(user.id, socket)

        assert socket.sent[0]["type"] == "connection"
        pending = socket.of_type("pending_notifications")[0]["data"]
        assert [item["notification_id"] for item in pending] == [notification.id]
        assert socket.of_type("unread_count")[-1]["count"] == 1

    async def test_online_user_receives_notification(self, channel, inbox, user, saved_notification):
        notification = await saved_notification(channels=["IN_APP"])
        socket = FakeSocket()
        await channel.connect(user.id, socket)
        await inbox.create_entries(notification.id, [user.id])

        result = await channel.send(user, ChannelRouter.content_for(notification), notification)

        assert result.status == DeliveryStatus.SENT
        delivered = socket.of_type("notification")[0]["data"]
        assert delivered["id"] == notification.id
        assert delivered["actions"][0] == {"label": "View Grade", "action": "navigate", "url": "/grades/g-42"}
        assert socket.of_type("unread_count")[-1]["count"] == 1

    async def test_every_device_gets_the_message(self, channel, user, notification):
        phone, laptop = FakeSocket(), FakeSocket()
        await channel.connect(user.id, phone)
        await channel.connect(user.id, laptop)

        result = await channel.send(user, ChannelRouter.content_for(notification), notification)

        assert result.raw["connections"] == 2
        assert phone.of_type("notification") and laptop.of_type("notification")

    async def test_failing_connection_is_pruned(self, channel, user, notification):
        channel.registry.add(user.id, FakeSocket(fail=True))

        result = await channel.send(user, ChannelRouter.content_for(notification), notification)

        assert result.status == DeliveryStatus.PENDING
        assert not channel.registry.is_online(user.id)

    async def test_disconnect(self, channel, user):
        socket = FakeSocket()
        await channel.connect(user.id, socket)

        channel.disconnect(user.id, socket)

        assert not channel.registry.is_online(user.id)
        assert channel.registry.online_users == 0

    async def test_mark_read_pushes_new_count(self, channel, inbox, user, saved_notification):
        notification = await saved_notification()
        await inbox.create_entries(notification.id, [user.id])
        socket = FakeSocket()
        await channel.connect(user.id, socket)

        assert await channel.mark_read(user.id, notification.id) is True
        assert await channel.mark_read(user.id, notification.id) is False
        assert socket.of_type("unread_count")[-1]["count"] == 0

    def test_actions_by_type(self):
        fee = build_notification(type="FEE_REMINDER")
        other = build_notification(type="GENERAL")

        assert build_actions(fee)[0]["url"] == "/payments"
        assert build_actions(other) == [{"label": "Mark as Read", "action": "mark_read"}]

class TestInbox:
    async def test_entries_are_not_duplicated(self, inbox, saved_notification):
        notification = await saved_notification()

        assert await inbox.create_entries(notification.id, ["u1", "u2", "u1"]) == 2
        assert await inbox.create_entries(notification.id, ["u1", "u3"]) == 1

    async def test_unread_filter_and_mark_all(self, inbox, saved_notification):
        first = await saved_notification(id="n-1")
        second = await saved_notification(id="n-2")
        await inbox.create_entries(first.id, ["u1"])
        await inbox.create_entries(second.id, ["u1"])
        await inbox.mark_read("u1", first.id)

        unread = await inbox.list_for_user("u1", unread_only=True)
        assert [item.notification_id for item in unread] == ["n-2"]
        assert await inbox.unread_count("u1") == 1

        assert await inbox.mark_all_read("u1") == 1
        assert await inbox.unread_count("u1") == 0
        assert len(await inbox.list_for_user("u1")) == 2
