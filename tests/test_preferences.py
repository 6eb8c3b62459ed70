"""Tests for notification preferences: filtering rules, storage and delivery suppression"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
import pytest

from notifier.models.notification import DeliveryChannel, NotificationPriority, NotificationStatus
from notifier.schemas.notification import NotificationCreate
from notifier.schemas.preference import PreferenceRead, PreferenceUpdate
from notifier.services.delivery_status import DeliveryStatusStore
from notifier.services.inbox import InboxService
from notifier.services.notification_dispatcher import ChannelRouter
from notifier.services.notification_service import NotificationService
from notifier.services.preferences import PreferenceStore, allowed_channels, in_quiet_hours
from notifier.services.providers import ProviderResult

from conftest import build_user

ALL_CHANNELS = [
    DeliveryChannel.EMAIL,
    DeliveryChannel.SMS,
    DeliveryChannel.PUSH,
    DeliveryChannel.WEBHOOK,
    DeliveryChannel.IN_APP,
]

# 2026-10-19 is a Monday
MONDAY_NOON = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
MONDAY_LATE = datetime(2026, 10, 19, 23, 0, tzinfo=timezone.utc)
TUESDAY_EARLY = datetime(2026, 10, 20, 6, 59, tzinfo=timezone.utc)

def prefs(**overrides):
    return PreferenceRead(user_id="user-1", **overrides)

def allowed(preferences, priority=NotificationPriority.NORMAL, now=MONDAY_NOON, channels=ALL_CHANNELS):
    return allowed_channels(preferences, channels, "FEE_REMINDER", "FINANCE", priority, now)

class TestQuietHours:
    def test_disabled_by_default(self):
        assert in_quiet_hours(prefs(), MONDAY_LATE) is False

    def test_window_spanning_midnight(self):
        quiet = prefs(quiet_hours_enabled=True, quiet_hours_start="22:00", quiet_hours_end="07:00")

        assert in_quiet_hours(quiet, MONDAY_LATE)
        assert in_quiet_hours(quiet, TUESDAY_EARLY)
        assert not in_quiet_hours(quiet, MONDAY_NOON)

    def test_same_day_window(self):
        quiet = prefs(quiet_hours_enabled=True, quiet_hours_start="11:30", quiet_hours_end="13:00")

        assert in_quiet_hours(quiet, MONDAY_NOON)
        assert not in_quiet_hours(quiet, MONDAY_LATE)

    def test_only_on_selected_days(self):
        weekends = prefs(quiet_hours_enabled=True, quiet_hours_days=["SAT", "SUN"])

        assert not in_quiet_hours(weekends, MONDAY_LATE)

class TestAllowedChannels:
    def test_no_preferences_allows_everything(self):
        assert allowed(None) == ALL_CHANNELS

    def test_globally_disabled(self):
        assert allowed(prefs(is_enabled=False)) == []

    def test_channel_opt_out(self):
        result = allowed(prefs(sms_enabled=False, push_enabled=False))

        assert result == [DeliveryChannel.EMAIL, DeliveryChannel.WEBHOOK, DeliveryChannel.IN_APP]

    def test_type_opt_out_applies_to_that_type_only(self):
        preferences = prefs(type_preferences={"FINANCE": {"FEE_REMINDER": {"email": False, "sms": True}}})

        assert DeliveryChannel.EMAIL not in allowed(preferences)
        assert DeliveryChannel.SMS in allowed(preferences)

        other = allowed_channels(
            preferences, ALL_CHANNELS, "FEE_RECEIPT", "FINANCE", NotificationPriority.NORMAL, MONDAY_NOON
        )
        assert DeliveryChannel.EMAIL in other

    def test_webhook_ignores_user_switches(self):
        preferences = prefs(email_enabled=False, sms_enabled=False, push_enabled=False, in_app_enabled=False)

        assert allowed(preferences) == [DeliveryChannel.WEBHOOK]

    def test_quiet_hours_suppress_normal_priority(self):
        quiet = prefs(quiet_hours_enabled=True)

        assert allowed(quiet, NotificationPriority.HIGH, MONDAY_LATE) == []
        assert allowed(quiet, NotificationPriority.HIGH, MONDAY_NOON) == ALL_CHANNELS

    @pytest.mark.parametrize("priority", [NotificationPriority.CRITICAL, NotificationPriority.URGENT])
    def test_urgent_priorities_bypass_quiet_hours(self, priority):
        quiet = prefs(quiet_hours_enabled=True, sms_enabled=False)

        assert DeliveryChannel.EMAIL in allowed(quiet, priority, MONDAY_LATE)
        # Channel opt-outs still hold
        assert DeliveryChannel.SMS not in allowed(quiet, priority, MONDAY_LATE)

class TestPreferenceStore:
    @pytest.fixture
    def store(self, session_factory):
        return PreferenceStore(session_factory)

    async def test_defaults_without_row(self, store):
        assert await store.get("user-1") is None

        defaults = await store.get_or_default("user-1")
        assert defaults.is_enabled is True
        assert defaults.quiet_hours_days == ["MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN"]

    async def test_partial_update_keeps_other_fields(self, store):
        await store.update("user-1", PreferenceUpdate(email_enabled=False))
        saved = await store.update("user-1", PreferenceUpdate(quiet_hours_enabled=True))

        assert saved.email_enabled is False
        assert saved.quiet_hours_enabled is True
        assert (await store.get("user-1")).email_enabled is False

    async def test_toggle_all_and_channel(self, store):
        await store.toggle_all("user-1", False)
        saved = await store.toggle_channel("user-1", DeliveryChannel.PUSH, False)

        assert saved.is_enabled is False
        assert saved.push_enabled is False
        assert saved.email_enabled is True

    async def test_webhook_channel_has_no_switch(self, store):
        with pytest.raises(ValueError):
            await store.toggle_channel("user-1", DeliveryChannel.WEBHOOK, False)

    async def test_set_quiet_hours(self, store):
        saved = await store.set_quiet_hours("user-1", True, start_time="21:00", days=["FRI", "SAT"])

        assert saved.quiet_hours_enabled is True
        assert saved.quiet_hours_start == "21:00"
        assert saved.quiet_hours_end == "07:00"
        assert saved.quiet_hours_days == ["FRI", "SAT"]

    async def test_type_preferences_are_merged(self, store):
        await store.set_type_preference("user-1", "FINANCE", "FEE_REMINDER", {"email": False})
        await store.set_type_preference("user-1", "FINANCE", "FEE_REMINDER", {"sms": False})
        saved = await store.set_type_preference("user-1", "ACADEMIC", "GRADE_UPDATE", {"push": False})

        assert saved.type_preferences == {
            "FINANCE": {"FEE_REMINDER": {"email": False, "sms": False}},
            "ACADEMIC": {"GRADE_UPDATE": {"push": False}},
        }

    async def test_get_many(self, store):
        await store.toggle_all("user-1", False)
        await store.toggle_all("user-2", True)

        found = await store.get_many(["user-1", "user-2", "user-3"])

        assert set(found) == {"user-1", "user-2"}
        assert found["user-1"].is_enabled is False

    async def test_reset(self, store):
        await store.toggle_all("user-1", False)

        assert await store.reset("user-1") is True
        assert await store.reset("user-1") is False
        assert await store.get("user-1") is None

class TestDeliverySuppression:
    @pytest.fixture
    def email(self):
        adapter = MagicMock()
        adapter.channel = DeliveryChannel.EMAIL
        adapter.recipient_for.side_effect = lambda user: str(user.email)
        adapter.send = AsyncMock(return_value=ProviderResult(provider="sendgrid", message_id="sg-1"))
        return adapter

    @pytest.fixture
    def store(self, session_factory):
        return PreferenceStore(session_factory)

    @pytest.fixture
    def service(self, session_factory, email, store):
        status_store = DeliveryStatusStore(session_factory)
        return NotificationService(
            session_factory,
            ChannelRouter({DeliveryChannel.EMAIL: email}, status_store),
            InboxService(session_factory),
            status_store,
            preferences=store,
        )

    def request(self, **overrides):
        data = {
            "title": "Fee reminder",
            "message": "Term fees are due Friday.",
            "type": "FEE_REMINDER",
            "category": "FINANCE",
            "channels": [DeliveryChannel.EMAIL],
            "recipients": [build_user(), build_user(id="user-2", email="sam@example.com")],
        }
        data.update(overrides)
        return NotificationCreate(**data)

    async def test_opted_out_recipient_is_skipped(self, service, store, email):
        await store.toggle_channel("user-1", DeliveryChannel.EMAIL, False)

        response = await service.submit(self.request())

        assert response.status == NotificationStatus.SENT
        assert response.results["user-1"] == {}
        assert response.results["user-2"]["EMAIL"]["success"] is True
        email.send.assert_awaited_once()
        assert await service.unread_count("user-1") == 0
        assert await service.unread_count("user-2") == 1

    async def test_everyone_opted_out(self, service, store, email):
        await store.toggle_all("user-1", False)
        await store.set_type_preference("user-2", "FINANCE", "FEE_REMINDER", {"email": False})

        response = await service.submit(self.request())

        assert response.status == NotificationStatus.SENT
        assert response.results == {"user-1": {}, "user-2": {}}
        email.send.assert_not_awaited()
        assert await service.deliveries(response.notification_id) == []

    async def test_quiet_hours_hold_back_all_but_urgent(self, service, store, email):
        for user_id in ("user-1", "user-2"):
            # Whole-day window so the outcome does not depend on the current time
            await store.set_quiet_hours(user_id, True, start_time="00:00", end_time="23:59")

        normal = await service.submit(self.request())
        assert normal.results == {"user-1": {}, "user-2": {}}
        email.send.assert_not_awaited()

        critical = await service.submit(self.request(priority=NotificationPriority.CRITICAL))
        assert critical.status == NotificationStatus.SENT
        assert email.send.await_count == 2
