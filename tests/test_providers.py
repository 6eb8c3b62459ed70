"""Tests for individual provider adapters with mocked vendor clients"""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs
from botocore.exceptions import ClientError
from firebase_admin import messaging
from twilio.base.exceptions import TwilioException
import httpx
import json
import pytest

from notifier.core.exceptions import ProviderError
from notifier.models.delivery_log import DeliveryStatus
from notifier.models.notification import NotificationPriority
from notifier.services.providers.email import (
    EmailAttachment,
    EmailMessage,
    SendGridProvider,
    SMTPProvider,
)
from notifier.services.providers.push import FCMProvider, OneSignalProvider, PushMessage
from notifier.services.providers.sms import SMSMessage, SNSProvider, TwilioProvider, VonageProvider

SMS = SMSMessage(to="+14155550123", body="Your code is 1234", notification_id="n1")

@pytest.fixture
def email_message():
    return EmailMessage(
        to="jane@example.com",
        to_name="Jane Doe",
        subject="Grades posted",
        text="Hello",
        html="<p>Hello</p>",
        attachments=[EmailAttachment(content="aGVsbG8=", filename="report.txt", type="text/plain")],
        notification_id="n1",
        tenant_id="tenant-1",
        notification_type="GRADE_UPDATE",
        category="ACADEMIC",
    )

@pytest.fixture
def push_message():
    return PushMessage(
        tokens=["good-token", "dead-token"],
        title="Hi",
        body="There",
        data={"notification_id": "n1"},
        priority=NotificationPriority.HIGH,
        category="ACADEMIC",
        notification_id="n1",
    )

class TestSendGridProvider:
    async def test_send_returns_message_id(self, email_message):
        client = MagicMock()
        client.send.return_value = SimpleNamespace(status_code=202, headers={"X-Message-Id": "sg-123"})
        provider = SendGridProvider("SG.key", "noreply@example.com", "Notifier", client=client)

        result = await provider.send(email_message)

        assert result.provider == "sendgrid"
        assert result.message_id == "sg-123"
        assert result.status == DeliveryStatus.SENT
        client.send.assert_called_once()

    def test_mail_carries_correlation_args(self, email_message):
        provider = SendGridProvider("SG.key", "noreply@example.com", "Notifier", client=MagicMock())

        body = provider.build_mail(email_message).get()

        assert body["custom_args"]["notification_id"] == "n1"
        assert body["custom_args"]["tenant_id"] == "tenant-1"
        assert len(body["attachments"]) == 1

    async def test_error_status_raises(self, email_message):
        client = MagicMock()
        client.send.return_value = SimpleNamespace(status_code=500, headers={})
        provider = SendGridProvider("SG.key", "noreply@example.com", "Notifier", client=client)

        with pytest.raises(ProviderError) as exc_info:
            await provider.send(email_message)
        assert exc_info.value.status_code == 500

class TestSMTPProvider:
    def test_mime_has_correlation_headers(self, email_message):
        provider = SMTPProvider("smtp.example.com", 587, "user", "pass", "noreply@example.com", "Notifier")

        msg = provider.build_mime(email_message)

        assert msg["X-Notification-ID"] == "n1"
        assert msg["X-Tenant-ID"] == "tenant-1"
        assert msg["Message-ID"]

    async def test_send_uses_starttls_and_login(self, email_message):
        provider = SMTPProvider("smtp.example.com", 587, "user", "pass", "noreply@example.com", "Notifier")

        with patch("notifier.services.providers.email.smtplib.SMTP") as smtp:
            server = smtp.return_value.__enter__.return_value
            result = await provider.send(email_message)

        server.starttls.assert_called_once()
        server.login.assert_called_once_with("user", "pass")
        server.send_message.assert_called_once()
        assert result.provider == "smtp"

    async def test_connection_failure_is_provider_error(self, email_message):
        provider = SMTPProvider("smtp.example.com", 587, None, None, "noreply@example.com", "Notifier")

        with patch("notifier.services.providers.email.smtplib.SMTP", side_effect=OSError("refused")):
            with pytest.raises(ProviderError):
                await provider.send(email_message)

class TestTwilioProvider:
    async def test_send_registers_status_callback(self):
        client = MagicMock()
        client.messages.create.return_value = SimpleNamespace(sid="SM123", status="queued")
        provider = TwilioProvider(
            "AC123", "token", from_number="+15005550006",
            callback_base_url="https://api.example.com/api/v1/webhooks/twilio", client=client,
        )

        result = await provider.send(SMS)

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["to"] == "+14155550123"
        assert kwargs["from_"] == "+15005550006"
        assert "notification_id=n1" in kwargs["status_callback"]
        assert "recipient=%2B14155550123" in kwargs["status_callback"]
        assert result.message_id == "SM123"
        assert result.status == DeliveryStatus.PENDING

    async def test_prefers_messaging_service(self):
        client = MagicMock()
        client.messages.create.return_value = SimpleNamespace(sid="SM1", status="sent")
        provider = TwilioProvider("AC123", "token", messaging_service_sid="MG1", client=client)

        await provider.send(SMS)

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["messaging_service_sid"] == "MG1"
        assert "from_" not in kwargs

    async def test_twilio_error_is_provider_error(self):
        client = MagicMock()
        client.messages.create.side_effect = TwilioException("rate limited")
        provider = TwilioProvider("AC123", "token", from_number="+15005550006", client=client)

        with pytest.raises(ProviderError):
            await provider.send(SMS)

class TestSNSProvider:
    async def test_publish_transactional(self):
        client = MagicMock()
        client.publish.return_value = {"MessageId": "sns-1"}
        provider = SNSProvider("us-east-1", "AKIA", "secret", sender_id="SCHOOL", client=client)

        result = await provider.send(SMS)

        kwargs = client.publish.call_args.kwargs
        assert kwargs["PhoneNumber"] == "+14155550123"
        assert kwargs["MessageAttributes"]["AWS.SNS.SMS.SMSType"]["StringValue"] == "Transactional"
        assert kwargs["MessageAttributes"]["AWS.SNS.SMS.SenderID"]["StringValue"] == "SCHOOL"
        assert result.message_id == "sns-1"

    async def test_client_error_is_provider_error(self):
        client = MagicMock()
        client.publish.side_effect = ClientError({"Error": {"Code": "Throttling", "Message": "slow down"}}, "Publish")
        provider = SNSProvider("us-east-1", "AKIA", "secret", client=client)

        with pytest.raises(ProviderError):
            await provider.send(SMS)

class TestVonageProvider:
    async def test_send_posts_form(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured.update({k: v[0] for k, v in parse_qs(request.content.decode()).items()})
            return httpx.Response(200, json={"messages": [{"status": "0", "message-id": "v-1"}]})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = VonageProvider("key", "secret", "Notifier", client=client)
            result = await provider.send(SMS)

        assert captured["to"] == "14155550123"
        assert captured["client-ref"] == "n1"
        assert result.message_id == "v-1"

    async def test_rejected_message_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"messages": [{"status": "4", "error-text": "Bad Credentials"}]})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = VonageProvider("key", "secret", "Notifier", client=client)
            with pytest.raises(ProviderError, match="Bad Credentials"):
                await provider.send(SMS)

class TestFCMProvider:
    async def test_collects_invalid_tokens(self, push_message):
        response = SimpleNamespace(
            success_count=1,
            failure_count=1,
            responses=[
                SimpleNamespace(success=True, message_id="fcm-1", exception=None),
                SimpleNamespace(success=False, message_id=None, exception=messaging.UnregisteredError("gone")),
            ],
        )
        provider = FCMProvider(app=MagicMock())

        with patch.object(messaging, "send_each_for_multicast", return_value=response) as send:
            result = await provider.send(push_message)

        send.assert_called_once()
        assert result.message_id == "fcm-1"
        assert result.invalid_tokens == ["dead-token"]

    async def test_no_successes_raises_with_invalid_tokens(self, push_message):
        response = SimpleNamespace(
            success_count=0,
            failure_count=2,
            responses=[
                SimpleNamespace(success=False, message_id=None, exception=messaging.UnregisteredError("gone")),
                SimpleNamespace(success=False, message_id=None, exception=messaging.UnregisteredError("gone")),
            ],
        )
        provider = FCMProvider(app=MagicMock())

        with patch.object(messaging, "send_each_for_multicast", return_value=response):
            with pytest.raises(ProviderError) as exc_info:
                await provider.send(push_message)

        assert exc_info.value.invalid_tokens == ["good-token", "dead-token"]

    def test_high_priority_maps_to_android_high(self, push_message):
        multicast = FCMProvider(app=MagicMock()).build_message(push_message)

        assert multicast.android.priority == "high"
        assert multicast.android.notification.channel_id == "notifications_academic"

class TestOneSignalProvider:
    async def test_send_reports_invalid_player_ids(self, push_message):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured.update(json.loads(request.content))
            captured["auth"] = request.headers["Authorization"]
            return httpx.Response(
                200, json={"id": "os-1", "recipients": 1, "errors": {"invalid_player_ids": ["dead-token"]}}
            )

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = OneSignalProvider("app-1", "rest-key", client=client)
            result = await provider.send(push_message)

        assert captured["include_player_ids"] == ["good-token", "dead-token"]
        assert captured["priority"] == 7
        assert captured["auth"] == "Basic rest-key"
        assert result.message_id == "os-1"
        assert result.invalid_tokens == ["dead-token"]

    async def test_zero_recipients_raises(self, push_message):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": "", "recipients": 0, "errors": ["All included players are not subscribed"]})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = OneSignalProvider("app-1", "rest-key", client=client)
            with pytest.raises(ProviderError):
                await provider.send(push_message)
