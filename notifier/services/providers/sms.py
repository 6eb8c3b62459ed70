"""
SMS providers: Twilio, AWS SNS and Vonage
"""

from typing import Any, Dict, Optional
from urllib.parse import urlencode
from pydantic import BaseModel
from twilio.rest import Client
from twilio.base.exceptions import TwilioException
from botocore.exceptions import BotoCoreError, ClientError
import asyncio
import boto3
import httpx
import logging

from notifier.core.config import Settings
from notifier.core.exceptions import ProviderError
from notifier.models.delivery_log import DeliveryStatus
from .base import ProviderResult, require

logger = logging.getLogger(__name__)

TWILIO_STATUS_MAP = {
    "accepted": DeliveryStatus.PENDING,
    "queued": DeliveryStatus.PENDING,
    "sending": DeliveryStatus.PENDING,
    "sent": DeliveryStatus.SENT,
    "delivered": DeliveryStatus.DELIVERED,
    "read": DeliveryStatus.DELIVERED,
    "received": DeliveryStatus.DELIVERED,
    "undelivered": DeliveryStatus.FAILED,
    "failed": DeliveryStatus.FAILED,
    "canceled": DeliveryStatus.FAILED,
}

VONAGE_STATUS_MAP = {
    "accepted": DeliveryStatus.SENT,
    "buffered": DeliveryStatus.SENT,
    "delivered": DeliveryStatus.DELIVERED,
    "expired": DeliveryStatus.FAILED,
    "failed": DeliveryStatus.FAILED,
    "rejected": DeliveryStatus.REJECTED,
    "unknown": DeliveryStatus.SENT,
}

class SMSMessage(BaseModel):
    to: str  # E.164
    body: str
    notification_id: str

class TwilioProvider:
    """Twilio Programmable Messaging"""

    name = "twilio"

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        from_number: Optional[str] = None,
        messaging_service_sid: Optional[str] = None,
        callback_base_url: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        require({"TWILIO_ACCOUNT_SID": account_sid, "TWILIO_AUTH_TOKEN": auth_token}, "Twilio")
        require(
            {"TWILIO_PHONE_NUMBER or TWILIO_MESSAGING_SERVICE_SID": from_number or messaging_service_sid},
            "Twilio",
        )
        self.from_number = from_number
        self.messaging_service_sid = messaging_service_sid
        self.callback_base_url = callback_base_url
        self.client = client or Client(account_sid, auth_token)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TwilioProvider":
        return cls(
            settings.TWILIO_ACCOUNT_SID,
            settings.TWILIO_AUTH_TOKEN,
            from_number=settings.TWILIO_PHONE_NUMBER,
            messaging_service_sid=settings.TWILIO_MESSAGING_SERVICE_SID,
            callback_base_url=f"{settings.API_URL}/api/v1/webhooks/twilio",
        )

    def status_callback(self, message: SMSMessage) -> Optional[str]:
        if not self.callback_base_url:
            return None
        query = urlencode({"notification_id": message.notification_id, "recipient": message.to})
        return f"{self.callback_base_url}?{query}"

    async def send(self, message: SMSMessage) -> ProviderResult:
        kwargs: Dict[str, Any] = {"body": message.body, "to": message.to}

        # Use messaging service if available for better deliverability
        if self.messaging_service_sid:
            kwargs["messaging_service_sid"] = self.messaging_service_sid
        else:
            kwargs["from_"] = self.from_number

        callback = self.status_callback(message)
        if callback:
            kwargs["status_callback"] = callback

        # Run in thread pool to avoid blocking
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, lambda: self.client.messages.create(**kwargs))
        except TwilioException as e:
            raise ProviderError(
                f"Twilio error: {e}",
                provider=self.name,
                status_code=getattr(e, "status", None),
            ) from e

        logger.info(f"SMS sent via Twilio to {message.to}, SID: {result.sid}")
        return ProviderResult(
            provider=self.name,
            message_id=result.sid,
            status=TWILIO_STATUS_MAP.get(str(result.status).lower(), DeliveryStatus.SENT),
            raw={"sid": result.sid, "status": str(result.status)},
        )

class SNSProvider:
    """AWS SNS direct-to-phone publish"""

    name = "sns"

    def __init__(
        self,
        region: str,
        access_key_id: Optional[str],
        secret_access_key: Optional[str],
        sender_id: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        require({"AWS_ACCESS_KEY_ID": access_key_id, "AWS_SECRET_ACCESS_KEY": secret_access_key}, "SNS")
        self.sender_id = sender_id
        self.client = client or boto3.client(
            "sns",
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "SNSProvider":
        return cls(
            settings.AWS_REGION,
            settings.AWS_ACCESS_KEY_ID,
            settings.AWS_SECRET_ACCESS_KEY,
            sender_id=settings.SNS_SENDER_ID,
        )

    def message_attributes(self) -> Dict[str, Dict[str, str]]:
        attributes = {
            "AWS.SNS.SMS.SMSType": {"DataType": "String", "StringValue": "Transactional"},
        }
        if self.sender_id:
            attributes["AWS.SNS.SMS.SenderID"] = {"DataType": "String", "StringValue": self.sender_id}
        return attributes

    async def send(self, message: SMSMessage) -> ProviderResult:
        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(
                None,
                lambda: self.client.publish(
                    PhoneNumber=message.to,
                    Message=message.body,
                    MessageAttributes=self.message_attributes(),
                ),
            )
        except (BotoCoreError, ClientError) as e:
            raise ProviderError(f"SNS error: {e}", provider=self.name) from e

        message_id = response.get("MessageId")
        logger.info(f"SMS sent via SNS to {message.to}, id {message_id}")
        return ProviderResult(
            provider=self.name,
            message_id=message_id,
            status=DeliveryStatus.SENT,
            raw={"MessageId": message_id},
        )

class VonageProvider:
    """Vonage (Nexmo) SMS REST API"""

    name = "vonage"

    def __init__(
        self,
        api_key: Optional[str],
        api_secret: Optional[str],
        from_number: Optional[str],
        api_url: str = "https://rest.nexmo.com/sms/json",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        require(
            {"VONAGE_API_KEY": api_key, "VONAGE_API_SECRET": api_secret, "VONAGE_FROM": from_number},
            "Vonage",
        )
        self.api_key = api_key
        self.api_secret = api_secret
        self.from_number = from_number
        self.api_url = api_url
        self.timeout = timeout
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "VonageProvider":
        return cls(
            settings.VONAGE_API_KEY,
            settings.VONAGE_API_SECRET,
            settings.VONAGE_FROM,
            api_url=settings.VONAGE_API_URL,
        )

    async def _post(self, data: Dict[str, str]) -> httpx.Response:
        if self.client is not None:
            return await self.client.post(self.api_url, data=data, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.api_url, data=data)

    async def send(self, message: SMSMessage) -> ProviderResult:
        data = {
            "api_key": self.api_key,
            "api_secret": self.api_secret,
            "from": self.from_number,
            "to": message.to.lstrip("+"),
            "text": message.body,
            # Echoed back on delivery receipts
            "client-ref": message.notification_id,
        }

        try:
            response = await self._post(data)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderError(f"Vonage error: {e}", provider=self.name) from e

        body = response.json()
        messages = body.get("messages") or [{}]
        first = messages[0]
        if str(first.get("status", "")) != "0":
            raise ProviderError(
                f"Vonage rejected message: {first.get('error-text', 'unknown error')}",
                provider=self.name,
            )

        logger.info(f"SMS sent via Vonage to {message.to}, id {first.get('message-id')}")
        return ProviderResult(
            provider=self.name,
            message_id=first.get("message-id"),
            status=DeliveryStatus.SENT,
            raw=body,
        )
