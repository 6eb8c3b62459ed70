"""
Push providers: Firebase Cloud Messaging and OneSignal
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from firebase_admin import credentials, messaging, exceptions as firebase_exceptions
import firebase_admin
import asyncio
import httpx
import json
import logging

from notifier.core.config import Settings
from notifier.core.exceptions import ConfigurationError, ProviderError
from notifier.models.delivery_log import DeliveryStatus
from notifier.models.notification import NotificationPriority
from .base import ProviderResult, require

logger = logging.getLogger(__name__)

FCM_PRIORITY = {
    NotificationPriority.LOW: "normal",
    NotificationPriority.NORMAL: "normal",
    NotificationPriority.HIGH: "high",
    NotificationPriority.URGENT: "high",
    NotificationPriority.CRITICAL: "high",
}

ONESIGNAL_PRIORITY = {
    NotificationPriority.LOW: 3,
    NotificationPriority.NORMAL: 5,
    NotificationPriority.HIGH: 7,
    NotificationPriority.URGENT: 9,
    NotificationPriority.CRITICAL: 10,
}

# FCM errors meaning the token will never work again
INVALID_TOKEN_ERRORS = (
    messaging.UnregisteredError,
    messaging.SenderIdMismatchError,
    firebase_exceptions.InvalidArgumentError,
)

FIREBASE_APP_NAME = "notifier"

class PushMessage(BaseModel):
    tokens: List[str]
    title: str
    body: str
    data: Dict[str, str] = Field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.NORMAL
    category: str = "GENERAL"
    image_url: Optional[str] = None
    badge: Optional[int] = None
    notification_id: str

class FCMProvider:
    """Firebase Cloud Messaging multicast"""

    name = "fcm"

    def __init__(
        self,
        credentials_path: Optional[str] = None,
        credentials_json: Optional[str] = None,
        app: Optional[Any] = None,
    ):
        self.app = app or self._initialize_app(credentials_path, credentials_json)

    @staticmethod
    def _initialize_app(credentials_path: Optional[str], credentials_json: Optional[str]):
        require(
            {"FIREBASE_CREDENTIALS_PATH or FIREBASE_CREDENTIALS_JSON": credentials_path or credentials_json},
            "FCM",
        )
        try:
            return firebase_admin.get_app(FIREBASE_APP_NAME)
        except ValueError:
            pass

        try:
            if credentials_json:
                cred = credentials.Certificate(json.loads(credentials_json))
            else:
                cred = credentials.Certificate(credentials_path)
        except (ValueError, OSError) as e:
            raise ConfigurationError(f"Invalid Firebase credentials: {e}") from e

        app = firebase_admin.initialize_app(cred, name=FIREBASE_APP_NAME)
        logger.info("Firebase Admin SDK initialized successfully")
        return app

    @classmethod
    def from_settings(cls, settings: Settings) -> "FCMProvider":
        return cls(
            credentials_path=settings.FIREBASE_CREDENTIALS_PATH,
            credentials_json=settings.FIREBASE_CREDENTIALS_JSON,
        )

    def build_message(self, message: PushMessage) -> messaging.MulticastMessage:
        priority = FCM_PRIORITY[message.priority]
        return messaging.MulticastMessage(
            tokens=message.tokens,
            notification=messaging.Notification(
                title=message.title,
                body=message.body,
                image=message.image_url,
            ),
            data=message.data,
            android=messaging.AndroidConfig(
                priority=priority,
                notification=messaging.AndroidNotification(
                    channel_id=f"notifications_{message.category.lower()}",
                    sound="default",
                ),
            ),
            apns=messaging.APNSConfig(
                headers={"apns-priority": "10" if priority == "high" else "5"},
                payload=messaging.APNSPayload(
                    aps=messaging.Aps(sound="default", badge=message.badge),
                ),
            ),
        )

    async def send(self, message: PushMessage) -> ProviderResult:
        multicast = self.build_message(message)

        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(
                None, lambda: messaging.send_each_for_multicast(multicast, app=self.app)
            )
        except firebase_exceptions.FirebaseError as e:
            raise ProviderError(f"FCM error: {e}", provider=self.name) from e

        invalid_tokens = []
        message_ids = []
        for token, item in zip(message.tokens, response.responses):
            if item.success:
                message_ids.append(item.message_id)
            elif isinstance(item.exception, INVALID_TOKEN_ERRORS):
                invalid_tokens.append(token)
            else:
                logger.warning(f"FCM send to token failed: {item.exception}")

        if not message_ids:
            raise ProviderError(
                f"FCM delivered to none of {len(message.tokens)} device(s)",
                provider=self.name,
                invalid_tokens=invalid_tokens,
            )

        logger.info(
            f"Push sent via FCM: {response.success_count} succeeded, {response.failure_count} failed"
        )
        return ProviderResult(
            provider=self.name,
            message_id=message_ids[0],
            status=DeliveryStatus.SENT,
            raw={
                "success_count": response.success_count,
                "failure_count": response.failure_count,
                "message_ids": message_ids,
            },
            invalid_tokens=invalid_tokens,
        )

class OneSignalProvider:
    """OneSignal REST API"""

    name = "onesignal"

    def __init__(
        self,
        app_id: Optional[str],
        api_key: Optional[str],
        api_url: str = "https://onesignal.com/api/v1/notifications",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        require({"ONESIGNAL_APP_ID": app_id, "ONESIGNAL_API_KEY": api_key}, "OneSignal")
        self.app_id = app_id
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "OneSignalProvider":
        return cls(settings.ONESIGNAL_APP_ID, settings.ONESIGNAL_API_KEY, api_url=settings.ONESIGNAL_API_URL)

    def build_payload(self, message: PushMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "app_id": self.app_id,
            "include_player_ids": message.tokens,
            "headings": {"en": message.title},
            "contents": {"en": message.body},
            "data": message.data,
            "priority": ONESIGNAL_PRIORITY[message.priority],
        }
        if message.image_url:
            payload["big_picture"] = message.image_url
            payload["ios_attachments"] = {"image": message.image_url}
        if message.badge is not None:
            payload["ios_badgeType"] = "SetTo"
            payload["ios_badgeCount"] = message.badge
        return payload

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        headers = {"Authorization": f"Basic {self.api_key}"}
        if self.client is not None:
            return await self.client.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.api_url, json=payload, headers=headers)

    async def send(self, message: PushMessage) -> ProviderResult:
        try:
            response = await self._post(self.build_payload(message))
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderError(f"OneSignal error: {e}", provider=self.name) from e

        body = response.json()
        errors = body.get("errors") or {}
        invalid_tokens = errors.get("invalid_player_ids", []) if isinstance(errors, dict) else []

        if not body.get("id") or not body.get("recipients"):
            raise ProviderError(
                f"OneSignal delivered to no devices: {errors}",
                provider=self.name,
                invalid_tokens=invalid_tokens,
            )

        logger.info(f"Push sent via OneSignal to {body['recipients']} device(s), id {body['id']}")
        return ProviderResult(
            provider=self.name,
            message_id=body["id"],
            status=DeliveryStatus.SENT,
            raw=body,
            invalid_tokens=invalid_tokens,
        )
