"""SMS channel adapter"""

from typing import Optional
import logging
import re

import phonenumbers

from notifier.core.exceptions import ValidationError
from notifier.models.notification import DeliveryChannel, Notification
from notifier.schemas.notification import NotificationContent, RecipientUser
from notifier.services.providers import ProviderChain, ProviderResult
from notifier.services.providers.sms import SMSMessage

logger = logging.getLogger(__name__)

# Looks like a full international number that only lacks the leading "+"
INTERNATIONAL_WITHOUT_PLUS = re.compile(r"^[1-9]\d{10,}$")

class SMSChannel:
    """Resolves and normalizes phone numbers, then sends via the SMS provider chain"""

    channel = DeliveryChannel.SMS

    def __init__(self, chain: ProviderChain, default_country_code: str = "+1", max_length: int = 1600):
        self.chain = chain
        self.default_country_code = default_country_code
        self.max_length = max_length

    @staticmethod
    def resolve_phone(user: RecipientUser) -> Optional[str]:
        """First phone found on the user, then the student, teacher and staff profiles"""
        candidates = [user.phone]
        for profile in (user.student, user.teacher, user.staff):
            if profile is not None:
                candidates.append(profile.phone)
        return next((phone for phone in candidates if phone), None)

    def format_phone(self, phone: str) -> str:
        """Normalize to E.164, adding the default country code when missing"""
        cleaned = re.sub(r"[^\d+]", "", phone)
        if not cleaned.startswith("+"):
            if INTERNATIONAL_WITHOUT_PLUS.match(cleaned):
                cleaned = f"+{cleaned}"
            else:
                cleaned = f"{self.default_country_code}{cleaned.lstrip('0')}"

        try:
            parsed = phonenumbers.parse(cleaned, None)
        except phonenumbers.NumberParseException as e:
            raise ValidationError(f"Invalid phone number '{phone}': {e}") from e

        if not phonenumbers.is_possible_number(parsed):
            raise ValidationError(f"Invalid phone number '{phone}'")

        return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)

    def recipient_for(self, user: RecipientUser) -> str:
        phone = self.resolve_phone(user)
        if not phone:
            raise ValidationError(f"No phone number found for user {user.id}")
        return self.format_phone(phone)

    def build_body(self, content: NotificationContent) -> str:
        body = content.sms_content or content.message
        if len(body) > self.max_length:
            body = body[: self.max_length - 3] + "..."
        return body

    async def send(
        self,
        user: RecipientUser,
        content: NotificationContent,
        notification: Notification,
    ) -> ProviderResult:
        message = SMSMessage(
            to=self.recipient_for(user),
            body=self.build_body(content),
            notification_id=notification.id,
        )
        return await self.chain.send(message)
