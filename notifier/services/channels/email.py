"""Email channel adapter"""

from typing import List
from jinja2 import Template
import logging

from notifier.core.exceptions import ValidationError
from notifier.models.notification import DeliveryChannel, Notification
from notifier.schemas.notification import NotificationContent, RecipientUser
from notifier.services.providers import ProviderChain, ProviderResult
from notifier.services.providers.email import EmailAttachment, EmailMessage

logger = logging.getLogger(__name__)

HTML_TEMPLATE = Template(
    """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{{ subject }}</title>
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
        <h2>{{ title }}</h2>
        <p>{% for line in lines %}{{ line }}{% if not loop.last %}<br>{% endif %}{% endfor %}</p>
        {% if action_url %}<p><a href="{{ action_url }}">View details</a></p>{% endif %}
    </div>
</body>
</html>""",
    autoescape=True,
)

class EmailChannel:
    """Builds email messages and sends them through the email provider chain"""

    channel = DeliveryChannel.EMAIL

    def __init__(self, chain: ProviderChain):
        self.chain = chain

    def recipient_for(self, user: RecipientUser) -> str:
        if not user.email:
            raise ValidationError(f"User {user.id} has no email address")
        return str(user.email)

    @staticmethod
    def render_html(subject: str, title: str, text: str, action_url: str = None) -> str:
        """Auto-generate an HTML body from plain text"""
        return HTML_TEMPLATE.render(
            subject=subject,
            title=title,
            lines=text.splitlines() or [""],
            action_url=action_url,
        )

    @staticmethod
    def attachments_for(notification: Notification) -> List[EmailAttachment]:
        metadata = notification.notification_metadata or {}
        return [EmailAttachment(**item) for item in metadata.get("attachments", [])]

    def build_message(
        self,
        user: RecipientUser,
        content: NotificationContent,
        notification: Notification,
    ) -> EmailMessage:
        subject = content.email_subject or content.title
        text = content.email_content or content.message
        html = content.email_html or self.render_html(subject, content.title, text, content.action_url)

        return EmailMessage(
            to=self.recipient_for(user),
            to_name=user.name or None,
            subject=subject,
            text=text,
            html=html,
            attachments=self.attachments_for(notification),
            notification_id=notification.id,
            tenant_id=notification.tenant_id,
            notification_type=notification.type,
            category=notification.category,
        )

    async def send(
        self,
        user: RecipientUser,
        content: NotificationContent,
        notification: Notification,
    ) -> ProviderResult:
        message = self.build_message(user, content, notification)
        return await self.chain.send(message)
