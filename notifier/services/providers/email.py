"""
Email providers: SendGrid (HTTP API) and SMTP
"""

from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import (
    Attachment,
    Category,
    CustomArg,
    Disposition,
    Email,
    FileContent,
    FileName,
    FileType,
    Mail,
    To,
)
import asyncio
import base64
import logging
import smtplib

from notifier.core.config import Settings
from notifier.core.exceptions import ProviderError
from notifier.models.delivery_log import DeliveryStatus
from .base import ProviderResult, require

logger = logging.getLogger(__name__)

class EmailAttachment(BaseModel):
    content: str  # base64
    filename: str
    type: str = "application/octet-stream"

class EmailMessage(BaseModel):
    to: str
    to_name: Optional[str] = None
    subject: str
    text: str
    html: str
    attachments: List[EmailAttachment] = Field(default_factory=list)
    notification_id: str
    tenant_id: Optional[str] = None
    notification_type: str = "GENERAL"
    category: str = "GENERAL"

    @property
    def correlation(self) -> Dict[str, str]:
        values = {
            "notification_id": self.notification_id,
            "tenant_id": self.tenant_id,
            "notification_type": self.notification_type,
            "recipient": self.to,
        }
        return {key: str(value) for key, value in values.items() if value}

class SendGridProvider:
    """SendGrid v3 mail send"""

    name = "sendgrid"

    def __init__(
        self,
        api_key: Optional[str],
        from_email: str,
        from_name: str,
        client: Optional[Any] = None,
    ):
        require({"SENDGRID_API_KEY": api_key, "EMAIL_FROM_ADDRESS": from_email}, "SendGrid")
        self.from_email = from_email
        self.from_name = from_name
        self.client = client or SendGridAPIClient(api_key)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SendGridProvider":
        return cls(settings.SENDGRID_API_KEY, settings.EMAIL_FROM_ADDRESS, settings.EMAIL_FROM_NAME)

    def build_mail(self, message: EmailMessage) -> Mail:
        mail = Mail(
            from_email=Email(self.from_email, self.from_name),
            to_emails=To(message.to, message.to_name),
            subject=message.subject,
            plain_text_content=message.text,
            html_content=message.html,
        )

        for attachment in message.attachments:
            mail.add_attachment(
                Attachment(
                    FileContent(attachment.content),
                    FileName(attachment.filename),
                    FileType(attachment.type),
                    Disposition("attachment"),
                )
            )

        # Custom args come back on every event webhook for correlation
        for key, value in message.correlation.items():
            mail.add_custom_arg(CustomArg(key, value))

        for category in dict.fromkeys(["notification", message.notification_type.lower(), message.category.lower()]):
            mail.add_category(Category(category))

        return mail

    async def send(self, message: EmailMessage) -> ProviderResult:
        mail = self.build_mail(message)

        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(None, self.client.send, mail)
        except Exception as e:
            raise ProviderError(
                f"SendGrid error: {e}",
                provider=self.name,
                status_code=getattr(e, "status_code", None),
            ) from e

        if response.status_code >= 400:
            raise ProviderError(
                f"SendGrid returned {response.status_code}",
                provider=self.name,
                status_code=response.status_code,
            )

        headers = dict(response.headers or {})
        message_id = headers.get("X-Message-Id")
        logger.info(f"Email sent via SendGrid to {message.to}, id {message_id}")

        return ProviderResult(
            provider=self.name,
            message_id=message_id,
            status=DeliveryStatus.SENT,
            raw={"status_code": response.status_code, "headers": headers},
        )

class SMTPProvider:
    """Plain SMTP relay (also used for SES SMTP endpoints)"""

    name = "smtp"

    def __init__(
        self,
        host: Optional[str],
        port: int,
        user: Optional[str],
        password: Optional[str],
        from_email: str,
        from_name: str,
        use_tls: bool = True,
        timeout: float = 30.0,
    ):
        require({"SMTP_HOST": host}, "SMTP")
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email
        self.from_name = from_name
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SMTPProvider":
        return cls(
            settings.SMTP_HOST,
            settings.SMTP_PORT,
            settings.SMTP_USER,
            settings.SMTP_PASSWORD,
            settings.EMAIL_FROM_ADDRESS,
            settings.EMAIL_FROM_NAME,
            use_tls=settings.SMTP_USE_TLS,
        )

    def build_mime(self, message: EmailMessage) -> MIMEMultipart:
        msg = MIMEMultipart("mixed")
        msg["Subject"] = message.subject
        msg["From"] = formataddr((self.from_name, self.from_email))
        msg["To"] = formataddr((message.to_name or "", message.to))
        msg["Message-ID"] = make_msgid(domain=self.from_email.split("@")[-1])

        # Correlation headers
        msg["X-Notification-ID"] = message.notification_id
        if message.tenant_id:
            msg["X-Tenant-ID"] = message.tenant_id
        msg["X-Notification-Type"] = message.notification_type

        body = MIMEMultipart("alternative")
        body.attach(MIMEText(message.text, "plain", "utf-8"))
        body.attach(MIMEText(message.html, "html", "utf-8"))
        msg.attach(body)

        for attachment in message.attachments:
            subtype = attachment.type.partition("/")[2]
            part = MIMEApplication(base64.b64decode(attachment.content), _subtype=subtype or "octet-stream")
            part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
            msg.attach(part)

        return msg

    def _send_sync(self, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.user and self.password:
                server.login(self.user, self.password)
            server.send_message(msg)

    async def send(self, message: EmailMessage) -> ProviderResult:
        msg = self.build_mime(message)

        # Run in thread pool to avoid blocking
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise ProviderError(f"SMTP error: {e}", provider=self.name) from e

        logger.info(f"Email sent via SMTP to {message.to}")
        return ProviderResult(
            provider=self.name,
            message_id=msg["Message-ID"],
            status=DeliveryStatus.SENT,
            raw={"host": self.host},
        )
