"""Channel adapters"""

from .email import EmailChannel
from .sms import SMSChannel
from .push import PushChannel, DeviceTokenStore
from .webhook import WebhookChannel, sign_payload, verify_signature
from .in_app import InAppChannel, ConnectionRegistry

__all__ = [
    "EmailChannel",
    "SMSChannel",
    "PushChannel",
    "DeviceTokenStore",
    "WebhookChannel",
    "InAppChannel",
    "ConnectionRegistry",
    "sign_payload",
    "verify_signature",
]
