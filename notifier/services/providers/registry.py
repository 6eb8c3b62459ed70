"""
Provider registry
Maps configured provider names to constructors, per channel. The set of
providers is built once at startup and handed to the channels.
"""

from typing import Callable, Dict, List, Sequence
import logging

from notifier.core.config import Settings
from notifier.core.exceptions import ConfigurationError
from notifier.models.notification import DeliveryChannel
from .base import Provider
from .email import SendGridProvider, SMTPProvider
from .sms import TwilioProvider, SNSProvider, VonageProvider
from .push import FCMProvider, OneSignalProvider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[Settings], Provider]

PROVIDER_REGISTRY: Dict[DeliveryChannel, Dict[str, ProviderFactory]] = {
    DeliveryChannel.EMAIL: {
        "sendgrid": SendGridProvider.from_settings,
        "smtp": SMTPProvider.from_settings,
    },
    DeliveryChannel.SMS: {
        "twilio": TwilioProvider.from_settings,
        "sns": SNSProvider.from_settings,
        "vonage": VonageProvider.from_settings,
    },
    DeliveryChannel.PUSH: {
        "fcm": FCMProvider.from_settings,
        "onesignal": OneSignalProvider.from_settings,
    },
}

def build_providers(channel: DeliveryChannel, names: Sequence[str], settings: Settings) -> List[Provider]:
    """
    Construct the configured providers for a channel, in order

    Unknown names fail fast. Known providers whose credentials are missing are
    skipped with a warning so the rest of the chain still works.
    """
    registry = PROVIDER_REGISTRY.get(channel)
    if registry is None:
        raise ConfigurationError(f"Channel {channel.value} has no provider registry")

    unknown = [name for name in names if name.lower() not in registry]
    if unknown:
        raise ConfigurationError(
            f"Unknown {channel.value} provider(s): {', '.join(unknown)}. "
            f"Available: {', '.join(registry)}"
        )

    providers = []
    for name in names:
        try:
            providers.append(registry[name.lower()](settings))
        except ConfigurationError as e:
            logger.warning(f"Skipping {channel.value} provider {name}: {e}")

    if not providers:
        logger.warning(f"No {channel.value} providers are configured")
    else:
        logger.info(f"{channel.value} providers: {', '.join(p.name for p in providers)}")
    return providers
