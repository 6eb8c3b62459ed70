"""
Provider contract and fallback chain

Every backend (SendGrid, Twilio, FCM, ...) implements the same small
interface and normalizes its response into a ProviderResult. A channel holds
an ordered ProviderChain and walks it until one provider succeeds.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable
from pydantic import BaseModel, Field
from datetime import datetime, timezone
import logging

from notifier.core.exceptions import ConfigurationError, ExhaustionError
from notifier.models.delivery_log import DeliveryStatus

logger = logging.getLogger(__name__)

ErrorHook = Callable[[str, Exception], Awaitable[None]]

class ProviderResult(BaseModel):
    """Canonical provider response"""
    provider: str
    message_id: Optional[str] = None
    status: DeliveryStatus = DeliveryStatus.SENT
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    raw: Dict[str, Any] = Field(default_factory=dict)
    invalid_tokens: List[str] = Field(default_factory=list)

@runtime_checkable
class Provider(Protocol):
    """A single backend for a channel"""

    name: str

    async def send(self, message: Any) -> ProviderResult:
        ...

def require(settings_values: Dict[str, Any], provider: str) -> None:
    """Raise ConfigurationError naming every missing credential"""
    missing = [key for key, value in settings_values.items() if not value]
    if missing:
        raise ConfigurationError(f"{provider} is missing configuration: {', '.join(missing)}")

class ProviderChain:
    """Ordered providers tried one after another, never in parallel"""

    def __init__(self, channel: str, providers: Sequence[Provider]):
        self.channel = channel
        self.providers = list(providers)

    @property
    def names(self) -> List[str]:
        return [provider.name for provider in self.providers]

    def __len__(self) -> int:
        return len(self.providers)

    async def send(self, message: Any, on_error: Optional[ErrorHook] = None) -> ProviderResult:
        """
        Send through the first provider that succeeds

        Args:
            message: Channel specific message
            on_error: Awaited with (provider name, error) after each failure

        Raises:
            ConfigurationError: the chain has no providers
            ExhaustionError: every provider failed; carries the last error
        """
        if not self.providers:
            raise ConfigurationError(f"No {self.channel} providers configured")

        errors = []
        for provider in self.providers:
            try:
                result = await provider.send(message)
            except Exception as e:
                logger.warning(f"{self.channel} provider {provider.name} failed: {e}")
                errors.append((provider.name, e))
                if on_error:
                    await on_error(provider.name, e)
                continue

            if errors:
                logger.info(
                    f"{self.channel} delivered by fallback provider {provider.name} "
                    f"after {len(errors)} failure(s)"
                )
            return result

        last_error = errors[-1][1]
        logger.error(f"All {self.channel} providers failed: {', '.join(self.names)}")
        raise ExhaustionError(
            f"All {self.channel} providers failed. Last error: {last_error}",
            last_error=last_error,
            errors=errors,
        )
