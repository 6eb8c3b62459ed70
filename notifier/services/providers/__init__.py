"""Delivery provider backends"""

from .base import Provider, ProviderChain, ProviderResult
from .registry import PROVIDER_REGISTRY, build_providers

__all__ = [
    "Provider",
    "ProviderChain",
    "ProviderResult",
    "PROVIDER_REGISTRY",
    "build_providers",
]
