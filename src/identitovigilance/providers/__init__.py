"""
Teleservice Providers Package

Clients for the national identifier teleservice, all implementing the
BaseTeleserviceProvider interface used by the qualification workflow.

Available Providers:
- HttpTeleserviceProvider: JSON-over-HTTPS teleservice client
"""

from .base_provider import BaseTeleserviceProvider, ProviderConfig, TeleserviceUnavailable
from .http_provider import HttpTeleserviceProvider

__all__ = [
    'BaseTeleserviceProvider',
    'ProviderConfig',
    'TeleserviceUnavailable',
    'HttpTeleserviceProvider',
]

# Provider registry for dynamic loading
PROVIDER_REGISTRY = {
    'http': HttpTeleserviceProvider,
}


def get_provider_class(provider_name: str):
    """
    Get provider class by name

    Raises:
        ValueError: If provider name is not recognized
    """
    provider_name = provider_name.lower()

    if provider_name not in PROVIDER_REGISTRY:
        available = ', '.join(PROVIDER_REGISTRY.keys())
        raise ValueError(f"Unknown provider '{provider_name}'. Available providers: {available}")

    return PROVIDER_REGISTRY[provider_name]


def create_provider(provider_name: str, config=None, **kwargs):
    """Create provider instance by name"""
    provider_class = get_provider_class(provider_name)
    return provider_class(config=config, **kwargs)
