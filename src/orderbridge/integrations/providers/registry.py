"""Registry of delivery-provider capabilities keyed by normalized provider name."""

import logging

from orderbridge.errors.exceptions import UnsupportedProviderError
from orderbridge.integrations import AVAILABLE_PROVIDERS, import_adapter, normalize_provider
from orderbridge.integrations.providers.base import DeliveryProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    def __init__(self) -> None:
        self._providers: dict[str, DeliveryProvider] = {}

    def register(self, provider: DeliveryProvider, *aliases: str) -> None:
        for name in (provider.name, *aliases):
            self._providers[normalize_provider(name)] = provider

    def get(self, provider_name: str) -> DeliveryProvider:
        provider = self._providers.get(normalize_provider(provider_name))
        if provider is None:
            raise UnsupportedProviderError(
                f"No delivery capability registered for '{provider_name}'",
                details={"destination_provider": provider_name},
            )
        return provider

    def __contains__(self, provider_name: str) -> bool:
        return normalize_provider(provider_name) in self._providers


def default_providers(timeout: float = 10.0) -> ProviderRegistry:
    registry = ProviderRegistry()
    for name, dotted_path in AVAILABLE_PROVIDERS.items():
        registry.register(import_adapter(dotted_path)(timeout=timeout))
        logger.debug("Registered delivery provider %s", name)
    return registry
