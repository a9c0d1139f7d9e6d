"""Registry of inbound decoders keyed by (source type, source provider)."""

import logging

from orderbridge.errors.exceptions import UnsupportedProviderError
from orderbridge.integrations import AVAILABLE_DECODERS, import_adapter, normalize_provider
from orderbridge.integrations.decoders.base import WebhookDecoder
from orderbridge.models.enums import EndpointType

logger = logging.getLogger(__name__)


class DecoderRegistry:
    def __init__(self) -> None:
        self._decoders: dict[tuple[str, str], WebhookDecoder] = {}

    def register(self, decoder: WebhookDecoder) -> None:
        for name in decoder.provider_names:
            key = (EndpointType(decoder.source_type).value, normalize_provider(name))
            self._decoders[key] = decoder

    def get(self, source_type: str, source_provider: str) -> WebhookDecoder:
        key = (str(source_type), normalize_provider(source_provider))
        decoder = self._decoders.get(key)
        if decoder is None:
            raise UnsupportedProviderError(
                f"No decoder for {source_type}/{source_provider}",
                details={"source_type": str(source_type), "source_provider": source_provider},
            )
        return decoder

    def supported(self) -> list[tuple[str, str]]:
        return sorted(self._decoders)


def default_decoders() -> DecoderRegistry:
    """Registry loaded with every decoder shipped in this package."""
    registry = DecoderRegistry()
    for name, dotted_path in AVAILABLE_DECODERS.items():
        registry.register(import_adapter(dotted_path)())
        logger.debug("Registered decoder %s", name)
    return registry
