"""Provider integrations: inbound payload decoders and outbound delivery capabilities.

Both registries map a provider name to a lazy-import class path so a
deployment only imports the adapters it actually uses.
"""

import re

AVAILABLE_DECODERS: dict[str, str] = {
    "shopify": "orderbridge.integrations.decoders.shopify.ShopifyOrderDecoder",
    "generic_ecommerce": "orderbridge.integrations.decoders.generic.GenericOrderDecoder",
    "uberdirect": "orderbridge.integrations.decoders.uberdirect.UberDirectStatusDecoder",
    "jetgo": "orderbridge.integrations.decoders.jetgo.JetGoStatusDecoder",
}

AVAILABLE_PROVIDERS: dict[str, str] = {
    "uberdirect": "orderbridge.integrations.providers.uberdirect.UberDirectProvider",
    "jetgo": "orderbridge.integrations.providers.jetgo.JetGoProvider",
}

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_provider(name: str) -> str:
    """Canonical provider key: "Uber Direct" and "UberDirect" both become "uberdirect"."""
    return _NON_ALNUM.sub("", (name or "").lower())


def import_adapter(dotted_path: str):
    """Import an adapter class from its dotted module path."""
    import importlib

    module_path, class_name = dotted_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    return getattr(module, class_name)
