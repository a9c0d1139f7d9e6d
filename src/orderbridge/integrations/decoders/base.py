"""Decoder interface turning raw provider webhooks into DomainEvents."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from orderbridge.errors.exceptions import AuthenticationError, OrderBridgeError, PayloadDecodeError
from orderbridge.models.enums import EndpointType
from orderbridge.models.events import DomainEvent


class WebhookDecoder(ABC):
    """Parses one provider family's inbound payloads.

    ``provider_names`` lists every source provider (as configured on a
    webhook) this decoder accepts.
    """

    source_type: EndpointType
    provider_names: tuple[str, ...] = ()

    def verify(self, body: bytes, headers: Mapping[str, str], secret: str) -> None:
        """Check the provider signature when one was sent.

        The secret in the URL path already authenticates the caller; a
        signature header that is present but wrong is still rejected.
        """
        return None

    @abstractmethod
    def decode(self, body: bytes, headers: Mapping[str, str], source_provider: str) -> DomainEvent:
        """Return the normalized event or raise PayloadDecodeError."""
        ...

    def parse(self, body: bytes, headers: Mapping[str, str], source_provider: str) -> DomainEvent:
        """``decode``, with wrongly typed fields reported as PayloadDecodeError."""
        try:
            return self.decode(body, headers, source_provider)
        except OrderBridgeError:
            raise
        except (ValueError, TypeError, AttributeError, KeyError) as exc:
            raise PayloadDecodeError(f"Malformed {source_provider} payload: {exc}") from exc

    @staticmethod
    def load_json(body: bytes) -> dict:
        try:
            data = json.loads(body or b"")
        except (ValueError, UnicodeDecodeError) as exc:
            raise PayloadDecodeError(f"Body is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise PayloadDecodeError("Body must be a JSON object")
        return data

    @staticmethod
    def reject_signature(provider: str) -> None:
        raise AuthenticationError(f"Invalid {provider} webhook signature")


def to_minor_units(value, already_minor: bool = False) -> int | None:
    """Convert a decimal amount ("41.97", 41.97) to integer cents."""
    if value is None or value == "":
        return None
    if already_minor:
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise PayloadDecodeError(f"Invalid amount: {value!r}") from exc
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise PayloadDecodeError(f"Invalid amount: {value!r}") from exc
    return int((amount * 100).quantize(Decimal("1")))


def parse_timestamp(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise PayloadDecodeError(f"Invalid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup for plain dicts and Starlette Headers."""
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value


def as_float(value) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
