"""Uber Direct delivery status callbacks."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone

from orderbridge.errors.exceptions import PayloadDecodeError
from orderbridge.integrations.decoders.base import WebhookDecoder, as_float, header, parse_timestamp
from orderbridge.integrations.providers.uberdirect import UBER_STATUS_MAP
from orderbridge.integrations.signatures import verify_hex
from orderbridge.models.enums import DELIVERY_STATUS_EVENTS, EndpointType
from orderbridge.models.events import DeliveryStatusPayload, DomainEvent


class UberDirectStatusDecoder(WebhookDecoder):
    """Handles ``event.delivery_status`` and ``event.courier_update`` bodies.

    The delivery object is either top-level or nested under ``data``.
    """

    source_type = EndpointType.DELIVERY
    provider_names = ("UberDirect", "UberEats")

    def verify(self, body: bytes, headers: Mapping[str, str], secret: str) -> None:
        signature = header(headers, "X-Uber-Signature") or header(headers, "X-Postmates-Signature")
        if signature is not None and not verify_hex(body, secret, signature):
            self.reject_signature("Uber Direct")

    def decode(self, body: bytes, headers: Mapping[str, str], source_provider: str) -> DomainEvent:
        data = self.load_json(body)
        delivery = data.get("data") if isinstance(data.get("data"), dict) else data

        external_id = delivery.get("id") or data.get("delivery_id")
        if not external_id:
            raise PayloadDecodeError("Uber Direct callback has no delivery id")
        provider_status = delivery.get("status") or data.get("status")
        status = UBER_STATUS_MAP.get((provider_status or "").lower())
        if status is None:
            raise PayloadDecodeError(f"Unknown Uber Direct status '{provider_status}'")

        courier = delivery.get("courier") or {}
        location = courier.get("location") or {}
        occurred_at = parse_timestamp(data.get("created") or delivery.get("updated")) or datetime.now(timezone.utc)
        native_id = data.get("event_id")
        if not native_id and delivery is not data:
            native_id = data.get("id")
        if not native_id:
            native_id = ":".join(str(p) for p in (external_id, provider_status, delivery.get("updated")) if p)

        payload = DeliveryStatusPayload(
            external_id=str(external_id),
            status=status,
            provider_status=provider_status,
            current_latitude=as_float(location.get("lat")),
            current_longitude=as_float(location.get("lng")),
            pickup_eta=parse_timestamp(delivery.get("pickup_eta")),
            dropoff_eta=parse_timestamp(delivery.get("dropoff_eta")),
            tracking_url=delivery.get("tracking_url"),
        )
        return DomainEvent.build(
            event_type=DELIVERY_STATUS_EVENTS[status],
            source_type=self.source_type,
            source_provider=source_provider,
            native_event_id=str(native_id),
            occurred_at=occurred_at,
            payload=payload,
        )
