"""JetGO delivery status callbacks."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone

from orderbridge.errors.exceptions import PayloadDecodeError
from orderbridge.integrations.decoders.base import WebhookDecoder, as_float, header, parse_timestamp
from orderbridge.integrations.providers.jetgo import JETGO_STATUS_MAP
from orderbridge.integrations.signatures import verify_hex
from orderbridge.models.enums import DELIVERY_STATUS_EVENTS, EndpointType
from orderbridge.models.events import DeliveryStatusPayload, DomainEvent


class JetGoStatusDecoder(WebhookDecoder):
    source_type = EndpointType.DELIVERY
    provider_names = ("JetGO",)

    def verify(self, body: bytes, headers: Mapping[str, str], secret: str) -> None:
        signature = header(headers, "X-JetGo-Signature")
        if signature is not None and not verify_hex(body, secret, signature):
            self.reject_signature("JetGO")

    def decode(self, body: bytes, headers: Mapping[str, str], source_provider: str) -> DomainEvent:
        data = self.load_json(body)
        external_id = data.get("delivery_id")
        if not external_id:
            raise PayloadDecodeError("JetGO callback has no delivery_id")
        provider_status = data.get("status")
        status = JETGO_STATUS_MAP.get((provider_status or "").lower())
        if status is None:
            raise PayloadDecodeError(f"Unknown JetGO status '{provider_status}'")

        occurred_at = parse_timestamp(data.get("timestamp")) or datetime.now(timezone.utc)
        native_id = data.get("event_id") or header(headers, "X-JetGo-Event-Id")
        if not native_id:
            native_id = f"{external_id}:{provider_status}"

        courier = data.get("courier") or {}
        payload = DeliveryStatusPayload(
            external_id=str(external_id),
            status=status,
            provider_status=provider_status,
            current_latitude=as_float(courier.get("lat")),
            current_longitude=as_float(courier.get("lng")),
            pickup_eta=parse_timestamp(data.get("pickup_eta")),
            dropoff_eta=parse_timestamp(data.get("dropoff_eta")),
            tracking_url=data.get("tracking_url"),
        )
        return DomainEvent.build(
            event_type=DELIVERY_STATUS_EVENTS[status],
            source_type=self.source_type,
            source_provider=source_provider,
            native_event_id=str(native_id),
            occurred_at=occurred_at,
            payload=payload,
        )
