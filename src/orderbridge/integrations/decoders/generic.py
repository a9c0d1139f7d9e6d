"""Flat order payloads used by WooCommerce, Magento, BigCommerce and custom stores."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone

from orderbridge.errors.exceptions import PayloadDecodeError
from orderbridge.integrations.decoders.base import (
    WebhookDecoder,
    as_float,
    header,
    parse_timestamp,
    to_minor_units,
)
from orderbridge.integrations.signatures import verify_hex
from orderbridge.models.enums import EndpointType, EventType, PaymentStatus
from orderbridge.models.events import ContactPoint, DomainEvent, OpaquePayload, OrderItem, OrderPayload


def _contact(section: dict | None) -> ContactPoint | None:
    if not section:
        return None
    return ContactPoint(
        name=section.get("name"),
        address=section.get("address"),
        phone=section.get("phone"),
        email=section.get("email"),
        instructions=section.get("instructions"),
        latitude=as_float(section.get("latitude")),
        longitude=as_float(section.get("longitude")),
    )


class GenericOrderDecoder(WebhookDecoder):
    """Amounts are integer minor units, as in the store test payloads.

    Example body::

        {"event": "order.created", "id": "order_123",
         "customer": {"name": ..., "address": ..., "phone": ...},
         "restaurant": {"name": ..., "address": ..., "phone": ...},
         "items": [{"name": "Falafel Wrap", "quantity": 1, "price": 999}],
         "totalAmount": 4197, "currency": "USD"}
    """

    source_type = EndpointType.ECOMMERCE
    provider_names = ("WooCommerce", "Magento", "BigCommerce", "Squarespace", "Wix", "Custom")

    def verify(self, body: bytes, headers: Mapping[str, str], secret: str) -> None:
        signature = header(headers, "X-Signature-Sha256")
        if signature is not None and not verify_hex(body, secret, signature):
            self.reject_signature("store")

    def decode(self, body: bytes, headers: Mapping[str, str], source_provider: str) -> DomainEvent:
        data = self.load_json(body)
        raw_type = data.get("event") or data.get("type") or header(headers, "X-Event-Type") or "order.created"
        try:
            event_type = EventType(raw_type)
        except ValueError as exc:
            raise PayloadDecodeError(f"Unknown event type '{raw_type}'") from exc

        order_id = data.get("id") or data.get("order_id")
        native_id = header(headers, "X-Event-Id") or data.get("event_id")
        if not native_id:
            if order_id is None:
                raise PayloadDecodeError("Payload has neither event_id nor order id")
            native_id = f"{event_type.value}:{order_id}"

        occurred_at = parse_timestamp(data.get("created_at") or data.get("timestamp")) or datetime.now(timezone.utc)

        if event_type.is_order_event:
            payload = self._order_payload(data, order_id)
        else:
            payload = OpaquePayload.from_bytes(body, "application/json")

        return DomainEvent.build(
            event_type=event_type,
            source_type=self.source_type,
            source_provider=source_provider,
            native_event_id=str(native_id),
            occurred_at=occurred_at,
            payload=payload,
        )

    def _order_payload(self, data: dict, order_id) -> OrderPayload:
        items = tuple(
            OrderItem(
                name=str(item.get("name") or "item"),
                quantity=int(item.get("quantity") or 1),
                price=to_minor_units(item.get("price"), already_minor=True) or 0,
            )
            for item in data.get("items") or []
        )
        payment = data.get("payment_status") or data.get("paymentStatus")
        try:
            payment_status = PaymentStatus(payment) if payment else PaymentStatus.UNKNOWN
        except ValueError:
            payment_status = PaymentStatus.UNKNOWN

        order_number = data.get("order_number") or data.get("orderNumber") or order_id
        return OrderPayload(
            order_number=str(order_number) if order_number is not None else None,
            external_id=str(order_id) if order_id is not None else None,
            customer=_contact(data.get("customer")),
            pickup=_contact(data.get("restaurant") or data.get("pickup")),
            items=items,
            total_amount=to_minor_units(
                data.get("totalAmount", data.get("total_amount")), already_minor=True
            ),
            currency=(data.get("currency") or "USD").upper(),
            payment_status=payment_status,
            notes=data.get("notes"),
        )
