"""Shopify order webhooks."""

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
from orderbridge.integrations.signatures import verify_base64
from orderbridge.models.enums import EndpointType, EventType, PaymentStatus
from orderbridge.models.events import ContactPoint, DomainEvent, OpaquePayload, OrderItem, OrderPayload

TOPIC_EVENTS: dict[str, EventType] = {
    "orders/create": EventType.ORDER_CREATED,
    "orders/updated": EventType.ORDER_UPDATED,
    "orders/edited": EventType.ORDER_UPDATED,
    "orders/cancelled": EventType.ORDER_CANCELLED,
    "orders/fulfilled": EventType.ORDER_FULFILLED,
    "orders/paid": EventType.PAYMENT_SUCCEEDED,
}

FINANCIAL_STATUS: dict[str, PaymentStatus] = {
    "paid": PaymentStatus.PAID,
    "partially_paid": PaymentStatus.PENDING,
    "pending": PaymentStatus.PENDING,
    "authorized": PaymentStatus.PENDING,
    "refunded": PaymentStatus.REFUNDED,
    "partially_refunded": PaymentStatus.PAID,
    "voided": PaymentStatus.FAILED,
}


class ShopifyOrderDecoder(WebhookDecoder):
    source_type = EndpointType.ECOMMERCE
    provider_names = ("Shopify",)

    def verify(self, body: bytes, headers: Mapping[str, str], secret: str) -> None:
        signature = header(headers, "X-Shopify-Hmac-Sha256")
        if signature is not None and not verify_base64(body, secret, signature):
            self.reject_signature("Shopify")

    def decode(self, body: bytes, headers: Mapping[str, str], source_provider: str) -> DomainEvent:
        data = self.load_json(body)
        topic = header(headers, "X-Shopify-Topic") or data.get("topic")
        if not topic:
            raise PayloadDecodeError("Missing X-Shopify-Topic header")
        event_type = TOPIC_EVENTS.get(topic)
        if event_type is None:
            raise PayloadDecodeError(f"Unsupported Shopify topic '{topic}'")

        order_id = data.get("id")
        native_id = header(headers, "X-Shopify-Webhook-Id") or header(headers, "X-Shopify-Event-Id")
        if not native_id:
            if order_id is None:
                raise PayloadDecodeError("Shopify payload has neither webhook id nor order id")
            native_id = f"{topic}:{order_id}:{data.get('updated_at', '')}"

        occurred_at = (
            parse_timestamp(data.get("updated_at") or data.get("created_at"))
            or datetime.now(timezone.utc)
        )

        if event_type.is_order_event:
            payload = self._order_payload(data)
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

    def _order_payload(self, data: dict) -> OrderPayload:
        shipping = data.get("shipping_address") or {}
        customer = data.get("customer") or {}

        dropoff = None
        if shipping or customer:
            name = shipping.get("name") or " ".join(
                p for p in (customer.get("first_name"), customer.get("last_name")) if p
            )
            street = ", ".join(
                str(p) for p in (
                    shipping.get("address1"),
                    shipping.get("address2"),
                    shipping.get("city"),
                    " ".join(x for x in (shipping.get("province_code") or shipping.get("province"), shipping.get("zip")) if x),
                    shipping.get("country_code"),
                ) if p
            )
            dropoff = ContactPoint(
                name=name or None,
                address=street or None,
                phone=shipping.get("phone") or customer.get("phone") or data.get("phone"),
                email=data.get("email") or customer.get("email"),
                instructions=data.get("note"),
                latitude=as_float(shipping.get("latitude")),
                longitude=as_float(shipping.get("longitude")),
            )

        items = tuple(
            OrderItem(
                name=str(item.get("title") or item.get("name") or "item"),
                quantity=int(item.get("quantity") or 1),
                price=to_minor_units(item.get("price")) or 0,
            )
            for item in data.get("line_items") or []
        )

        order_number = data.get("name") or data.get("order_number")
        return OrderPayload(
            order_number=str(order_number) if order_number is not None else None,
            external_id=str(data["id"]) if data.get("id") is not None else None,
            customer=dropoff,
            items=items,
            total_amount=to_minor_units(data.get("total_price")),
            currency=(data.get("currency") or "USD").upper(),
            payment_status=FINANCIAL_STATUS.get(data.get("financial_status") or "", PaymentStatus.UNKNOWN),
            notes=data.get("note"),
        )
