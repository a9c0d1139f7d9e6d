"""Normalized domain events and the tagged union of payload shapes."""

import base64
import hashlib
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from orderbridge.models.enums import DeliveryStatus, EndpointType, EventType, PaymentStatus


class ContactPoint(BaseModel):
    """A named place with a phone number: a store or a customer."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    address: str | None = None
    phone: str | None = None
    email: str | None = None
    instructions: str | None = None
    latitude: float | None = None
    longitude: float | None = None


class OrderItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    quantity: int = 1
    price: int = 0  # minor units


class OrderPayload(BaseModel):
    """An order as announced by an e-commerce platform."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["order"] = "order"
    order_number: str | None = None
    external_id: str | None = None
    customer: ContactPoint | None = None
    pickup: ContactPoint | None = None
    items: tuple[OrderItem, ...] = ()
    total_amount: int | None = None
    currency: str = "USD"
    payment_status: PaymentStatus = PaymentStatus.UNKNOWN
    notes: str | None = None


class DeliveryStatusPayload(BaseModel):
    """A delivery-provider status callback."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["delivery_status"] = "delivery_status"
    external_id: str
    status: DeliveryStatus
    provider_status: str
    current_latitude: float | None = None
    current_longitude: float | None = None
    pickup_eta: datetime | None = None
    dropoff_eta: datetime | None = None
    tracking_url: str | None = None


class OpaquePayload(BaseModel):
    """Anything a decoder accepted but has no typed shape for.

    The body is kept base64-encoded so the event stays JSON-serializable
    when it is stored on a retry job.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["opaque"] = "opaque"
    content_type: str | None = None
    body_b64: str

    @classmethod
    def from_bytes(cls, body: bytes, content_type: str | None = None) -> "OpaquePayload":
        return cls(content_type=content_type, body_b64=base64.b64encode(body).decode("ascii"))

    @property
    def raw(self) -> bytes:
        return base64.b64decode(self.body_b64)


EventPayload = Annotated[
    Union[OrderPayload, DeliveryStatusPayload, OpaquePayload],
    Field(discriminator="kind"),
]


def compute_idempotency_key(source_provider: str, native_event_id: str) -> str:
    """Deterministic dedup key from provider + the provider's own event id."""
    raw = f"{source_provider.strip().lower()}:{native_event_id}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class DomainEvent(BaseModel):
    """Immutable normalized representation of an inbound notification."""

    model_config = ConfigDict(frozen=True)

    event_type: EventType
    source_type: EndpointType
    source_provider: str
    native_event_id: str
    occurred_at: datetime
    payload: EventPayload
    idempotency_key: str

    @classmethod
    def build(
        cls,
        event_type: EventType,
        source_type: EndpointType,
        source_provider: str,
        native_event_id: str,
        occurred_at: datetime,
        payload: Any,
    ) -> "DomainEvent":
        return cls(
            event_type=event_type,
            source_type=source_type,
            source_provider=source_provider,
            native_event_id=native_event_id,
            occurred_at=occurred_at,
            payload=payload,
            idempotency_key=compute_idempotency_key(source_provider, native_event_id),
        )

    def summary(self) -> dict:
        """JSON-safe view used for log rows and retry job storage."""
        return self.model_dump(mode="json")
