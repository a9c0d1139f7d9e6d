"""Request/response shapes exchanged with delivery-provider capabilities."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from orderbridge.models.enums import DeliveryStatus
from orderbridge.models.events import ContactPoint, OrderItem


class DeliveryRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    pickup: ContactPoint
    dropoff: ContactPoint
    items: tuple[OrderItem, ...] = ()
    order_value: int = 0
    currency: str = "USD"
    external_reference: str | None = None
    idempotency_key: str | None = None


class DeliveryResult(BaseModel):
    """Provider's answer to a create-delivery call."""

    external_id: str
    status: DeliveryStatus = DeliveryStatus.CREATED
    provider_status: str | None = None
    tracking_url: str | None = None
    fee: int | None = None
    currency: str | None = None
    pickup_eta: datetime | None = None
    dropoff_eta: datetime | None = None
    raw: dict[str, Any] = Field(default_factory=dict)


class DeliveryQuote(BaseModel):
    quote_id: str
    fee: int
    currency: str
    eta_minutes: int | None = None
    expires_at: datetime | None = None
