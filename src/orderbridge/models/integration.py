"""Pydantic models for provider accounts, orders, deliveries and retry jobs."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from orderbridge.models.enums import IntegrationType
from orderbridge.models.events import ContactPoint, OrderItem


class IntegrationCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    integration_type: IntegrationType
    provider: str = Field(..., min_length=1, max_length=100)
    api_key: str | None = None
    settings: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = False

    @field_validator("provider")
    @classmethod
    def strip_provider(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value


class IntegrationUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    api_key: str | None = None
    settings: dict[str, Any] | None = None
    is_active: bool | None = None


class IntegrationView(BaseModel):
    """Integration as shown to the dashboard. The API key is never echoed back."""

    model_config = ConfigDict(from_attributes=True)

    integration_id: str
    integration_type: IntegrationType
    provider: str
    settings: dict[str, Any] | None = None
    is_active: bool
    has_api_key: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class OrderView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: str
    order_number: str
    external_id: str | None = None
    source: str
    status: str
    payment_status: str
    fulfillment_status: str
    total_amount: int
    currency: str
    customer_id: str | None = None
    customer: dict[str, Any] | None = None
    pickup: dict[str, Any] | None = None
    items: list[dict[str, Any]] = Field(default_factory=list)
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class DeliveryView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    delivery_id: str
    order_id: str | None = None
    integration_id: str | None = None
    provider: str
    external_id: str | None = None
    status: str
    provider_status: str | None = None
    tracking_url: str | None = None
    pickup_name: str | None = None
    pickup_address: str
    pickup_phone: str | None = None
    dropoff_name: str | None = None
    dropoff_address: str
    dropoff_phone: str | None = None
    current_latitude: float | None = None
    current_longitude: float | None = None
    pickup_eta: datetime | None = None
    dropoff_eta: datetime | None = None
    fee: int | None = None
    currency: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class DeliveryTestRequest(BaseModel):
    """Body of ``POST /api/deliveries/test`` and ``/api/deliveries/quote``."""

    model_config = ConfigDict(extra="forbid")

    provider: str = Field(..., min_length=1)
    pickup: ContactPoint
    dropoff: ContactPoint
    items: list[OrderItem] = Field(default_factory=list)
    order_value: int = Field(0, ge=0)
    currency: str = "USD"
    reference: str | None = None


class RetryJobView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_id: str
    webhook_id: str
    idempotency_key: str
    status: str
    attempt_count: int
    max_attempts: int
    next_attempt_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
