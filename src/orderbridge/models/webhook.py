"""Pydantic models for webhook definitions and their logs."""

from datetime import datetime
from typing import Any

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from orderbridge.models.enums import EndpointType, EventType, WebhookLogStatus

_HTTP_URL = TypeAdapter(AnyHttpUrl)


def _non_empty(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise ValueError("must not be empty")
    return value


def _http_url(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    try:
        _HTTP_URL.validate_python(value)
    except ValueError:
        raise ValueError("must be an http or https URL") from None
    return value


def _unique_events(value: list[EventType] | None) -> list[EventType] | None:
    if value is None:
        return None
    if not value:
        raise ValueError("at least one event type is required")
    return list(dict.fromkeys(value))


class WebhookCreate(BaseModel):
    """Fields an owner supplies when registering a webhook."""

    model_config = ConfigDict(extra="forbid")

    name: str
    description: str | None = None
    source_type: EndpointType
    source_provider: str
    destination_type: EndpointType
    destination_provider: str
    endpoint_url: str
    event_types: list[EventType]
    is_active: bool = True

    @field_validator("name", "source_provider", "destination_provider")
    @classmethod
    def check_text(cls, value):
        return _non_empty(value)

    @field_validator("endpoint_url")
    @classmethod
    def check_url(cls, value):
        return _http_url(value)

    @field_validator("event_types")
    @classmethod
    def check_events(cls, value):
        return _unique_events(value)


class WebhookUpdate(BaseModel):
    """Partial update. Identity and secret fields are rejected upstream."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    description: str | None = None
    source_type: EndpointType | None = None
    source_provider: str | None = None
    destination_type: EndpointType | None = None
    destination_provider: str | None = None
    endpoint_url: str | None = None
    event_types: list[EventType] | None = None
    is_active: bool | None = None

    @field_validator("name", "source_provider", "destination_provider")
    @classmethod
    def check_text(cls, value):
        return _non_empty(value)

    @field_validator("endpoint_url")
    @classmethod
    def check_url(cls, value):
        return _http_url(value)

    @field_validator("event_types")
    @classmethod
    def check_events(cls, value):
        return _unique_events(value)


class WebhookDefinition(BaseModel):
    """A webhook as returned to the dashboard.

    Also used as the detached snapshot the router hands to dispatch jobs.
    """

    model_config = ConfigDict(from_attributes=True)

    webhook_id: str
    owner_id: str
    name: str
    description: str | None = None
    source_type: EndpointType
    source_provider: str
    destination_type: EndpointType
    destination_provider: str
    endpoint_url: str
    secret_key: str
    event_types: list[EventType]
    is_active: bool
    inbound_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class WebhookLogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    log_id: str
    webhook_id: str
    status: WebhookLogStatus
    event_type: str | None = None
    idempotency_key: str | None = None
    request_body: Any = None
    response_body: Any = None
    response_status: int | None = None
    error_message: str | None = None
    note: str | None = None
    is_replay: bool = False
    attempt_count: int = Field(1, ge=1)
    retry_job_id: str | None = None
    created_at: datetime | None = None
