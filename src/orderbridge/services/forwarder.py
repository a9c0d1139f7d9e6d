"""Outbound forwarder for webhooks whose destination is an e-commerce endpoint."""

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from orderbridge.errors.exceptions import PermanentProviderError, TransientProviderError
from orderbridge.integrations.signatures import sign_hex
from orderbridge.models.events import DomainEvent
from orderbridge.models.webhook import WebhookDefinition

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-OrderBridge-Signature"


@dataclass
class ForwardResult:
    status_code: int
    body: Any


class Forwarder:
    """POSTs the normalized event to ``endpoint_url``, signed with the webhook secret."""

    def __init__(self, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None):
        self.timeout = timeout
        self._transport = transport

    @staticmethod
    def envelope(event: DomainEvent) -> dict:
        summary = event.summary()
        return {
            "event_id": event.idempotency_key,
            "event_type": summary["event_type"],
            "source_type": summary["source_type"],
            "source_provider": summary["source_provider"],
            "occurred_at": summary["occurred_at"],
            "payload": summary["payload"],
        }

    async def send(self, definition: WebhookDefinition, event: DomainEvent) -> ForwardResult:
        body = json.dumps(self.envelope(event), separators=(",", ":")).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: f"sha256={sign_hex(body, definition.secret_key)}",
            "X-OrderBridge-Event": event.event_type.value,
            "X-OrderBridge-Idempotency-Key": event.idempotency_key,
        }
        target = definition.destination_provider
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(definition.endpoint_url, content=body, headers=headers)
        except httpx.TimeoutException as exc:
            raise TransientProviderError(target, f"timed out posting to {definition.endpoint_url}") from exc
        except httpx.TransportError as exc:
            raise TransientProviderError(target, f"network error: {exc}") from exc

        try:
            response_body = response.json()
        except ValueError:
            response_body = response.text or None

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientProviderError(target, f"HTTP {response.status_code}", response.status_code, response_body)
        if response.status_code >= 400:
            raise PermanentProviderError(target, f"HTTP {response.status_code}", response.status_code, response_body)

        logger.info("Forwarded %s to %s (%s)", event.event_type.value, definition.endpoint_url, response.status_code)
        return ForwardResult(response.status_code, response_body)
