"""Uber Direct delivery capability (REST v1, OAuth client credentials)."""

from __future__ import annotations

import logging
import time

from orderbridge.integrations.providers.base import DeliveryProvider, require_setting
from orderbridge.integrations.decoders.base import parse_timestamp
from orderbridge.models.delivery import DeliveryQuote, DeliveryRequest, DeliveryResult
from orderbridge.models.enums import DeliveryStatus

logger = logging.getLogger(__name__)

UBER_STATUS_MAP: dict[str, DeliveryStatus] = {
    "pending": DeliveryStatus.CREATED,
    "processing": DeliveryStatus.CREATED,
    "pickup": DeliveryStatus.ASSIGNED,
    "picking_up": DeliveryStatus.ASSIGNED,
    "pickup_complete": DeliveryStatus.PICKED_UP,
    "picked_up": DeliveryStatus.PICKED_UP,
    "dropoff": DeliveryStatus.IN_TRANSIT,
    "delivering": DeliveryStatus.IN_TRANSIT,
    "delivered": DeliveryStatus.DELIVERED,
    "canceled": DeliveryStatus.CANCELLED,
    "returned": DeliveryStatus.CANCELLED,
}


def _manifest(request: DeliveryRequest) -> list[dict]:
    return [
        {"name": item.name, "quantity": item.quantity, "price": item.price}
        for item in request.items
    ]


class UberDirectProvider(DeliveryProvider):
    """Integration settings: ``customer_id`` and ``client_id``; ``api_key`` is the client secret."""

    name = "UberDirect"
    status_map = UBER_STATUS_MAP

    DEFAULT_BASE_URL = "https://api.uber.com/v1"
    TOKEN_URL = "https://login.uber.com/oauth/v2/token"

    def __init__(self, base_url: str | None = None, timeout: float = 10.0, transport=None,
                 token_url: str | None = None):
        super().__init__(base_url or self.DEFAULT_BASE_URL, timeout, transport)
        self.token_url = token_url or self.TOKEN_URL
        # client_id -> (token, expires_at monotonic)
        self._tokens: dict[str, tuple[str, float]] = {}

    async def _access_token(self, integration) -> str:
        client_id = require_setting(integration, "client_id", self.name)
        cached = self._tokens.get(client_id)
        if cached and cached[1] > time.monotonic():
            return cached[0]

        body = await self._request(
            "POST",
            self.token_url,
            data={
                "client_id": client_id,
                "client_secret": integration.api_key,
                "grant_type": "client_credentials",
                "scope": "eats.deliveries",
            },
        )
        token = body.get("access_token", "")
        ttl = float(body.get("expires_in", 3600))
        # refresh a minute early
        self._tokens[client_id] = (token, time.monotonic() + max(ttl - 60, 0))
        return token

    async def _headers(self, integration) -> dict[str, str]:
        return {"Authorization": f"Bearer {await self._access_token(integration)}"}

    def _customer_url(self, integration, path: str) -> str:
        customer_id = require_setting(integration, "customer_id", self.name)
        return f"{self.base_url.rstrip('/')}/customers/{customer_id}/{path}"

    async def get_quote(self, integration, request: DeliveryRequest) -> DeliveryQuote:
        body = await self._request(
            "POST",
            self._customer_url(integration, "delivery_quotes"),
            headers=await self._headers(integration),
            json={
                "pickup_address": request.pickup.address,
                "dropoff_address": request.dropoff.address,
            },
        )
        return DeliveryQuote(
            quote_id=str(body.get("id", "")),
            fee=int(body.get("fee", 0)),
            currency=(body.get("currency") or request.currency).upper(),
            eta_minutes=body.get("duration"),
            expires_at=parse_timestamp(body.get("expires")),
        )

    async def create_delivery(self, integration, request: DeliveryRequest) -> DeliveryResult:
        payload = {
            "pickup_name": request.pickup.name,
            "pickup_address": request.pickup.address,
            "pickup_phone_number": request.pickup.phone,
            "dropoff_name": request.dropoff.name,
            "dropoff_address": request.dropoff.address,
            "dropoff_phone_number": request.dropoff.phone,
            "dropoff_notes": request.dropoff.instructions,
            "manifest_items": _manifest(request),
            "manifest_total_value": request.order_value,
            "external_id": request.external_reference,
            "idempotency_key": request.idempotency_key,
        }
        if request.pickup.latitude is not None:
            payload["pickup_latitude"] = request.pickup.latitude
            payload["pickup_longitude"] = request.pickup.longitude
        if request.dropoff.latitude is not None:
            payload["dropoff_latitude"] = request.dropoff.latitude
            payload["dropoff_longitude"] = request.dropoff.longitude

        body = await self._request(
            "POST",
            self._customer_url(integration, "deliveries"),
            headers=await self._headers(integration),
            json=payload,
        )
        provider_status = body.get("status") or "pending"
        logger.info("Uber Direct delivery %s created (%s)", body.get("id"), provider_status)
        return DeliveryResult(
            external_id=str(body["id"]),
            status=self.map_status(provider_status) or DeliveryStatus.CREATED,
            provider_status=provider_status,
            tracking_url=body.get("tracking_url"),
            fee=body.get("fee"),
            currency=(body.get("currency") or request.currency).upper(),
            pickup_eta=parse_timestamp(body.get("pickup_eta")),
            dropoff_eta=parse_timestamp(body.get("dropoff_eta")),
            raw=body,
        )

    async def cancel_delivery(self, integration, external_id: str) -> None:
        await self._request(
            "POST",
            self._customer_url(integration, f"deliveries/{external_id}/cancel"),
            headers=await self._headers(integration),
        )
        logger.info("Uber Direct delivery %s cancelled", external_id)
