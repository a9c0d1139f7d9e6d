"""JetGO courier capability."""

from __future__ import annotations

import logging

from orderbridge.integrations.providers.base import DeliveryProvider
from orderbridge.integrations.decoders.base import parse_timestamp
from orderbridge.models.delivery import DeliveryQuote, DeliveryRequest, DeliveryResult
from orderbridge.models.enums import DeliveryStatus

logger = logging.getLogger(__name__)

JETGO_STATUS_MAP: dict[str, DeliveryStatus] = {
    "created": DeliveryStatus.CREATED,
    "assigned": DeliveryStatus.ASSIGNED,
    "picked_up": DeliveryStatus.PICKED_UP,
    "in_progress": DeliveryStatus.IN_TRANSIT,
    "delivered": DeliveryStatus.DELIVERED,
    "canceled": DeliveryStatus.CANCELLED,
}


def _location(point) -> dict:
    location = {"name": point.name, "address": point.address, "phone": point.phone}
    if point.latitude is not None and point.longitude is not None:
        location["lat"] = point.latitude
        location["lng"] = point.longitude
    return location


class JetGoProvider(DeliveryProvider):
    name = "JetGO"
    status_map = JETGO_STATUS_MAP

    DEFAULT_BASE_URL = "https://api.jetgo.com"

    def __init__(self, base_url: str | None = None, timeout: float = 10.0, transport=None):
        super().__init__(base_url or self.DEFAULT_BASE_URL, timeout, transport)

    def _headers(self, integration) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {integration.api_key}"}
        merchant_id = (integration.settings or {}).get("merchant_id")
        if merchant_id:
            headers["X-Merchant-Id"] = str(merchant_id)
        return headers

    def _url(self, integration, path: str) -> str:
        base = (integration.settings or {}).get("base_url") or self.base_url
        return f"{base.rstrip('/')}/v1/{path}"

    async def get_quote(self, integration, request: DeliveryRequest) -> DeliveryQuote:
        body = await self._request(
            "POST",
            self._url(integration, "quotes"),
            headers=self._headers(integration),
            json={"pickup": _location(request.pickup), "dropoff": _location(request.dropoff)},
        )
        return DeliveryQuote(
            quote_id=str(body.get("quote_id", "")),
            fee=int(body.get("fee", 0)),
            currency=(body.get("currency") or request.currency).upper(),
            eta_minutes=body.get("eta_minutes"),
            expires_at=parse_timestamp(body.get("expires_at")),
        )

    async def create_delivery(self, integration, request: DeliveryRequest) -> DeliveryResult:
        headers = self._headers(integration)
        if request.idempotency_key:
            headers["Idempotency-Key"] = request.idempotency_key
        body = await self._request(
            "POST",
            self._url(integration, "deliveries"),
            headers=headers,
            json={
                "reference": request.external_reference,
                "pickup": _location(request.pickup),
                "dropoff": _location(request.dropoff),
                "items": [item.model_dump() for item in request.items],
                "order_value": request.order_value,
                "currency": request.currency,
                "notes": request.dropoff.instructions,
            },
        )
        provider_status = body.get("status") or "created"
        logger.info("JetGO delivery %s created (%s)", body.get("delivery_id"), provider_status)
        return DeliveryResult(
            external_id=str(body["delivery_id"]),
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
            self._url(integration, f"deliveries/{external_id}/cancel"),
            headers=self._headers(integration),
        )
        logger.info("JetGO delivery %s cancelled", external_id)
