"""Abstract delivery-provider capability."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from orderbridge.errors.exceptions import PermanentProviderError, TransientProviderError
from orderbridge.models.delivery import DeliveryQuote, DeliveryRequest, DeliveryResult
from orderbridge.models.enums import DeliveryStatus

logger = logging.getLogger(__name__)


class DeliveryProvider(ABC):
    """Creates and cancels deliveries with one courier network.

    ``integration`` is the owner's provider account (an ``IntegrationRow``):
    ``api_key`` plus provider-specific ``settings``.
    """

    name: str = "unknown"
    status_map: dict[str, DeliveryStatus] = {}

    def __init__(self, base_url: str | None = None, timeout: float = 10.0,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

    def map_status(self, provider_status: str) -> DeliveryStatus | None:
        return self.status_map.get((provider_status or "").strip().lower())

    @abstractmethod
    async def create_delivery(self, integration, request: DeliveryRequest) -> DeliveryResult:
        ...

    @abstractmethod
    async def cancel_delivery(self, integration, external_id: str) -> None:
        ...

    async def get_quote(self, integration, request: DeliveryRequest) -> DeliveryQuote:
        raise NotImplementedError(f"{self.name} does not support quotes")

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        json: Any = None,
        data: Any = None,
    ) -> dict:
        """Send one request and classify failures.

        Timeouts, connection errors, 429 and 5xx raise
        TransientProviderError; any other 4xx raises PermanentProviderError.
        """
        try:
            async with self._client() as client:
                response = await client.request(method, url, headers=headers, json=json, data=data)
        except httpx.TimeoutException as exc:
            raise TransientProviderError(self.name, f"timed out calling {url}") from exc
        except httpx.TransportError as exc:
            raise TransientProviderError(self.name, f"network error: {exc}") from exc

        body = _safe_json(response)
        if response.status_code == 429 or response.status_code >= 500:
            logger.warning("%s returned %s for %s %s", self.name, response.status_code, method, url)
            raise TransientProviderError(
                self.name, f"HTTP {response.status_code}", response.status_code, body
            )
        if response.status_code >= 400:
            logger.warning("%s rejected %s %s with %s", self.name, method, url, response.status_code)
            raise PermanentProviderError(
                self.name, _error_message(body, response.status_code), response.status_code, body
            )
        return body if isinstance(body, dict) else {}


def _safe_json(response: httpx.Response):
    try:
        return response.json()
    except ValueError:
        return response.text or None


def _error_message(body, status_code: int) -> str:
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {status_code}"


def require_setting(integration, key: str, provider: str) -> Any:
    """Read a required value from the integration's settings."""
    value = (getattr(integration, "settings", None) or {}).get(key)
    if not value:
        raise PermanentProviderError(provider, f"integration setting '{key}' is not configured")
    return value
