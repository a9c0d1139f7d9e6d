"""Shared test fixtures."""

import asyncio
import json
import os
import random
import time

# Settings are read at import time; disable the Redis-backed limiter first.
os.environ.setdefault("ORDERBRIDGE_RATE_LIMIT_ENABLED", "0")
os.environ.setdefault("ORDERBRIDGE_LOCAL_MODE", "1")

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from orderbridge.bridge import OrderBridge
from orderbridge.config import settings
from orderbridge.db.base import Base
# Import all models to register with Base.metadata
import orderbridge.db.models  # noqa: F401
from orderbridge.integrations.decoders.registry import default_decoders
from orderbridge.integrations.providers.base import DeliveryProvider
from orderbridge.integrations.providers.registry import ProviderRegistry
from orderbridge.integrations.providers.uberdirect import UBER_STATUS_MAP
from orderbridge.models.delivery import DeliveryQuote, DeliveryResult
from orderbridge.models.enums import DeliveryStatus
from orderbridge.services.forwarder import Forwarder
from orderbridge.services.locks import KeyedLock
from orderbridge.services.retry import RetryPolicy

HANG = "hang"

STORE_PICKUP = {
    "name": "Downtown Kitchen",
    "address": "1 Market St, Springfield, IL 62701",
    "phone": "+15555550199",
}


class FakeCourier(DeliveryProvider):
    """In-memory UberDirect stand-in.

    ``script`` is consumed one entry per create call: an exception is
    raised, ``HANG`` sleeps past the dispatcher timeout.
    """

    name = "UberDirect"
    status_map = UBER_STATUS_MAP

    def __init__(self):
        super().__init__()
        self.script: list = []
        self.created = []
        self.cancelled = []

    async def create_delivery(self, integration, request):
        if self.script:
            step = self.script.pop(0)
            if step == HANG:
                await asyncio.sleep(5)
            else:
                raise step
        self.created.append(request)
        return DeliveryResult(
            external_id=f"uber_dlv_{len(self.created)}",
            status=DeliveryStatus.CREATED,
            provider_status="pending",
            tracking_url=f"https://track.test/{len(self.created)}",
            fee=599,
            currency="USD",
        )

    async def cancel_delivery(self, integration, external_id):
        self.cancelled.append(external_id)

    async def get_quote(self, integration, request):
        return DeliveryQuote(quote_id="dqt_1", fee=599, currency="USD", eta_minutes=25)


def make_token(owner_id: str) -> str:
    return jwt.encode(
        {
            "sub": owner_id,
            "iss": settings.jwt_issuer,
            "aud": settings.jwt_audience,
            "exp": int(time.time()) + 3600,
        },
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


def shopify_order(order_number: str = "SHOP-100", order_id: int = 820982911946154508, phone: str | None = "+15555550100") -> dict:
    return {
        "id": order_id,
        "name": order_number,
        "email": "jon@example.com",
        "created_at": "2026-10-18T10:00:00-04:00",
        "updated_at": "2026-10-18T10:00:05-04:00",
        "currency": "USD",
        "total_price": "41.97",
        "financial_status": "paid",
        "note": "Ring the bell",
        "customer": {"first_name": "Jon", "last_name": "Snow", "email": "jon@example.com"},
        "shipping_address": {
            "name": "Jon Snow",
            "address1": "123 Main St",
            "city": "Springfield",
            "province_code": "IL",
            "zip": "62701",
            "country_code": "US",
            "phone": phone,
            "latitude": 39.78,
            "longitude": -89.65,
        },
        "line_items": [
            {"title": "Falafel Wrap", "quantity": 2, "price": "9.99"},
            {"title": "Hummus Plate", "quantity": 1, "price": "21.99"},
        ],
    }


def shopify_headers(topic: str = "orders/create", webhook_id: str = "b54557e4-bdd9-4b37-8a5f-bf7d70bcd043") -> dict:
    return {
        "Content-Type": "application/json",
        "X-Shopify-Topic": topic,
        "X-Shopify-Webhook-Id": webhook_id,
    }


def uber_callback(external_id: str, status: str, event_id: str) -> dict:
    return {
        "event_id": event_id,
        "kind": "event.delivery_status",
        "delivery_id": external_id,
        "status": status,
        "data": {
            "id": external_id,
            "status": status,
            "courier": {"name": "Sam", "location": {"lat": 39.79, "lng": -89.64}},
            "dropoff_eta": "2026-10-18T15:30:00Z",
        },
    }


class Workspace:
    """Drives the dashboard and inbound APIs for one owner."""

    def __init__(self, client: AsyncClient, owner_id: str = "owner_a"):
        self.client = client
        self.owner_id = owner_id
        self.headers = {"Authorization": f"Bearer {make_token(owner_id)}"}

    async def create_webhook(self, **overrides) -> dict:
        body = {
            "name": "Shopify to Uber",
            "source_type": "ecommerce",
            "source_provider": "Shopify",
            "destination_type": "delivery",
            "destination_provider": "UberDirect",
            "endpoint_url": "https://api.uber.com/v1",
            "event_types": ["order.created", "order.cancelled"],
        }
        body.update(overrides)
        r = await self.client.post("/api/webhooks", json=body, headers=self.headers)
        assert r.status_code == 201, r.text
        return r.json()

    async def create_courier_account(self, provider: str = "UberDirect", **settings_overrides) -> dict:
        body = {
            "integration_type": "delivery",
            "provider": provider,
            "api_key": "sk_test",
            "settings": {"customer_id": "cust_1", "client_id": "cli_1", "pickup": STORE_PICKUP, **settings_overrides},
            "is_active": True,
        }
        r = await self.client.post("/api/integrations", json=body, headers=self.headers)
        assert r.status_code == 201, r.text
        return r.json()

    async def deliver(self, secret_key: str, payload: dict, headers: dict | None = None) -> httpx.Response:
        return await self.client.post(
            f"/api/webhook/{secret_key}",
            content=json.dumps(payload),
            headers=headers or {"Content-Type": "application/json"},
        )

    async def get(self, path: str, **params) -> list | dict:
        r = await self.client.get(path, headers=self.headers, params=params)
        assert r.status_code == 200, r.text
        return r.json()

    async def logs(self, webhook_id: str) -> list[dict]:
        return await self.get(f"/api/webhooks/{webhook_id}/logs")


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///", echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def courier():
    return FakeCourier()


@pytest.fixture
def forwarded():
    """Requests received by downstream e-commerce endpoints."""
    return []


@pytest.fixture
def bridge(courier, forwarded):
    def handler(request: httpx.Request) -> httpx.Response:
        forwarded.append(request)
        if request.url.host == "broken.test":
            raise RuntimeError("downstream exploded")
        if request.url.host == "reject.test":
            return httpx.Response(400, json={"error": "bad payload"})
        return httpx.Response(200, json={"received": True})

    providers = ProviderRegistry()
    providers.register(courier)
    return OrderBridge(
        decoders=default_decoders(),
        providers=providers,
        forwarder=Forwarder(timeout=1.0, transport=httpx.MockTransport(handler)),
        locks=KeyedLock(),
        policy=RetryPolicy(base_delay=1.0, max_delay=10.0, max_attempts=5),
        provider_timeout=0.05,
        public_base_url="http://test",
        rng=random.Random(7),
    )


@pytest.fixture
def app(db_engine, session_factory, bridge):
    """Create a test application instance with in-memory DB."""
    from orderbridge.main import create_app

    _app = create_app()
    _app.state.db_engine = db_engine
    _app.state.db_session_factory = session_factory
    _app.state.redis = None
    _app.state.bridge = bridge
    return _app


@pytest.fixture
async def client(app):
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def ws(client):
    return Workspace(client, "owner_a")


@pytest.fixture
def other_ws(client):
    return Workspace(client, "owner_b")
