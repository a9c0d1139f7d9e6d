"""End-to-end tests: a store order arrives and a courier delivery is dispatched."""

import pytest

from conftest import shopify_headers, shopify_order
from orderbridge.errors.exceptions import PermanentProviderError
from orderbridge.integrations.signatures import sign_base64


@pytest.fixture
async def shop_to_uber(ws):
    await ws.create_courier_account()
    return await ws.create_webhook()


@pytest.mark.asyncio
async def test_order_created_dispatches_delivery(ws, courier, shop_to_uber):
    """SHOP-100 creates one order, one Uber delivery and one success log."""
    response = await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())
    assert response.status_code == 200
    result = response.json()
    assert result["status"] == "accepted"
    assert result["event_type"] == "order.created"
    assert [job["status"] for job in result["jobs"]] == ["success"]

    orders = await ws.get("/api/orders")
    assert len(orders) == 1
    order = orders[0]
    assert order["order_number"] == "SHOP-100"
    assert order["total_amount"] == 4197
    assert order["status"] == "received"
    assert order["fulfillment_status"] == "dispatched"
    assert order["payment_status"] == "paid"

    detail = await ws.get(f"/api/orders/{order['order_id']}")
    assert len(detail["deliveries"]) == 1
    delivery = detail["deliveries"][0]
    assert delivery["provider"] == "uberdirect"
    assert delivery["external_id"] == "uber_dlv_1"
    assert delivery["status"] == "created"
    assert delivery["pickup_address"] == "1 Market St, Springfield, IL 62701"
    assert delivery["dropoff_address"] == "123 Main St, Springfield, IL 62701, US"

    request = courier.created[0]
    assert request.external_reference == "SHOP-100"
    assert request.order_value == 4197
    assert request.dropoff.phone == "+15555550100"
    assert request.idempotency_key == result["idempotency_key"]

    logs = await ws.logs(shop_to_uber["webhook_id"])
    assert [log["status"] for log in logs] == ["success"]
    assert logs[0]["response_status"] == 201
    assert logs[0]["idempotency_key"] == result["idempotency_key"]


@pytest.mark.asyncio
async def test_redelivery_is_replayed(ws, courier, shop_to_uber):
    """The same notification twice leaves one delivery and a replay log."""
    first = await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())
    second = await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())
    assert first.status_code == second.status_code == 200
    assert second.json()["status"] == "replayed"
    assert second.json()["previous_log_id"] == first.json()["jobs"][0]["log_id"]

    assert len(courier.created) == 1
    assert len(await ws.get("/api/deliveries")) == 1
    logs = await ws.logs(shop_to_uber["webhook_id"])
    assert len(logs) == 2
    replays = [log for log in logs if log["is_replay"]]
    assert len(replays) == 1
    assert replays[0]["status"] == "success"


@pytest.mark.asyncio
async def test_second_create_for_same_order_does_not_dispatch_again(ws, courier, shop_to_uber):
    """A fresh notification id for an order with an active delivery is a no-op."""
    await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())
    response = await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers(webhook_id="retry-2"))
    assert response.json()["status"] == "accepted"
    assert response.json()["jobs"][0]["note"] == "delivery already active"
    assert len(courier.created) == 1


@pytest.mark.asyncio
async def test_missing_phone_fails_without_retry(ws, courier, shop_to_uber):
    """Orders lacking a dropoff phone never reach the provider."""
    response = await ws.deliver(shop_to_uber["secret_key"], shopify_order(phone=None), shopify_headers())
    assert response.status_code == 200
    assert response.json()["jobs"][0]["status"] == "failed"
    assert courier.created == []

    order = (await ws.get("/api/orders"))[0]
    assert order["fulfillment_status"] == "dispatch_failed"
    logs = await ws.logs(shop_to_uber["webhook_id"])
    assert logs[0]["status"] == "failed"
    assert "dropoff.phone" in logs[0]["error_message"]
    assert await ws.get("/api/retry-jobs") == []


@pytest.mark.asyncio
async def test_provider_rejection_is_permanent(ws, courier, shop_to_uber):
    courier.script.append(PermanentProviderError("UberDirect", "address not serviceable", 422))
    response = await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())
    assert response.json()["jobs"][0]["status"] == "failed"
    assert (await ws.get("/api/orders"))[0]["fulfillment_status"] == "dispatch_failed"
    logs = await ws.logs(shop_to_uber["webhook_id"])
    assert logs[0]["response_status"] == 422
    assert logs[0]["note"] == "not retried"
    assert await ws.get("/api/retry-jobs") == []


@pytest.mark.asyncio
async def test_missing_courier_account_fails(ws, courier):
    webhook = await ws.create_webhook()
    response = await ws.deliver(webhook["secret_key"], shopify_order(), shopify_headers())
    assert response.json()["jobs"][0]["status"] == "failed"
    assert courier.created == []
    logs = await ws.logs(webhook["webhook_id"])
    assert "no active delivery integration" in logs[0]["error_message"]


@pytest.mark.asyncio
async def test_unmatched_event_is_logged_once(ws, shop_to_uber):
    """An event nobody subscribes to is acknowledged, logged, then replayed."""
    headers = shopify_headers(topic="orders/updated", webhook_id="upd-1")
    first = await ws.deliver(shop_to_uber["secret_key"], shopify_order(), headers)
    assert first.status_code == 200
    assert first.json()["jobs"][0]["note"] == "no subscriber"

    logs = await ws.logs(shop_to_uber["webhook_id"])
    assert len(logs) == 1
    assert logs[0]["status"] == "success"
    assert logs[0]["note"] == "no active webhook subscribed to order.updated"

    second = await ws.deliver(shop_to_uber["secret_key"], shopify_order(), headers)
    assert second.json()["status"] == "replayed"
    assert len(await ws.logs(shop_to_uber["webhook_id"])) == 2


@pytest.mark.asyncio
async def test_one_crashing_job_does_not_block_others(ws, courier, forwarded):
    """Each matching webhook runs on its own; a crash in one is contained and retried."""
    await ws.create_courier_account()
    erp = await ws.create_webhook(
        name="Orders to ERP",
        destination_type="ecommerce",
        destination_provider="Custom",
        endpoint_url="https://broken.test/orders",
        event_types=["order.created"],
    )
    uber = await ws.create_webhook()

    response = await ws.deliver(uber["secret_key"], shopify_order(), shopify_headers())
    assert response.status_code == 200
    jobs = {job["webhook_id"]: job for job in response.json()["jobs"]}
    assert jobs[erp["webhook_id"]]["status"] == "retry_scheduled"
    assert jobs[erp["webhook_id"]]["note"] == "internal error"
    assert jobs[uber["webhook_id"]]["status"] == "success"
    assert len(courier.created) == 1
    assert len(forwarded) == 1

    erp_logs = await ws.logs(erp["webhook_id"])
    assert erp_logs[0]["status"] == "failed"
    assert "downstream exploded" in erp_logs[0]["error_message"]

    retry_jobs = await ws.get("/api/retry-jobs")
    assert [job["webhook_id"] for job in retry_jobs] == [erp["webhook_id"]]
    assert retry_jobs[0]["status"] == "pending"
    assert "RuntimeError" in retry_jobs[0]["last_error"]


@pytest.mark.asyncio
async def test_forward_to_store_endpoint_is_signed(ws, forwarded):
    """Non-delivery destinations receive a signed JSON envelope."""
    webhook = await ws.create_webhook(
        destination_type="ecommerce",
        destination_provider="Custom",
        endpoint_url="https://erp.test/orders",
        event_types=["order.created"],
    )
    response = await ws.deliver(webhook["secret_key"], shopify_order(), shopify_headers())
    assert response.json()["jobs"][0]["status"] == "success"

    request = forwarded[0]
    assert str(request.url) == "https://erp.test/orders"
    assert request.headers["X-OrderBridge-Event"] == "order.created"
    assert request.headers["X-OrderBridge-Idempotency-Key"] == response.json()["idempotency_key"]
    assert request.headers["X-OrderBridge-Signature"].startswith("sha256=")


@pytest.mark.asyncio
async def test_forward_rejected_by_store_is_not_retried(ws):
    webhook = await ws.create_webhook(
        destination_type="ecommerce",
        destination_provider="Custom",
        endpoint_url="https://reject.test/orders",
        event_types=["order.created"],
    )
    response = await ws.deliver(webhook["secret_key"], shopify_order(), shopify_headers())
    assert response.json()["jobs"][0]["status"] == "failed"
    logs = await ws.logs(webhook["webhook_id"])
    assert logs[0]["response_status"] == 400
    assert await ws.get("/api/retry-jobs") == []


@pytest.mark.asyncio
async def test_unknown_secret_is_404(ws):
    response = await ws.deliver("not-a-real-secret", shopify_order(), shopify_headers())
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_inactive_webhook_is_404(client, ws, shop_to_uber):
    await client.patch(
        f"/api/webhooks/{shop_to_uber['webhook_id']}", json={"is_active": False}, headers=ws.headers
    )
    response = await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())
    assert response.status_code == 404
    assert await ws.logs(shop_to_uber["webhook_id"]) == []


@pytest.mark.asyncio
async def test_undecodable_body_is_400_and_logged(ws, shop_to_uber):
    response = await ws.deliver(shop_to_uber["secret_key"], shopify_order(), {"Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "PAYLOAD_DECODE_ERROR"
    logs = await ws.logs(shop_to_uber["webhook_id"])
    assert logs[0]["status"] == "failed"
    assert logs[0]["request_body"]["name"] == "SHOP-100"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "mutate",
    [
        lambda order: order["line_items"][0].update(quantity="two"),
        lambda order: order.update(shipping_address="123 Main St"),
        lambda order: order.update(line_items=["burger"]),
    ],
    ids=["quantity-not-a-number", "address-not-an-object", "item-not-an-object"],
)
async def test_wrongly_typed_field_is_400_and_logged(ws, courier, shop_to_uber, mutate):
    """Valid JSON with a field of the wrong type is rejected like any other bad payload."""
    payload = shopify_order()
    mutate(payload)
    response = await ws.deliver(shop_to_uber["secret_key"], payload, shopify_headers())
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "PAYLOAD_DECODE_ERROR"

    logs = await ws.logs(shop_to_uber["webhook_id"])
    assert len(logs) == 1
    assert logs[0]["status"] == "failed"
    assert logs[0]["request_body"]["name"] == "SHOP-100"
    assert courier.created == []
    assert await ws.get("/api/orders") == []


@pytest.mark.asyncio
async def test_signature_checked_when_sent(ws, shop_to_uber):
    import json

    payload = shopify_order()
    body = json.dumps(payload).encode()
    headers = shopify_headers()

    bad = dict(headers, **{"X-Shopify-Hmac-Sha256": sign_base64(body, "wrong-secret")})
    response = await ws.deliver(shop_to_uber["secret_key"], payload, bad)
    assert response.status_code == 401

    good = dict(headers, **{"X-Shopify-Hmac-Sha256": sign_base64(body, shop_to_uber["secret_key"])})
    response = await ws.deliver(shop_to_uber["secret_key"], payload, good)
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_orders_are_owner_scoped(client, ws, other_ws, shop_to_uber):
    await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())
    order_id = (await ws.get("/api/orders"))[0]["order_id"]
    assert await other_ws.get("/api/orders") == []
    response = await client.get(f"/api/orders/{order_id}", headers=other_ws.headers)
    assert response.status_code == 404
