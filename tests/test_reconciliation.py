"""Tests for delivery status callbacks and order cancellation."""

import pytest

from conftest import shopify_headers, shopify_order, uber_callback
from orderbridge.errors.exceptions import InvalidTransitionError
from orderbridge.models.enums import DeliveryStatus
from orderbridge.services.reconciler import check_transition


@pytest.fixture
async def dispatched(ws):
    """An order dispatched to Uber plus a webhook receiving Uber status callbacks."""
    await ws.create_courier_account()
    inbound = await ws.create_webhook()
    await ws.deliver(inbound["secret_key"], shopify_order(), shopify_headers())
    status_hook = await ws.create_webhook(
        name="Uber status to Shopify",
        source_type="delivery",
        source_provider="UberDirect",
        destination_type="ecommerce",
        destination_provider="Shopify",
        endpoint_url="https://shop.test/hooks",
        event_types=["delivery.delivered"],
    )
    return status_hook


def test_transitions_only_move_forward():
    check_transition(DeliveryStatus.CREATED, DeliveryStatus.ASSIGNED)
    check_transition(DeliveryStatus.CREATED, DeliveryStatus.DELIVERED)
    check_transition(DeliveryStatus.IN_TRANSIT, DeliveryStatus.CANCELLED)
    for current, target in [
        (DeliveryStatus.ASSIGNED, DeliveryStatus.ASSIGNED),
        (DeliveryStatus.PICKED_UP, DeliveryStatus.ASSIGNED),
        (DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED),
        (DeliveryStatus.CANCELLED, DeliveryStatus.DELIVERED),
    ]:
        with pytest.raises(InvalidTransitionError):
            check_transition(current, target)


@pytest.mark.asyncio
async def test_status_progression_updates_order(ws, dispatched, forwarded):
    secret = dispatched["secret_key"]
    for i, status in enumerate(["pickup", "pickup_complete", "dropoff"]):
        response = await ws.deliver(secret, uber_callback("uber_dlv_1", status, f"evt_{i}"))
        assert response.status_code == 200
        assert response.json()["reconciliation"] == "applied"

    delivery = (await ws.get("/api/deliveries"))[0]
    assert delivery["status"] == "in_transit"
    assert delivery["provider_status"] == "dropoff"
    assert delivery["current_latitude"] == 39.79
    order = (await ws.get("/api/orders"))[0]
    assert order["status"] == "in_transit"
    assert order["fulfillment_status"] == "in_progress"
    # Only delivery.delivered is subscribed downstream.
    assert forwarded == []

    await ws.deliver(secret, uber_callback("uber_dlv_1", "delivered", "evt_9"))
    order = (await ws.get("/api/orders"))[0]
    assert order["status"] == "delivered"
    assert order["fulfillment_status"] == "fulfilled"
    assert len(forwarded) == 1
    assert forwarded[0].headers["X-OrderBridge-Event"] == "delivery.delivered"


@pytest.mark.asyncio
async def test_out_of_order_callback_is_ignored(ws, dispatched, forwarded):
    """A stale "assigned" after "delivered" leaves the delivery delivered."""
    secret = dispatched["secret_key"]
    first = await ws.deliver(secret, uber_callback("uber_dlv_1", "delivered", "evt_a"))
    second = await ws.deliver(secret, uber_callback("uber_dlv_1", "pickup", "evt_b"))
    assert first.status_code == second.status_code == 200
    assert first.json()["reconciliation"] == "applied"
    assert second.json()["reconciliation"] == "ignored"

    assert (await ws.get("/api/deliveries"))[0]["status"] == "delivered"
    assert (await ws.get("/api/orders"))[0]["status"] == "delivered"
    assert len(forwarded) == 1

    logs = await ws.logs(dispatched["webhook_id"])
    assert all(log["status"] == "success" for log in logs)
    notes = [log["note"] or "" for log in logs]
    assert any(note.startswith("ignored:") for note in notes)
    assert any(note == "created -> delivered" for note in notes)


@pytest.mark.asyncio
async def test_callback_for_unknown_delivery(ws, dispatched):
    response = await ws.deliver(dispatched["secret_key"], uber_callback("uber_dlv_404", "delivered", "evt_x"))
    assert response.status_code == 200
    assert response.json()["reconciliation"] == "unknown_delivery"
    logs = await ws.logs(dispatched["webhook_id"])
    assert logs[0]["status"] == "failed"
    assert logs[0]["note"] == "unknown delivery"


@pytest.mark.asyncio
async def test_duplicate_callback_is_replayed(ws, dispatched):
    body = uber_callback("uber_dlv_1", "pickup", "evt_dup")
    await ws.deliver(dispatched["secret_key"], body)
    response = await ws.deliver(dispatched["secret_key"], body)
    assert response.json()["status"] == "replayed"
    assert (await ws.get("/api/deliveries"))[0]["status"] == "assigned"


@pytest.mark.asyncio
async def test_completed_subscription_receives_delivered(client, ws, dispatched, forwarded):
    await client.patch(
        f"/api/webhooks/{dispatched['webhook_id']}",
        json={"event_types": ["delivery.completed"]},
        headers=ws.headers,
    )
    await ws.deliver(dispatched["secret_key"], uber_callback("uber_dlv_1", "delivered", "evt_c"))
    assert len(forwarded) == 1


@pytest.mark.asyncio
async def test_callbacks_do_not_cross_owners(ws, other_ws, dispatched):
    """Another owner's status webhook cannot touch this owner's delivery."""
    foreign = await other_ws.create_webhook(
        source_type="delivery",
        source_provider="UberDirect",
        destination_type="ecommerce",
        destination_provider="Shopify",
        endpoint_url="https://shop.test/hooks",
        event_types=["delivery.delivered"],
    )
    response = await other_ws.deliver(foreign["secret_key"], uber_callback("uber_dlv_1", "delivered", "evt_f"))
    assert response.json()["reconciliation"] == "unknown_delivery"
    assert (await ws.get("/api/deliveries"))[0]["status"] == "created"


@pytest.mark.asyncio
async def test_jetgo_callback(ws):
    """JetGO callbacks are matched on the JetGO provider only."""
    webhook = await ws.create_webhook(
        source_type="delivery",
        source_provider="JetGO",
        destination_type="ecommerce",
        destination_provider="Custom",
        endpoint_url="https://erp.test/hooks",
        event_types=["delivery.in_transit"],
    )
    response = await ws.deliver(webhook["secret_key"], {"delivery_id": "jg_1", "status": "in_progress"})
    assert response.status_code == 200
    assert response.json()["event_type"] == "delivery.in_transit"
    assert response.json()["reconciliation"] == "unknown_delivery"


@pytest.mark.asyncio
async def test_order_cancellation_cancels_delivery(ws, courier):
    await ws.create_courier_account()
    webhook = await ws.create_webhook()
    await ws.deliver(webhook["secret_key"], shopify_order(), shopify_headers())

    response = await ws.deliver(
        webhook["secret_key"], shopify_order(), shopify_headers(topic="orders/cancelled", webhook_id="cancel-1")
    )
    assert response.status_code == 200
    assert response.json()["jobs"][0]["status"] == "success"
    assert courier.cancelled == ["uber_dlv_1"]

    delivery = (await ws.get("/api/deliveries"))[0]
    assert delivery["status"] == "cancelled"
    order = (await ws.get("/api/orders"))[0]
    assert order["status"] == "cancelled"
    assert order["fulfillment_status"] == "delivery_cancelled"


@pytest.mark.asyncio
async def test_cancellation_without_delivery(ws, courier):
    await ws.create_courier_account()
    webhook = await ws.create_webhook(event_types=["order.cancelled"])
    response = await ws.deliver(
        webhook["secret_key"], shopify_order(), shopify_headers(topic="orders/cancelled", webhook_id="cancel-2")
    )
    assert response.json()["jobs"][0]["note"] == "no active delivery to cancel"
    assert courier.cancelled == []
    assert (await ws.get("/api/orders"))[0]["status"] == "cancelled"
