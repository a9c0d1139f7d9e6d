"""Tests for transient-failure retries and the retry worker."""

import random
from datetime import datetime, timedelta, timezone

import pytest

from conftest import HANG, shopify_headers, shopify_order
from orderbridge.errors.exceptions import TransientProviderError
from orderbridge.services.retry import RetryPolicy
from orderbridge.workers.retry_worker import process_due_retries


def _later(hours: int = 1) -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=hours)


def test_backoff_grows_and_is_capped():
    policy = RetryPolicy(base_delay=30, max_delay=300, max_attempts=5, jitter_ratio=0.5)
    rng = random.Random(1)
    for attempt, ceiling in [(1, 30), (2, 60), (3, 120), (4, 240), (5, 300), (9, 300)]:
        delay = policy.delay_for(attempt, rng)
        assert ceiling / 2 <= delay <= ceiling


def test_backoff_without_jitter_is_exact():
    policy = RetryPolicy(base_delay=10, max_delay=1000, jitter_ratio=0)
    assert policy.delay_for(1) == 10
    assert policy.delay_for(3) == 40


@pytest.fixture
async def shop_to_uber(ws):
    await ws.create_courier_account()
    return await ws.create_webhook()


@pytest.mark.asyncio
async def test_three_timeouts_then_success(ws, courier, bridge, session_factory, shop_to_uber):
    """Attempts 1-3 time out, attempt 4 succeeds: four logs, one delivery."""
    courier.script.extend([HANG, HANG, HANG])

    response = await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())
    assert response.status_code == 200
    assert response.json()["jobs"][0]["status"] == "retry_scheduled"

    jobs = await ws.get("/api/retry-jobs")
    assert len(jobs) == 1
    assert jobs[0]["status"] == "pending"
    assert jobs[0]["attempt_count"] == 1

    # Not yet due.
    assert await process_due_retries(bridge, session_factory, now=datetime.now(timezone.utc) - timedelta(minutes=1)) == 0

    for _ in range(3):
        assert await process_due_retries(bridge, session_factory, now=_later()) == 1

    logs = await ws.logs(shop_to_uber["webhook_id"])
    assert sorted(log["status"] for log in logs) == ["failed", "failed", "failed", "success"]
    assert sorted(log["attempt_count"] for log in logs) == [1, 2, 3, 4]
    assert all(log["retry_job_id"] == jobs[0]["job_id"] for log in logs if log["status"] == "failed")

    assert len(courier.created) == 1
    assert len(await ws.get("/api/deliveries")) == 1
    assert (await ws.get("/api/orders"))[0]["fulfillment_status"] == "dispatched"
    job = (await ws.get("/api/retry-jobs"))[0]
    assert job["status"] == "succeeded"
    assert job["attempt_count"] == 4

    # Nothing left to run.
    assert await process_due_retries(bridge, session_factory, now=_later(48)) == 0


@pytest.mark.asyncio
async def test_exhaustion_marks_order_and_requeue_recovers(client, ws, courier, bridge, session_factory, shop_to_uber):
    courier.script.extend([TransientProviderError("UberDirect", "HTTP 503", 503)] * 5)

    response = await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())
    assert response.json()["jobs"][0]["status"] == "retry_scheduled"
    for _ in range(4):
        await process_due_retries(bridge, session_factory, now=_later())

    job = (await ws.get("/api/retry-jobs", status="exhausted"))[0]
    assert job["attempt_count"] == 5
    assert job["next_attempt_at"] is None
    assert (await ws.get("/api/orders"))[0]["fulfillment_status"] == "dispatch_failed"
    logs = await ws.logs(shop_to_uber["webhook_id"])
    assert len(logs) == 5
    assert all(log["status"] == "failed" for log in logs)
    assert courier.created == []

    # Exhausted jobs stay put until someone requeues them.
    assert await process_due_retries(bridge, session_factory, now=_later(48)) == 0

    response = await client.post(f"/api/retry-jobs/{job['job_id']}/requeue", headers=ws.headers)
    assert response.status_code == 200
    assert response.json()["status"] == "pending"
    assert response.json()["max_attempts"] == 10

    assert await process_due_retries(bridge, session_factory, now=_later()) == 1
    assert len(courier.created) == 1
    assert (await ws.get("/api/orders"))[0]["fulfillment_status"] == "dispatched"
    assert (await ws.get("/api/retry-jobs"))[0]["status"] == "succeeded"

    response = await client.post(f"/api/retry-jobs/{job['job_id']}/requeue", headers=ws.headers)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_redelivery_while_retry_pending(ws, courier, shop_to_uber):
    """The provider's own redelivery does not start a second attempt sequence."""
    courier.script.append(HANG)
    await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())
    response = await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())
    assert response.status_code == 200
    assert response.json()["status"] == "accepted"
    assert response.json()["jobs"][0]["status"] == "pending"

    logs = await ws.logs(shop_to_uber["webhook_id"])
    assert sorted(log["status"] for log in logs) == ["failed", "pending"]
    assert courier.created == []
    assert len(await ws.get("/api/retry-jobs")) == 1


@pytest.mark.asyncio
async def test_retry_abandoned_when_webhook_deactivated(client, ws, courier, bridge, session_factory, shop_to_uber):
    courier.script.append(HANG)
    await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())
    await client.patch(
        f"/api/webhooks/{shop_to_uber['webhook_id']}", json={"is_active": False}, headers=ws.headers
    )

    assert await process_due_retries(bridge, session_factory, now=_later()) == 1
    assert (await ws.get("/api/retry-jobs"))[0]["status"] == "abandoned"
    assert courier.created == []


@pytest.mark.asyncio
async def test_requeue_unknown_job(client, ws):
    response = await client.post("/api/retry-jobs/rjob_missing/requeue", headers=ws.headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_order_cancelled_while_retry_pending_is_not_dispatched(ws, courier, bridge, session_factory, shop_to_uber):
    """A pending dispatch retry gives up once the order has been cancelled."""
    courier.script.append(HANG)
    await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())

    cancelled = await ws.deliver(
        shop_to_uber["secret_key"], shopify_order(), shopify_headers(topic="orders/cancelled", webhook_id="c-1")
    )
    assert cancelled.json()["jobs"][0]["note"] == "no active delivery to cancel"

    assert await process_due_retries(bridge, session_factory, now=_later()) == 1
    assert courier.created == []
    assert await ws.get("/api/deliveries") == []
    order = (await ws.get("/api/orders"))[0]
    assert order["status"] == "cancelled"
    assert order["fulfillment_status"] != "dispatched"

    job = (await ws.get("/api/retry-jobs"))[0]
    assert job["status"] == "succeeded"
    notes = [log["note"] for log in await ws.logs(shop_to_uber["webhook_id"])]
    assert "order cancelled; not dispatched" in notes


@pytest.mark.asyncio
async def test_crashed_dispatch_is_retried(ws, courier, bridge, session_factory, shop_to_uber):
    """An unexpected error on the first attempt schedules a retry instead of dropping the order."""
    courier.script.append(RuntimeError("db blip"))

    response = await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())
    assert response.status_code == 200
    assert response.json()["jobs"][0]["status"] == "retry_scheduled"
    assert response.json()["jobs"][0]["note"] == "internal error"
    assert courier.created == []

    job = (await ws.get("/api/retry-jobs"))[0]
    assert job["status"] == "pending"
    assert "db blip" in job["last_error"]

    assert await process_due_retries(bridge, session_factory, now=_later()) == 1
    assert len(courier.created) == 1
    assert (await ws.get("/api/orders"))[0]["fulfillment_status"] == "dispatched"
    assert (await ws.get("/api/retry-jobs"))[0]["status"] == "succeeded"


@pytest.mark.asyncio
async def test_crashes_until_exhausted_mark_dispatch_failed(ws, courier, bridge, session_factory, shop_to_uber):
    courier.script.extend([RuntimeError("db blip")] * 5)
    await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())
    for _ in range(4):
        await process_due_retries(bridge, session_factory, now=_later())

    assert (await ws.get("/api/retry-jobs"))[0]["status"] == "exhausted"
    assert (await ws.get("/api/orders"))[0]["fulfillment_status"] == "dispatch_failed"


@pytest.mark.asyncio
async def test_claim_lost_by_dead_worker_is_reclaimed(ws, courier, bridge, session_factory, shop_to_uber):
    """A job left ``retrying`` by a worker that died is picked up again after its lease."""
    courier.script.append(HANG)
    await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())

    # Claim and commit, then never run the attempt.
    async with session_factory() as session:
        claimed = await bridge.bind(session).retry.claim_due(_later(), limit=10)
        await session.commit()
    assert len(claimed) == 1
    assert (await ws.get("/api/retry-jobs"))[0]["status"] == "retrying"

    # Still leased: nobody else takes it.
    assert await process_due_retries(bridge, session_factory, now=_later()) == 0

    assert await process_due_retries(bridge, session_factory, now=_later(24 * 30)) == 1
    assert len(courier.created) == 1
    job = (await ws.get("/api/retry-jobs"))[0]
    assert job["status"] == "succeeded"
    assert job["attempt_count"] == 3

    response = await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())
    assert response.json()["status"] == "replayed"


@pytest.mark.asyncio
async def test_expired_lease_counts_toward_exhaustion(ws, courier, bridge, session_factory, shop_to_uber):
    courier.script.append(HANG)
    await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())

    # One claim plus four expired leases uses up the five attempts.
    for day in range(1, 6):
        async with session_factory() as session:
            await bridge.bind(session).retry.claim_due(_later(day * 24), limit=10)
            await session.commit()

    job = (await ws.get("/api/retry-jobs"))[0]
    assert job["status"] == "exhausted"
    assert job["attempt_count"] == 5
    assert courier.created == []
    logs = await ws.logs(shop_to_uber["webhook_id"])
    assert any("exhausted" in (log["note"] or "") for log in logs)


@pytest.mark.asyncio
async def test_one_crashing_retry_does_not_stop_the_batch(ws, courier, bridge, session_factory, shop_to_uber, monkeypatch):
    from orderbridge.workers import retry_worker

    courier.script.append(HANG)
    await ws.deliver(shop_to_uber["secret_key"], shopify_order(), shopify_headers())
    courier.script.append(HANG)
    await ws.deliver(
        shop_to_uber["secret_key"],
        shopify_order(order_number="SHOP-101", order_id=820982911946154509),
        shopify_headers(webhook_id="second-delivery"),
    )

    real_run_one = retry_worker._run_one
    ran = []

    async def flaky_run_one(bridge, session, job_id):
        if not ran:
            ran.append(job_id)
            raise RuntimeError("worker fell over")
        ran.append(job_id)
        await real_run_one(bridge, session, job_id)

    monkeypatch.setattr(retry_worker, "_run_one", flaky_run_one)
    assert await process_due_retries(bridge, session_factory, now=_later()) == 2
    assert len(ran) == 2
    assert len(courier.created) == 1
    statuses = sorted(job["status"] for job in await ws.get("/api/retry-jobs"))
    assert statuses == ["retrying", "succeeded"]
