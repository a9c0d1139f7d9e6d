"""Public endpoint receiving provider webhooks."""

from dataclasses import asdict

from fastapi import APIRouter, Request

from orderbridge.api.middleware.rate_limit import INBOUND_LIMIT, limiter
from orderbridge.dependencies import Services, TraceId

router = APIRouter(tags=["Inbound"])


@router.post("/webhook/{secret_key}")
@limiter.limit(INBOUND_LIMIT)
async def receive_webhook(request: Request, secret_key: str, services: Services, trace_id: TraceId) -> dict:
    """Accept one provider notification.

    200 covers both accepted and idempotent-replay outcomes; 4xx responses
    (unknown secret, bad signature, undecodable body) let the provider's
    own redelivery policy take over.
    """
    body = await request.body()
    result = await services.receiver.receive(secret_key, body, request.headers, trace_id=trace_id)
    return asdict(result)
