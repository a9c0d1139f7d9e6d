"""Master API router mounted at /api."""

from fastapi import APIRouter

from orderbridge.api.routes import health, inbound, integrations, orders, retry_jobs, webhooks

api_router = APIRouter(prefix="/api")
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(inbound.router)
api_router.include_router(webhooks.router)
api_router.include_router(integrations.router)
api_router.include_router(orders.router)
api_router.include_router(retry_jobs.router)
