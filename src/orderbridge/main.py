"""FastAPI application factory and lifespan management."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from orderbridge import __version__
from orderbridge.config import settings
from orderbridge.logging_config import configure_logging

# Configure logging at import time
configure_logging(log_level=settings.log_level, json_output=not settings.local_mode)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown resources."""
    from orderbridge.bridge import OrderBridge
    from orderbridge.db.engine import create_db_engine, create_session_factory
    from orderbridge.workers.retry_worker import run_retry_worker

    db_url = settings.effective_database_url
    engine = create_db_engine(db_url)

    # Create missing tables (no-op for tables that already exist)
    from orderbridge.db.base import Base
    import orderbridge.db.models  # noqa: F401 register all ORM models

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.db_engine = engine
    app.state.db_session_factory = create_session_factory(engine)

    # Redis is optional in local mode
    app.state.redis = None
    if not settings.local_mode:
        try:
            import redis.asyncio as aioredis
            app.state.redis = aioredis.from_url(settings.redis_url, decode_responses=True)
            await app.state.redis.ping()
        except Exception as exc:
            logger.warning("Redis not available (%s); using in-process locks only", exc)
            app.state.redis = None

    app.state.bridge = OrderBridge.from_settings(settings, redis=app.state.redis)

    # Extra API replicas can leave polling to one instance.
    retry_task = asyncio.create_task(run_retry_worker(app)) if settings.retry_worker_enabled else None

    logger.info("OrderBridge API started (db=%s)", "sqlite" if "sqlite" in db_url else "postgresql")
    yield

    # Shutdown
    if retry_task is not None:
        retry_task.cancel()
        try:
            await retry_task
        except asyncio.CancelledError:
            pass
    if app.state.redis:
        await app.state.redis.close()
    await engine.dispose()
    logger.info("OrderBridge API shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="OrderBridge API",
        version=__version__,
        description="Routes e-commerce order webhooks to delivery providers and reconciles delivery status.",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add middleware (order matters: last added = first executed)
    from orderbridge.api.middleware.auth import AuthMiddleware
    from orderbridge.api.middleware.trace_id import TraceIdMiddleware
    app.add_middleware(AuthMiddleware)
    app.add_middleware(TraceIdMiddleware)

    from orderbridge.errors.handlers import register_exception_handlers
    register_exception_handlers(app)

    from orderbridge.api.middleware.rate_limit import setup_rate_limiter
    setup_rate_limiter(app)

    # Prometheus metrics (internal endpoint)
    Instrumentator(
        should_group_status_codes=True,
        should_respect_env_var=False,
        excluded_handlers=["/api/health.*", "/metrics"],
    ).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    from orderbridge.api.router import api_router
    app.include_router(api_router)

    return app


app = create_app()
