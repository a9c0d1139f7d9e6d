"""Rate limiting using slowapi."""

import logging

from fastapi import FastAPI, Request
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from orderbridge.config import settings

logger = logging.getLogger(__name__)


def get_rate_limit_key(request: Request) -> str:
    """Inbound webhooks are limited per webhook secret, everything else per owner or IP."""
    secret_key = request.path_params.get("secret_key")
    if secret_key:
        return f"webhook:{secret_key}"
    user = getattr(request.state, "user", {})
    sub = user.get("sub", "")
    if sub and sub != "anonymous":
        return f"owner:{sub}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_rate_limit_key,
    default_limits=[],
    storage_uri="memory://" if settings.local_mode else settings.redis_url,
    enabled=settings.rate_limit_enabled,
)

INBOUND_LIMIT = f"{settings.rate_limit_inbound_per_minute}/minute"


def setup_rate_limiter(app: FastAPI) -> None:
    """Attach the slowapi limiter to the FastAPI app."""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    if settings.rate_limit_enabled:
        logger.info("Rate limiter configured (inbound=%s)", INBOUND_LIMIT)
