"""JWT Bearer authentication middleware for the dashboard API."""

import logging

from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from orderbridge.config import settings

logger = logging.getLogger(__name__)

# Paths that do not require authentication
_PUBLIC_PATHS = {
    "/api/health",
    "/api/health/live",
    "/api/health/ready",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/metrics",
}

# Inbound provider webhooks authenticate with the secret in the path.
_PUBLIC_PREFIXES = ("/api/webhook/", "/docs", "/redoc")

_ANONYMOUS = {"sub": "anonymous"}


def _decode_jwt(token: str) -> dict:
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    except JWTError as exc:
        logger.debug("JWT decode failed: %s", exc)
        raise ValueError(f"Invalid token: {exc}") from exc


class AuthMiddleware(BaseHTTPMiddleware):
    """Validate the Bearer token and attach ``{"sub": owner_id}`` to request.state.user.

    Routes enforce authentication through the ``CurrentOwner`` dependency.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path

        if path in _PUBLIC_PATHS or path.startswith(_PUBLIC_PREFIXES):
            request.state.user = dict(_ANONYMOUS)
            return await call_next(request)

        auth_header = request.headers.get("authorization", "")
        if auth_header.startswith("Bearer "):
            request.state.user = self._validate_jwt(auth_header[7:])
        else:
            request.state.user = dict(_ANONYMOUS)
        return await call_next(request)

    def _validate_jwt(self, token: str) -> dict:
        try:
            payload = _decode_jwt(token)
        except ValueError:
            return {**_ANONYMOUS, "_auth_error": "Invalid token"}
        if payload.get("type") == "refresh":
            return {**_ANONYMOUS, "_auth_error": "Refresh tokens cannot be used for API access"}
        return {"sub": payload.get("sub", ""), "email": payload.get("email", "")}
