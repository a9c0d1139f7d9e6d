"""FastAPI dependency injection providers."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from orderbridge.bridge import BoundServices
from orderbridge.errors.exceptions import AuthenticationError
from orderbridge.logging_config import bind_request_context


async def get_db(request: Request) -> AsyncGenerator:
    """Yield a database session from the app's session factory."""
    session_factory = request.app.state.db_session_factory
    async with session_factory() as session:
        yield session


def get_trace_id(request: Request) -> str:
    """Extract trace_id from request state (set by middleware)."""
    return getattr(request.state, "trace_id", "unknown")


async def get_current_owner(request: Request) -> str:
    """Return the authenticated owner id (the JWT ``sub``) or raise 401."""
    user = getattr(request.state, "user", {})
    if "_auth_error" in user:
        raise AuthenticationError(user["_auth_error"])
    owner_id = user.get("sub", "")
    if not owner_id or owner_id == "anonymous":
        raise AuthenticationError("Authentication required")
    bind_request_context(get_trace_id(request), owner_id=owner_id)
    return owner_id


async def get_services(request: Request, db: AsyncSession = Depends(get_db)) -> BoundServices:
    """Session-scoped components built from the app's OrderBridge."""
    return request.app.state.bridge.bind(db)


# Type aliases for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]
TraceId = Annotated[str, Depends(get_trace_id)]
CurrentOwner = Annotated[str, Depends(get_current_owner)]
Services = Annotated[BoundServices, Depends(get_services)]
