"""FastAPI dependency injection providers."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request

from assure.events.bus import EventBus


async def get_db(request: Request) -> AsyncGenerator:
    """Yield a database session from the app's session factory."""
    session_factory = request.app.state.db_session_factory
    async with session_factory() as session:
        yield session


def get_bus(request: Request) -> EventBus:
    """Return the event bus created in the lifespan."""
    return request.app.state.bus


def get_trace_id(request: Request) -> str:
    """Extract trace_id from request state (set by middleware)."""
    return getattr(request.state, "trace_id", "unknown")


# Type aliases for dependency injection
Bus = Annotated[EventBus, Depends(get_bus)]
TraceId = Annotated[str, Depends(get_trace_id)]
