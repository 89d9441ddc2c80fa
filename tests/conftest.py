"""Shared test fixtures."""

import os

# Settings are read at import time
os.environ.setdefault("ASSURE_LOCAL_MODE", "1")
os.environ.setdefault("ASSURE_RATE_LIMIT_ENABLED", "0")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from assure.db.base import Base
# Import all models to register with Base.metadata
import assure.db.models  # noqa: F401
from assure.events.bus import InMemoryEventBus

from fakes import spec_modules


@pytest.fixture
async def db_engine():
    """In-memory SQLite engine; StaticPool so every session sees the same database."""
    engine = create_async_engine("sqlite+aiosqlite:///", echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def bus():
    event_bus = InMemoryEventBus(max_deliveries=3)
    yield event_bus
    await event_bus.close()


@pytest.fixture
def make_spec(session_factory):
    """Factory registering version 1 of a spec lineage."""
    from assure.repositories.spec_version_repo import SpecVersionRepository

    async def _make(
        workspace_id: str = "ws_alpha",
        frameworks: list[str] | None = None,
        jurisdictions: list[str] | None = None,
        modules: dict | None = None,
        version_label: str = "v1.0.0",
    ):
        async with session_factory() as session:
            row = await SpecVersionRepository(session).create_initial_version(
                workspace_id=workspace_id,
                modules=modules if modules is not None else spec_modules(),
                frameworks=frameworks if frameworks is not None else ["GDPR"],
                jurisdictions=jurisdictions if jurisdictions is not None else ["EU"],
                version_label=version_label,
            )
            await session.commit()
            return row

    return _make


@pytest.fixture
def app(db_engine, session_factory, bus):
    """Create a test application instance with in-memory DB and bus."""
    from assure.main import create_app

    _app = create_app()
    _app.state.db_engine = db_engine
    _app.state.db_session_factory = session_factory
    _app.state.redis = None
    _app.state.bus = bus
    return _app


@pytest.fixture
async def client(app):
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
