import asyncio
from typing import TYPE_CHECKING, AsyncGenerator, Generator
from unittest.mock import AsyncMock

if TYPE_CHECKING:
    from bookings_crm.core.cache import CacheService

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from bookings_crm.main import app


@pytest.fixture(scope="session")
def event_loop() -> Generator:
    """Create a single event loop for all async tests."""
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


@pytest_asyncio.fixture
async def async_client() -> AsyncGenerator[AsyncClient, None]:
    """Yield an ``httpx.AsyncClient`` wired to the FastAPI app.

    Dependency overrides set by a test are cleared afterwards.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Return an ``AsyncMock`` that behaves like ``redis.asyncio.Redis``."""
    redis = AsyncMock()
    redis.set = AsyncMock(return_value=True)
    redis.ping = AsyncMock()
    return redis


@pytest.fixture
def mock_cache(mock_redis) -> "CacheService":
    """Return a ``CacheService`` backed by the mock Redis client."""
    from bookings_crm.core.cache import CacheService

    return CacheService(redis_client=mock_redis)


@pytest.fixture
def fast_store_retries(monkeypatch):
    """Make storage retries immediate so degraded-path tests stay fast."""
    from bookings_crm.core.config import settings

    monkeypatch.setattr(settings, "STORE_RETRY_BASE_DELAY", 0.0)
    monkeypatch.setattr(settings, "STORE_RETRY_MAX_DELAY", 0.0)
    return settings
