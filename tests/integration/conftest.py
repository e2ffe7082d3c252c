"""Integration test fixtures.

Provides a real Redis 7 via testcontainers. Every test in this directory is
skipped when Docker is not available.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from redis.asyncio import Redis
from testcontainers.redis import RedisContainer

from safecache.cache.client import SafeCacheClient
from safecache.core.config import Settings
from safecache.core.config.settings import (
    MetricsSettings,
    ObservabilitySettings,
    RedisSettings,
)
from safecache.factory import create_app


if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Generator

    from fastapi import FastAPI


pytestmark = pytest.mark.integration


@pytest.fixture(scope="session")
def redis_container() -> Generator[RedisContainer]:
    """Start a Redis container for the test session."""
    container = RedisContainer("redis:7-alpine")
    try:
        container.start()
    except Exception as exc:  # noqa: BLE001
        pytest.skip(f"Docker is not available: {exc}")
    try:
        yield container
    finally:
        container.stop()


@pytest.fixture(scope="session")
def redis_url(redis_container: RedisContainer) -> str:
    """Get the Redis URL from the container."""
    host = redis_container.get_container_host_ip()
    port = redis_container.get_exposed_port(6379)
    return f"redis://{host}:{port}/0"


@pytest.fixture
async def raw_redis(redis_url: str) -> AsyncGenerator[Redis]:
    """Plain redis client for assertions; flushes the database per test."""
    client: Redis = Redis.from_url(redis_url, decode_responses=True)
    await client.flushdb()
    try:
        yield client
    finally:
        await client.aclose()


@pytest.fixture
async def safe_client(
    redis_url: str, raw_redis: Redis
) -> AsyncGenerator[SafeCacheClient]:
    """Connected SafeCacheClient against the container."""
    client = SafeCacheClient(redis_url, operation_timeout=2.0)
    await client.connect()
    try:
        yield client
    finally:
        await client.shutdown()


@pytest.fixture
def integration_settings(redis_url: str) -> Settings:
    return Settings(
        APP_ENV="test",
        REDIS_URL=redis_url,
        redis=RedisSettings(enabled=True),
        observability=ObservabilitySettings(metrics=MetricsSettings(enabled=False)),
    )


@pytest.fixture
async def live_app(
    integration_settings: Settings, raw_redis: Redis
) -> AsyncGenerator[FastAPI]:
    """Application with its real lifespan running against the container."""
    app = create_app(integration_settings)
    async with app.router.lifespan_context(app):
        yield app


@pytest.fixture
async def live_client(live_app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(
        transport=ASGITransport(app=live_app),
        base_url="http://test",
    ) as ac:
        yield ac
