"""Shared test fixtures for the SafeCache service tests.

Provides an in-memory asyncio stand-in for the subset of Redis commands the
cache layer uses, injected through ``SafeCacheClient(client=...)``, plus
settings and app fixtures.
"""

from __future__ import annotations

import asyncio
import math
import os
import re
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from safecache.cache.client import SafeCacheClient
from safecache.cache.counters import CounterStore
from safecache.cache.rate_limit import RateLimiter
from safecache.core.config import Settings
from safecache.core.config.settings import (
    AppSettings,
    MetricsSettings,
    ObservabilitySettings,
    RedisSettings,
    TracingSettings,
)
from safecache.factory import create_app


if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, AsyncIterator

    from fastapi import FastAPI


os.environ.setdefault("APP_ENV", "test")


def redis_glob_match(pattern: str, key: str) -> bool:
    """Match ``key`` the way Redis ``SCAN MATCH`` does.

    Supports ``*``, ``?``, ``[...]`` classes (``^`` negates) and backslash
    escapes, which ``fnmatch`` does not.
    """
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "\\" and i + 1 < len(pattern):
            i += 1
            parts.append(re.escape(pattern[i]))
        elif char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        elif char == "[" and "]" in pattern[i + 1 :]:
            end = pattern.index("]", i + 1)
            body = pattern[i + 1 : end]
            negate = body.startswith("^")
            members = "".join(
                c if c == "-" else re.escape(c) for c in body[1 if negate else 0 :]
            )
            parts.append(f"[{'^' if negate else ''}{members}]")
            i = end
        else:
            parts.append(re.escape(char))
        i += 1
    return re.fullmatch("".join(parts), key, flags=re.DOTALL) is not None


class FakeRedis:
    """In-memory Redis with expiry driven by a manual clock.

    ``error`` makes every command raise it; ``delay`` makes every command
    sleep first, which is how tests trigger operation timeouts.
    """

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.expires_at: dict[str, float] = {}
        self.now = 0.0
        self.error: Exception | None = None
        self.delay = 0.0
        self.commands: list[str] = []
        self.closed = False

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def _enter(self, command: str) -> None:
        self.commands.append(command)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

    def _alive(self, key: str) -> bool:
        deadline = self.expires_at.get(key)
        if deadline is not None and deadline <= self.now:
            self.data.pop(key, None)
            self.expires_at.pop(key, None)
        return key in self.data

    # Commands, applied without yielding to the event loop

    def _get(self, key: str) -> str | None:
        return self.data[key] if self._alive(key) else None

    def _set(self, key: str, value: Any, ex: int | None = None) -> bool:
        self.data[key] = str(value)
        self.expires_at.pop(key, None)
        if ex is not None:
            self.expires_at[key] = self.now + ex
        return True

    def _incrby(self, key: str, amount: int = 1) -> int:
        current = self._get(key)
        try:
            value = int(current or 0) + amount
        except ValueError:
            msg = "value is not an integer or out of range"
            raise ResponseError(msg) from None
        self.data[key] = str(value)
        return value

    def _expire(self, key: str, seconds: int, nx: bool = False) -> bool:
        if not self._alive(key):
            return False
        if nx and key in self.expires_at:
            return False
        self.expires_at[key] = self.now + seconds
        return True

    def _ttl(self, key: str) -> int:
        if not self._alive(key):
            return -2
        if key not in self.expires_at:
            return -1
        return math.ceil(self.expires_at[key] - self.now)

    def _delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self._alive(key):
                deleted += 1
            self.data.pop(key, None)
            self.expires_at.pop(key, None)
        return deleted

    # Async client surface

    async def ping(self) -> bool:
        await self._enter("PING")
        return True

    async def get(self, key: str) -> str | None:
        await self._enter("GET")
        return self._get(key)

    async def mget(self, keys: list[str]) -> list[str | None]:
        await self._enter("MGET")
        return [self._get(key) for key in keys]

    async def set(self, key: str, value: Any, ex: int | None = None) -> bool:
        await self._enter("SET")
        return self._set(key, value, ex)

    async def incr(self, key: str) -> int:
        await self._enter("INCR")
        return self._incrby(key, 1)

    async def incrby(self, key: str, amount: int = 1) -> int:
        await self._enter("INCRBY")
        return self._incrby(key, amount)

    async def expire(self, key: str, seconds: int, nx: bool = False) -> bool:
        await self._enter("EXPIRE")
        return self._expire(key, seconds, nx)

    async def ttl(self, key: str) -> int:
        await self._enter("TTL")
        return self._ttl(key)

    async def delete(self, *keys: str) -> int:
        await self._enter("DEL")
        return self._delete(*keys)

    async def dbsize(self) -> int:
        await self._enter("DBSIZE")
        return sum(1 for key in list(self.data) if self._alive(key))

    async def scan_iter(
        self, match: str | None = None, count: int | None = None
    ) -> AsyncIterator[str]:
        await self._enter("SCAN")
        for key in list(self.data):
            if self._alive(key) and (match is None or redis_glob_match(match, key)):
                yield key

    async def aclose(self) -> None:
        self.closed = True

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)


class FakePipeline:
    """MULTI/EXEC: queued commands run back to back with no interleaving."""

    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._queue: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *exc: object) -> None:
        self._queue.clear()

    def _queue_command(self, name: str, *args: Any, **kwargs: Any) -> FakePipeline:
        self._queue.append((name, args, kwargs))
        return self

    def incr(self, key: str) -> FakePipeline:
        return self._queue_command("_incrby", key, 1)

    def incrby(self, key: str, amount: int = 1) -> FakePipeline:
        return self._queue_command("_incrby", key, amount)

    def expire(self, key: str, seconds: int, nx: bool = False) -> FakePipeline:
        return self._queue_command("_expire", key, seconds, nx)

    def ttl(self, key: str) -> FakePipeline:
        return self._queue_command("_ttl", key)

    async def execute(self) -> list[Any]:
        await self._redis._enter("EXEC")
        results = [
            getattr(self._redis, name)(*args, **kwargs)
            for name, args, kwargs in self._queue
        ]
        self._queue.clear()
        return results


@pytest.fixture
def fake_redis() -> FakeRedis:
    """Fresh in-memory Redis."""
    return FakeRedis()


@pytest.fixture
async def cache_client(fake_redis: FakeRedis) -> AsyncGenerator[SafeCacheClient]:
    """SafeCacheClient over the in-memory Redis, drained after the test."""
    client = SafeCacheClient(
        "redis://fake",
        operation_timeout=0.2,
        bulk_timeout=0.5,
        retry_interval=5.0,
        scan_count=2,
        client=fake_redis,
    )
    yield client
    await client.shutdown(drain_timeout=1.0)


@pytest.fixture
def disconnected_error() -> Exception:
    return RedisConnectionError("Connection refused")


@pytest.fixture
def test_settings() -> Settings:
    """Settings with Redis, tracing and metrics switched off."""
    return Settings(
        APP_ENV="test",
        app=AppSettings(name="SafeCache Test", version="0.0.1-test"),
        redis=RedisSettings(enabled=False),
        observability=ObservabilitySettings(
            tracing=TracingSettings(enabled=False),
            metrics=MetricsSettings(enabled=False),
        ),
    )


@pytest.fixture
def app(
    test_settings: Settings,
    cache_client: SafeCacheClient,
) -> FastAPI:
    """Application wired to the in-memory cache.

    ASGITransport does not run the lifespan, so the cache layer is placed on
    ``app.state`` here the way startup would.
    """
    application = create_app(test_settings)
    application.state.cache_client = cache_client
    application.state.counter_store = CounterStore(cache_client)
    application.state.rate_limiter = RateLimiter(cache_client)
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Async HTTP client bound to the application."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
