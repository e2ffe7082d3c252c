"""Integration tests for the cache layer against a real Redis.

Tests cover:
- Counter atomicity and fixed TTLs
- Rate limiting windows
- Pattern deletion with SCAN
- Fallbacks when the server is unreachable
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from safecache.cache.client import SafeCacheClient
from safecache.cache.counters import CounterStore
from safecache.cache.keys import escape_pattern
from safecache.cache.rate_limit import RateLimiter


if TYPE_CHECKING:
    from redis.asyncio import Redis


pytestmark = pytest.mark.integration


class TestCounters:
    """Counter behavior on a real server."""

    @pytest.mark.asyncio
    async def test_ten_concurrent_increments(
        self, safe_client: SafeCacheClient, raw_redis: Redis
    ) -> None:
        store = CounterStore(safe_client, counter_ttl=300)

        await asyncio.gather(*(store.increment_counter("p1", "likes") for _ in range(10)))

        assert await raw_redis.get("post:p1:likes") == "10"
        assert 0 < await raw_redis.ttl("post:p1:likes") <= 300

    @pytest.mark.asyncio
    async def test_ttl_not_extended(
        self, safe_client: SafeCacheClient, raw_redis: Redis
    ) -> None:
        store = CounterStore(safe_client, counter_ttl=300)
        await store.increment_counter("p1", "likes")
        await raw_redis.expire("post:p1:likes", 5)

        await store.increment_counter("p1", "likes")

        assert await raw_redis.ttl("post:p1:likes") <= 5

    @pytest.mark.asyncio
    async def test_user_flag_round_trip(self, safe_client: SafeCacheClient) -> None:
        store = CounterStore(safe_client)

        await store.set_user_flag("u1", "p1", True)
        assert await store.get_user_flag("u1", "p1") is True

        await store.set_user_flag("u1", "p1", False)
        assert await store.get_user_flag("u1", "p1") is None


class TestRateLimiter:
    """Rate limiting on a real server."""

    @pytest.mark.asyncio
    async def test_window(self, safe_client: SafeCacheClient, raw_redis: Redis) -> None:
        limiter = RateLimiter(safe_client)

        results = [await limiter.check_and_consume("rl:t", 2, 1) for _ in range(3)]
        assert [r.allowed for r in results] == [True, True, False]

        await asyncio.sleep(1.1)
        assert (await limiter.check_and_consume("rl:t", 2, 1)).allowed is True


class TestPatternDelete:
    """SCAN-based invalidation on a real server."""

    @pytest.mark.asyncio
    async def test_deletes_only_matches(
        self, safe_client: SafeCacheClient, raw_redis: Redis
    ) -> None:
        for i in range(600):
            await raw_redis.set(f"cache:/posts:page={i}", "{}", ex=60)
        await raw_redis.set("post:p1:likes", "3")

        deleted = await safe_client.delete_pattern("cache:/posts*")

        assert deleted == 600
        assert await raw_redis.dbsize() == 1

    @pytest.mark.asyncio
    async def test_escaped_value_matches_literally(
        self, safe_client: SafeCacheClient, raw_redis: Redis
    ) -> None:
        for post_id in ("p1", "p2", "*"):
            await raw_redis.set(f"cache:/posts/{post_id}:", "{}", ex=60)

        deleted = await safe_client.delete_pattern(
            f"cache:/posts/{escape_pattern('*')}*"
        )

        assert deleted == 1
        assert sorted(await raw_redis.keys("cache:*")) == [
            "cache:/posts/p1:",
            "cache:/posts/p2:",
        ]


class TestUnreachableServer:
    """Fallbacks with nothing listening."""

    @pytest.mark.asyncio
    async def test_operations_fall_back(self) -> None:
        client = SafeCacheClient(
            "redis://127.0.0.1:1/0", connect_timeout=0.2, socket_timeout=0.2
        )
        await client.connect()
        store = CounterStore(client)

        try:
            assert client.is_ready() is False
            assert await store.increment_counter("p1", "likes") is None
            assert await store.get_counter("p1", "likes") is None
            result = await RateLimiter(client).check_and_consume("rl:t", 1, 10)
            assert result.allowed is True
        finally:
            await client.shutdown()
