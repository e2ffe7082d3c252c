"""Fail-open Redis client.

This module provides:
- Connection lifecycle (connect, readiness, shutdown) for one Redis pool
- ``execute``: the single chokepoint that turns any store failure into a
  caller-supplied fallback value plus one warning log entry
- Typed convenience operations built on ``execute``
- Detached (fire-and-forget) writes and in-process single-flight reads

Redis is an accelerator, never a dependency: no method here raises because the
store is missing, slow or broken.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, TypeVar

import orjson
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from safecache.cache.tasks import DetachedTasks
from safecache.observability.logging import get_logger
from safecache.observability.metrics import CACHE_OPERATIONS, INVALIDATED_KEYS


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Coroutine

    from redis.asyncio import Redis

    from safecache.core.config import Settings

logger = get_logger(__name__)

T = TypeVar("T")

_MISSING: Any = object()

# Failures that say something about the store itself rather than one command.
_UNHEALTHY_ERRORS = (RedisConnectionError, RedisTimeoutError, TimeoutError, OSError)


@dataclass
class CacheStats:
    """Process-local cache activity counters plus store status."""

    connected: bool
    keys: int | None = None
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    invalidations: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SafeCacheClient:
    """Redis wrapper whose operations degrade to fallbacks instead of raising.

    A client built with ``url=None`` (and no injected ``client``) is disabled:
    every operation returns its fallback without attempting I/O.
    """

    def __init__(
        self,
        url: str | None,
        *,
        operation_timeout: float = 0.5,
        bulk_timeout: float = 10.0,
        retry_interval: float = 5.0,
        scan_count: int = 250,
        max_connections: int = 20,
        socket_timeout: float = 0.5,
        connect_timeout: float = 2.0,
        client: Redis[Any] | None = None,
    ) -> None:
        self._url = url
        self.operation_timeout = operation_timeout
        self.bulk_timeout = bulk_timeout
        self.retry_interval = retry_interval
        self.scan_count = scan_count
        self._max_connections = max_connections
        self._socket_timeout = socket_timeout
        self._connect_timeout = connect_timeout

        self._pool: ConnectionPool[Any] | None = None
        self._redis: Redis[Any] | None = client
        self._owns_client = client is None
        self._healthy = client is not None
        self._failed_at = 0.0

        self._background = DetachedTasks()
        self._inflight: dict[str, asyncio.Future[Any]] = {}
        self._stats = CacheStats(connected=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> SafeCacheClient:
        """Build a client from application settings."""
        return cls(
            settings.redis_url,
            operation_timeout=settings.cache.operation_timeout,
            bulk_timeout=settings.cache.bulk_timeout,
            retry_interval=settings.cache.retry_interval,
            scan_count=settings.cache.scan_count,
            max_connections=settings.redis.max_connections,
            socket_timeout=settings.redis.socket_timeout,
            connect_timeout=settings.redis.connect_timeout,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def enabled(self) -> bool:
        """True when a store is configured (URL present or client injected)."""
        return self._url is not None or not self._owns_client

    async def connect(self) -> None:
        """Create the connection pool and verify the store answers.

        An unreachable store is logged and leaves the client not-ready; the
        application keeps running without the cache.
        """
        if not self.enabled:
            logger.info("Redis not configured - cache layer disabled")
            return

        if self._redis is None:
            assert self._url is not None
            self._pool = ConnectionPool.from_url(
                self._url,
                max_connections=self._max_connections,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._connect_timeout,
                decode_responses=True,
            )
            self._redis = redis.Redis(connection_pool=self._pool)

        try:
            async with asyncio.timeout(self._connect_timeout):
                await self._redis.ping()
        except Exception as exc:  # noqa: BLE001
            self._mark_unhealthy()
            logger.warning(
                "Redis unavailable at startup - continuing without cache",
                error=str(exc),
            )
        else:
            self._healthy = True
            logger.info("Redis connection established")

    def is_ready(self) -> bool:
        """Whether cache operations should be attempted right now.

        After a connection-level failure the client reports not-ready for
        ``retry_interval`` seconds, then lets the next operation probe the store.
        """
        if self._redis is None:
            return False
        if self._healthy:
            return True
        return time.monotonic() - self._failed_at >= self.retry_interval

    async def shutdown(self, drain_timeout: float = 5.0) -> None:
        """Flush detached writes, then release connections."""
        await self._background.drain(drain_timeout)

        if self._redis is not None and self._owns_client:
            try:
                await self._redis.aclose()
                if self._pool is not None:
                    await self._pool.disconnect()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Error while closing Redis connections", error=str(exc))
            self._redis = None
            self._pool = None

        self._healthy = False
        logger.info("Redis connections closed")

    def _mark_unhealthy(self) -> None:
        self._healthy = False
        self._failed_at = time.monotonic()

    # =========================================================================
    # Core
    # =========================================================================

    async def execute(
        self,
        op_name: str,
        operation: Callable[[Redis[Any]], Awaitable[T]],
        fallback: T,
        *,
        timeout: float | None = None,
    ) -> T:
        """Run ``operation`` against the store, or return ``fallback``.

        Args:
            op_name: Short operation name used in logs and metrics.
            operation: Coroutine function receiving the Redis client.
            fallback: Returned unchanged when the store is disabled, not ready,
                times out or raises.
            timeout: Per-call bound in seconds (defaults to ``operation_timeout``).

        Returns:
            The operation's result, or ``fallback``.
        """
        if not self.is_ready():
            CACHE_OPERATIONS.labels(op=op_name, outcome="skipped").inc()
            return fallback

        assert self._redis is not None
        try:
            async with asyncio.timeout(timeout or self.operation_timeout):
                result = await operation(self._redis)
        except Exception as exc:  # noqa: BLE001
            if isinstance(exc, _UNHEALTHY_ERRORS):
                self._mark_unhealthy()
            self._stats.errors += 1
            CACHE_OPERATIONS.labels(op=op_name, outcome="fallback").inc()
            logger.warning(
                "Redis operation failed (fallback used)",
                op=op_name,
                error=str(exc) or type(exc).__name__,
            )
            return fallback

        self._healthy = True
        CACHE_OPERATIONS.labels(op=op_name, outcome="ok").inc()
        return result

    def spawn(self, coro: Coroutine[Any, Any, Any], op_name: str) -> None:
        """Run a cache write in the background; the caller never waits on it."""
        self._background.spawn(coro, name=f"cache:{op_name}")

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for detached writes to finish."""
        await self._background.drain(timeout)

    # =========================================================================
    # Operations
    # =========================================================================

    async def ping(self) -> bool:
        """True if the store answered a PING."""

        async def _ping(r: Redis[Any]) -> bool:
            return bool(await r.ping())

        return await self.execute("ping", _ping, False)

    async def get(self, key: str) -> str | None:
        """Get a raw string value, ``None`` when absent or unavailable."""

        async def _get(r: Redis[Any]) -> str | None:
            value = await r.get(key)
            if value is None:
                self._stats.misses += 1
            else:
                self._stats.hits += 1
            return value

        return await self.execute("get", _get, None)

    async def get_json(self, key: str, default: Any = None) -> Any:
        """Get and decode a JSON value written by ``set_json``."""
        raw = await self.get(key)
        if raw is None:
            return default
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning("Discarding undecodable cache entry", key=key)
            return default

    async def set(self, key: str, value: str | bytes | int, ttl: int) -> bool:
        """``SET key value EX ttl``. Every entry written here expires.

        Raises:
            ValueError: If ``ttl`` is not a positive number of seconds.
        """
        if ttl <= 0:
            msg = f"Cache TTL must be positive, got {ttl}"
            raise ValueError(msg)

        async def _set(r: Redis[Any]) -> bool:
            await r.set(key, value, ex=ttl)
            self._stats.sets += 1
            return True

        return await self.execute("set", _set, False)

    async def set_json(self, key: str, value: Any, ttl: int) -> bool:
        """Encode ``value`` with orjson and store it with a TTL."""
        return await self.set(key, orjson.dumps(value).decode(), ttl)

    async def incr_by(self, key: str, delta: int = 1) -> int | None:
        """Atomically add ``delta``; ``None`` if the store is unavailable."""

        async def _incr(r: Redis[Any]) -> int:
            return int(await r.incrby(key, delta))

        return await self.execute("incrby", _incr, None)

    async def expire(self, key: str, seconds: int, *, only_if_unset: bool = False) -> bool:
        """Set a key's TTL; with ``only_if_unset`` an existing TTL is kept."""

        async def _expire(r: Redis[Any]) -> bool:
            return bool(await r.expire(key, seconds, nx=only_if_unset))

        return await self.execute("expire", _expire, False)

    async def delete(self, *keys: str) -> int:
        """Delete exact keys, returning how many existed."""
        if not keys:
            return 0

        async def _delete(r: Redis[Any]) -> int:
            deleted = int(await r.delete(*keys))
            self._stats.deletes += deleted
            return deleted

        return await self.execute("delete", _delete, 0)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern (``SCAN`` + batched ``DEL``).

        ``KEYS`` is never used: it blocks the server for the whole keyspace walk.
        """

        async def _delete_pattern(r: Redis[Any]) -> int:
            deleted = 0
            batch: list[str] = []
            async for key in r.scan_iter(match=pattern, count=self.scan_count):
                batch.append(key)
                if len(batch) >= self.scan_count:
                    deleted += int(await r.delete(*batch))
                    batch.clear()
            if batch:
                deleted += int(await r.delete(*batch))
            return deleted

        deleted = await self.execute(
            "delete_pattern", _delete_pattern, 0, timeout=self.bulk_timeout
        )
        if deleted:
            self._stats.invalidations += 1
            self._stats.deletes += deleted
            INVALIDATED_KEYS.inc(deleted)
            logger.info("Cache cleared", pattern=pattern, count=deleted)
        return deleted

    async def get_or_set(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        ttl: int,
    ) -> T:
        """Return the cached JSON value, or compute, return and store it.

        Concurrent misses on the same key in this process share one ``fetch``
        call. Errors raised by ``fetch`` propagate to every waiter.
        """
        cached = await self.get_json(key, default=_MISSING)
        if cached is not _MISSING:
            logger.debug("Cache hit", key=key)
            return cached  # type: ignore[no-any-return]

        inflight = self._inflight.get(key)
        if inflight is None:
            logger.debug("Cache miss", key=key)
            inflight = asyncio.ensure_future(self._fetch_and_store(key, fetch, ttl))
            self._inflight[key] = inflight
            inflight.add_done_callback(
                lambda done: self._inflight.pop(key, None)
                if self._inflight.get(key) is done
                else None
            )

        return await asyncio.shield(inflight)  # type: ignore[no-any-return]

    async def _fetch_and_store(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        ttl: int,
    ) -> T:
        value = await fetch()
        self.spawn(self.set_json(key, value, ttl), "get_or_set")
        return value

    async def stats(self) -> CacheStats:
        """Snapshot of activity counters plus the store's key count."""

        async def _dbsize(r: Redis[Any]) -> int:
            return int(await r.dbsize())

        keys = await self.execute("dbsize", _dbsize, None)
        snapshot = CacheStats(**self._stats.to_dict())
        snapshot.connected = self.is_ready() and keys is not None
        snapshot.keys = keys
        return snapshot


__all__ = ["CacheStats", "SafeCacheClient"]
