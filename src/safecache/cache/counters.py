"""Hot counters and per-user flags kept in Redis as a bounded-staleness shadow.

Keys:
- post:{subject_id}:{field}           - likes / views / comments / shares counters
- user:{user_id}:{flag}:{subject_id}  - per-user boolean state, e.g. "liked"

The database remains the source of truth. Every value here expires, and a
missing value means "unknown, ask the database", never zero or false.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any

from safecache.cache.keys import counter_key, user_flag_key
from safecache.observability.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from redis.asyncio import Redis

    from safecache.cache.client import SafeCacheClient

logger = get_logger(__name__)

DEFAULT_COUNTER_TTL = 86400
DEFAULT_FLAG_TTL = 86400


class CounterField(StrEnum):
    """Well-known counter fields. Any other string is accepted as well."""

    LIKES = "likes"
    VIEWS = "views"
    COMMENTS = "comments"
    SHARES = "shares"


def _to_int(value: Any) -> int | None:
    if value is None:
        return None
    return int(value)


class CounterStore:
    """Counters and user flags on top of a ``SafeCacheClient``.

    Counter TTLs are fixed: the expiry is set once, when the increment creates
    the key, and later increments never extend it. A hot counter therefore
    resyncs with the database at least once per ``counter_ttl``.
    """

    def __init__(
        self,
        client: SafeCacheClient,
        *,
        counter_ttl: int = DEFAULT_COUNTER_TTL,
        flag_ttl: int = DEFAULT_FLAG_TTL,
    ) -> None:
        self._client = client
        self.counter_ttl = counter_ttl
        self.flag_ttl = flag_ttl

    async def increment_counter(
        self,
        subject_id: str,
        field: str,
        delta: int = 1,
    ) -> int | None:
        """Atomically add ``delta`` to a counter.

        ``INCRBY`` and ``EXPIRE ... NX`` run in one MULTI/EXEC, so a counter
        can never be left without a TTL, and an existing TTL is never renewed.

        Returns:
            The new value, or None when the cache did not take the write. The
            caller's database write is authoritative either way; do not retry.
        """
        key = counter_key(subject_id, field)
        ttl = self.counter_ttl

        async def _incr(r: Redis[Any]) -> int:
            async with r.pipeline(transaction=True) as pipe:
                pipe.incrby(key, delta)
                pipe.expire(key, ttl, nx=True)
                value, _ = await pipe.execute()
            return int(value)

        return await self._client.execute("counter_incr", _incr, None)

    async def get_counter(self, subject_id: str, field: str) -> int | None:
        """Cached counter value, or None meaning "fall back to the database"."""
        key = counter_key(subject_id, field)

        async def _get(r: Redis[Any]) -> int | None:
            return _to_int(await r.get(key))

        return await self._client.execute("counter_get", _get, None)

    async def get_counters(
        self,
        subject_id: str,
        fields: Iterable[str],
    ) -> dict[str, int | None]:
        """Read several counters of one subject in a single MGET."""
        names = [str(f) for f in fields]
        if not names:
            return {}
        keys = [counter_key(subject_id, name) for name in names]

        async def _mget(r: Redis[Any]) -> dict[str, int | None]:
            values = await r.mget(keys)
            return {
                name: _to_int(value) for name, value in zip(names, values, strict=True)
            }

        return await self._client.execute(
            "counter_mget", _mget, dict.fromkeys(names)
        )

    async def get_counter_or_load(
        self,
        subject_id: str,
        field: str,
        loader: Callable[[], Awaitable[int]],
    ) -> int:
        """Cached counter, or the database aggregate returned by ``loader``."""
        cached = await self.get_counter(subject_id, field)
        if cached is not None:
            return cached
        logger.debug(
            "Counter not cached, loading from source",
            subject_id=subject_id,
            field=field,
        )
        return await loader()

    async def get_user_flag(
        self,
        user_id: str,
        subject_id: str,
        flag: str = "like",
    ) -> bool | None:
        """True if the flag is cached as set; None means "check the database".

        There is no cached False: a cleared flag and a never-seen flag are
        both absent.
        """
        key = user_flag_key(user_id, subject_id, flag)

        async def _get(r: Redis[Any]) -> bool | None:
            value = await r.get(key)
            if value is None:
                return None
            return str(value) == "1"

        return await self._client.execute("user_flag_get", _get, None)

    async def set_user_flag(
        self,
        user_id: str,
        subject_id: str,
        value: bool,
        flag: str = "like",
    ) -> None:
        """Mirror a boolean relation: True stores it with a TTL, False deletes it."""
        key = user_flag_key(user_id, subject_id, flag)
        if value:
            await self._client.set(key, 1, self.flag_ttl)
        else:
            await self._client.delete(key)


__all__ = ["CounterField", "CounterStore"]
