"""Fixed-window rate limiting on Redis.

This module provides:
- ``RateLimiter.check_and_consume``: one atomic round trip per request
- ``RateLimit``: a FastAPI dependency that applies a limit to a route

The limiter fails open. When Redis is down every request is allowed; the limit
is protection, not a gate.
"""

# No postponed annotations: FastAPI reads RateLimit.__call__ types at runtime.
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from fastapi import Request, Response

from safecache.cache.keys import rate_limit_key
from safecache.core.exceptions import RateLimitException
from safecache.core.middleware.identity import get_client_ip, get_request_user_id
from safecache.observability.logging import get_logger
from safecache.observability.metrics import RATE_LIMIT_DECISIONS


if TYPE_CHECKING:
    from collections.abc import Sequence

    from redis.asyncio import Redis

    from safecache.cache.client import SafeCacheClient

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one ``check_and_consume`` call."""

    allowed: bool
    remaining: int
    limit: int
    reset_after: int | None = None  # Seconds until the window closes

    @classmethod
    def open(cls, limit: int) -> "RateLimitResult":
        """Result used when the limiter cannot consult the store."""
        return cls(allowed=True, remaining=limit, limit=limit)


class RateLimiter:
    """Fixed-window counter per caller-defined key."""

    def __init__(self, client: "SafeCacheClient", *, enabled: bool = True) -> None:
        self._client = client
        self.enabled = enabled

    async def check_and_consume(
        self,
        key: str,
        limit: int,
        window_seconds: int,
    ) -> RateLimitResult:
        """Count one request against ``key`` and decide whether it may proceed.

        ``INCR``, ``EXPIRE key window NX`` and ``TTL`` run in one MULTI/EXEC.
        The window starts at the first request and its expiry is set exactly
        once, so later requests never slide it forward.

        Args:
            key: Rate window key, e.g. ``rl:like:user:42:post-1``.
            limit: Requests allowed per window.
            window_seconds: Window length.

        Returns:
            RateLimitResult; allowed with ``remaining=limit`` if the store is
            unavailable.
        """
        fallback = RateLimitResult.open(limit)
        if not self.enabled:
            return fallback

        async def _consume(r: "Redis[Any]") -> RateLimitResult:
            async with r.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, window_seconds, nx=True)
                pipe.ttl(key)
                current, _, ttl = await pipe.execute()
            current = int(current)
            return RateLimitResult(
                allowed=current <= limit,
                remaining=max(0, limit - current),
                limit=limit,
                reset_after=int(ttl) if ttl is not None and int(ttl) >= 0 else None,
            )

        return await self._client.execute("rate_limit", _consume, fallback)


class RateLimit:
    """FastAPI dependency applying a fixed-window limit to a route.

    The window key combines the scope, the caller identity (user id when
    authenticated, client IP otherwise) and any listed path parameters.

    Example:
        @router.post(
            "/posts/{post_id}/like",
            dependencies=[Depends(RateLimit("like", 10, 30, key_params=("post_id",)))],
        )
        async def like_post(post_id: str): ...
    """

    def __init__(
        self,
        scope: str,
        limit: int,
        window_seconds: int,
        *,
        key_params: "Sequence[str]" = (),
    ) -> None:
        self.scope = scope
        self.limit = limit
        self.window_seconds = window_seconds
        self.key_params = tuple(key_params)

    def key_for(self, request: Request) -> str:
        """Rate window key for this request."""
        user_id = get_request_user_id(request)
        identity = f"user:{user_id}" if user_id else f"ip:{get_client_ip(request)}"
        params = [request.path_params.get(name, "") for name in self.key_params]
        return rate_limit_key(self.scope, identity, *params)

    async def __call__(self, request: Request, response: Response) -> RateLimitResult:
        limiter: RateLimiter | None = getattr(request.app.state, "rate_limiter", None)
        if limiter is None:
            return RateLimitResult.open(self.limit)

        result = await limiter.check_and_consume(
            self.key_for(request), self.limit, self.window_seconds
        )

        if not result.allowed:
            RATE_LIMIT_DECISIONS.labels(scope=self.scope, decision="rejected").inc()
            logger.warning(
                "Rate limit exceeded",
                scope=self.scope,
                path=request.url.path,
                limit=self.limit,
                window_seconds=self.window_seconds,
            )
            raise RateLimitException(
                limit=result.limit,
                retry_after=result.reset_after or self.window_seconds,
            )

        RATE_LIMIT_DECISIONS.labels(scope=self.scope, decision="allowed").inc()
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        return result


__all__ = ["RateLimit", "RateLimitResult", "RateLimiter"]
