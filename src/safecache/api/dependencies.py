"""FastAPI dependencies for service access.

The cache layer is built during application startup and stored in
``app.state``; these dependencies hand it to route handlers.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from safecache.cache.client import SafeCacheClient
from safecache.cache.counters import CounterStore
from safecache.cache.rate_limit import RateLimiter
from safecache.core.config import Settings, get_settings


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    settings = getattr(request.app.state, "settings", None)
    return settings if isinstance(settings, Settings) else get_settings()


async def get_cache_client(request: Request) -> SafeCacheClient:
    """Get the cache client from app state.

    Args:
        request: The incoming request.

    Returns:
        The application's SafeCacheClient.

    Raises:
        HTTPException: 503 if the cache layer was never initialized.
    """
    client: SafeCacheClient | None = getattr(request.app.state, "cache_client", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cache client not initialized",
        )
    return client


async def get_counter_store(request: Request) -> CounterStore:
    """Get the counter store from app state."""
    store: CounterStore | None = getattr(request.app.state, "counter_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Counter store not initialized",
        )
    return store


async def get_rate_limiter(request: Request) -> RateLimiter:
    """Get the rate limiter from app state."""
    limiter: RateLimiter | None = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rate limiter not initialized",
        )
    return limiter
