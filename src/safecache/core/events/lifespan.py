"""Application lifespan event handlers.

Startup builds the cache layer and stores it on ``app.state``; shutdown
flushes detached cache writes and closes connections. Nothing here fails
startup because Redis is unreachable.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from safecache.cache.client import SafeCacheClient
from safecache.cache.counters import CounterStore
from safecache.cache.rate_limit import RateLimiter
from safecache.core.config import Settings, get_settings
from safecache.observability.logging import get_logger, setup_logging
from safecache.observability.tracing import shutdown_tracing


if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from fastapi import FastAPI

logger = get_logger(__name__)


def _get_app_settings(app: FastAPI) -> Settings:
    settings = getattr(app.state, "settings", None)
    return settings if isinstance(settings, Settings) else get_settings()


async def _startup(app: FastAPI, settings: Settings) -> None:
    """Initialize logging and the cache layer.

    Args:
        app: The FastAPI application instance.
        settings: Application settings.
    """
    setup_logging(
        log_level=settings.logging.level,
        log_format=settings.logging.format,
        is_development=settings.is_development,
    )
    logger.info(
        "Starting application",
        app_name=settings.app.name,
        environment=settings.APP_ENV,
        debug=settings.app.debug,
    )

    cache_client = SafeCacheClient.from_settings(settings)
    await cache_client.connect()

    app.state.cache_client = cache_client
    app.state.counter_store = CounterStore(
        cache_client,
        counter_ttl=settings.cache.counter_ttl,
        flag_ttl=settings.cache.user_flag_ttl,
    )
    app.state.rate_limiter = RateLimiter(
        cache_client,
        enabled=settings.rate_limiting.enabled,
    )

    logger.info(
        "Application startup complete",
        cache_enabled=cache_client.enabled,
        cache_ready=cache_client.is_ready(),
    )


async def _shutdown(app: FastAPI, settings: Settings) -> None:
    """Flush pending cache writes and release connections.

    Args:
        app: The FastAPI application instance.
        settings: Application settings.
    """
    logger.info("Shutting down application")

    cache_client: SafeCacheClient | None = getattr(app.state, "cache_client", None)
    if cache_client is not None:
        await cache_client.shutdown(settings.cache.drain_timeout)

    # Flush pending spans
    shutdown_tracing()

    logger.info("Application shutdown complete")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifespan events.

    Args:
        app: The FastAPI application instance.

    Yields:
        None - control returns to the application to handle requests.
    """
    settings = _get_app_settings(app)
    await _startup(app, settings)
    try:
        yield
    finally:
        await _shutdown(app, settings)
