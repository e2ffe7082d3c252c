"""Admin endpoints for cache management.

Provides:
- GET /admin/cache/stats for cache activity counters
- DELETE /admin/cache for purging keys by glob pattern

Access control is left to the upstream gateway.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from safecache.api.dependencies import get_cache_client
from safecache.cache.client import SafeCacheClient
from safecache.cache.keys import RESPONSE_PREFIX
from safecache.core.exceptions import ServiceUnavailableException
from safecache.observability.logging import get_logger
from safecache.schemas.admin import CacheClearResponse, CacheStatsResponse


logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get(
    "/cache/stats",
    response_model=CacheStatsResponse,
    summary="Cache statistics",
)
async def cache_stats(
    client: Annotated[SafeCacheClient, Depends(get_cache_client)],
) -> CacheStatsResponse:
    """Return process-local cache counters and the store's key count."""
    stats = await client.stats()
    return CacheStatsResponse(**stats.to_dict())


@router.delete(
    "/cache",
    response_model=CacheClearResponse,
    summary="Purge cache entries",
    description=(
        "Deletes every key matching the glob pattern using SCAN. Defaults to "
        "all cached HTTP responses."
    ),
    responses={
        503: {
            "description": "Cache service unavailable",
            "content": {
                "application/json": {
                    "example": {
                        "error": "SERVICE_UNAVAILABLE",
                        "message": "Cache service is not available",
                    }
                }
            },
        },
    },
)
async def clear_cache(
    client: Annotated[SafeCacheClient, Depends(get_cache_client)],
    pattern: Annotated[
        str, Query(min_length=1, description="Redis glob pattern")
    ] = f"{RESPONSE_PREFIX}:*",
) -> CacheClearResponse:
    """Purge keys matching ``pattern``.

    Raises:
        ServiceUnavailableException: 503 if Redis is disabled or not ready.
    """
    if not client.is_ready():
        raise ServiceUnavailableException("Cache service is not available")

    logger.info("Cache clear requested", pattern=pattern)
    deleted = await client.delete_pattern(pattern)

    return CacheClearResponse(
        message="Cache cleared successfully",
        pattern=pattern,
        deleted=deleted,
    )
