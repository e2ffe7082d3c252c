"""Admin operation schemas."""

from __future__ import annotations

from pydantic import Field

from safecache.schemas.base import APIResponse


class CacheClearResponse(APIResponse):
    """Response model for a pattern purge."""

    message: str = Field(
        ...,
        description="Result message",
        examples=["Cache cleared successfully"],
    )
    pattern: str = Field(..., description="Glob pattern that was purged")
    deleted: int = Field(..., description="Number of keys removed")


class CacheStatsResponse(APIResponse):
    """Process-local cache activity counters plus store status."""

    connected: bool = Field(..., description="Whether Redis answered")
    keys: int | None = Field(default=None, description="DBSIZE, if available")
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    invalidations: int = 0
    errors: int = 0
