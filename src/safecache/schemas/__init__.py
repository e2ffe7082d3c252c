"""API request and response schemas."""

from safecache.schemas.admin import CacheClearResponse, CacheStatsResponse
from safecache.schemas.base import APIResponse
from safecache.schemas.health import HealthResponse, ReadinessResponse
from safecache.schemas.root import RootResponse


__all__ = [
    "APIResponse",
    "CacheClearResponse",
    "CacheStatsResponse",
    "HealthResponse",
    "ReadinessResponse",
    "RootResponse",
]
