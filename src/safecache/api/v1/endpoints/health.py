"""Health check endpoints.

Provides liveness and readiness probes for Kubernetes and load balancers.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from safecache.api.dependencies import get_app_settings, get_cache_client
from safecache.cache.client import SafeCacheClient
from safecache.core.config import Settings
from safecache.schemas.health import DependencyStatus, HealthResponse, ReadinessResponse


router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness probe",
    description="Basic health check to verify the service is running.",
)
async def health_check(
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> HealthResponse:
    """Check if the service is alive. Does not touch Redis."""
    return HealthResponse(
        status="healthy",
        version=settings.app.version,
        environment=settings.APP_ENV,
    )


async def check_redis_health(client: SafeCacheClient) -> DependencyStatus:
    """Classify the cache as healthy, unhealthy or disabled."""
    if not client.enabled:
        return "disabled"
    return "healthy" if await client.ping() else "unhealthy"


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness probe",
    description=(
        "Readiness check. Redis is optional: an unhealthy cache reports "
        "'degraded' but the service keeps receiving traffic."
    ),
)
async def readiness_check(
    settings: Annotated[Settings, Depends(get_app_settings)],
    client: Annotated[SafeCacheClient, Depends(get_cache_client)],
) -> ReadinessResponse:
    """Check whether the service is ready to handle requests."""
    redis_status = await check_redis_health(client)
    return ReadinessResponse(
        status="degraded" if redis_status == "unhealthy" else "ready",
        version=settings.app.version,
        environment=settings.APP_ENV,
        dependencies={"redis": redis_status},
    )
