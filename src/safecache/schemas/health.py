"""Health check schemas."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import Field

from safecache.schemas.base import APIResponse


DependencyStatus = Literal["healthy", "unhealthy", "disabled"]


class HealthResponse(APIResponse):
    """Liveness response."""

    status: str = Field(..., description="Health status", examples=["healthy"])
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Current server timestamp",
    )
    version: str = Field(..., description="Application version")
    environment: str = Field(..., description="Deployment environment")


class ReadinessResponse(HealthResponse):
    """Readiness response with dependency status.

    The cache is optional, so an unhealthy Redis makes the service
    ``degraded`` rather than not ready.
    """

    dependencies: dict[str, DependencyStatus] = Field(
        default_factory=dict,
        description="Status of external dependencies",
    )
