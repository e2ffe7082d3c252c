"""Root endpoint response schema."""

from __future__ import annotations

from pydantic import Field

from safecache.schemas.base import APIResponse


class RootResponse(APIResponse):
    """Basic service information for service discovery."""

    service: str = Field(..., description="Service name", examples=["SafeCache Service"])
    version: str = Field(..., description="Service version", examples=["0.1.0"])
    status: str = Field(..., description="Operational status", examples=["operational"])
    docs: str = Field(..., description="API documentation URL or status")
    health: str = Field(..., description="Health check endpoint URL")
