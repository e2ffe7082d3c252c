"""Application factory for creating FastAPI instances.

This module provides the create_app factory function that:
- Configures the FastAPI application with appropriate settings
- Sets up middleware stack in the correct order
- Registers exception handlers
- Mounts API routers
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import ORJSONResponse

from safecache.api.v1.router import router as v1_router
from safecache.core.config import Settings, get_settings
from safecache.core.events import lifespan
from safecache.core.exceptions import setup_exception_handlers
from safecache.core.middleware import (
    IdentityMiddleware,
    LoggingMiddleware,
    RequestIDMiddleware,
)
from safecache.observability.metrics import setup_metrics
from safecache.observability.tracing import setup_tracing
from safecache.schemas.root import RootResponse


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure a FastAPI application instance.

    Args:
        settings: Optional settings override. If not provided, uses get_settings().

    Returns:
        Configured FastAPI application instance.
    """
    if settings is None:
        settings = get_settings()

    prefix = settings.api.v1_prefix
    docs_enabled = settings.is_non_production

    app = FastAPI(
        title=settings.app.name,
        version=settings.app.version,
        description="Fail-open Redis caching, counters and rate limiting",
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url=f"{prefix}/docs" if docs_enabled else None,
        redoc_url=f"{prefix}/redoc" if docs_enabled else None,
        openapi_url=f"{prefix}/openapi.json" if docs_enabled else None,
        debug=settings.app.debug,
    )

    # Read by the lifespan and by route dependencies
    app.state.settings = settings

    setup_exception_handlers(app)
    _setup_middleware(app, settings)
    _setup_routers(app, settings)

    # Observability (after routes are mounted)
    setup_tracing(app, settings)
    setup_metrics(app, settings)

    return app


def _setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure middleware stack.

    Middleware is executed in reverse order of addition. Order from the
    request's perspective:
    1. RequestIDMiddleware (clears log context, adds request ID)
    2. IdentityMiddleware (reads the trusted user id header)
    3. LoggingMiddleware (logs requests/responses with the cache result)
    4. GZipMiddleware (compresses responses)
    5. CORSMiddleware (handles CORS)
    """
    if settings.api.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.api.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=[
                "X-Request-ID",
                "X-Cache",
                "ETag",
                "X-RateLimit-Limit",
                "X-RateLimit-Remaining",
                "Retry-After",
            ],
        )

    app.add_middleware(GZipMiddleware, minimum_size=1000)

    prefix = settings.api.v1_prefix
    app.add_middleware(
        LoggingMiddleware,
        exclude_paths={
            f"{prefix}/health",
            f"{prefix}/ready",
            f"{prefix}/metrics",
            "/favicon.ico",
        },
    )

    app.add_middleware(
        IdentityMiddleware,
        header_name=settings.identity.user_id_header,
    )

    app.add_middleware(RequestIDMiddleware)


def _setup_routers(app: FastAPI, settings: Settings) -> None:
    """Mount API routers."""
    prefix = settings.api.v1_prefix
    app.include_router(v1_router, prefix=prefix)

    @app.get("/", response_model=RootResponse, include_in_schema=False)
    async def root() -> RootResponse:
        """Basic service info for load balancers and service discovery."""
        return RootResponse(
            service=settings.app.name,
            version=settings.app.version,
            status="operational",
            docs=f"{prefix}/docs" if settings.is_non_production else "disabled",
            health=f"{prefix}/health",
        )
