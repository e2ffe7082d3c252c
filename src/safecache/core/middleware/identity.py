"""Request identity middleware.

Authentication happens upstream (gateway or auth service). This middleware
only reads the trusted user-id header the upstream layer sets and exposes it
as ``request.state.user_id`` for caching and rate-limit keys.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from safecache.observability.logging import bind_context


if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response
    from starlette.types import ASGIApp


class IdentityMiddleware(BaseHTTPMiddleware):
    """Copy the upstream user id header into request state."""

    def __init__(self, app: ASGIApp, header_name: str = "X-User-ID") -> None:
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        user_id = request.headers.get(self.header_name, "").strip() or None
        request.state.user_id = user_id
        if user_id:
            bind_context(user_id=user_id)
        return await call_next(request)


def get_request_user_id(request: Request) -> str | None:
    """Authenticated user id for this request, or None for anonymous."""
    return getattr(request.state, "user_id", None)


def get_client_ip(request: Request) -> str:
    """Extract the client IP, honouring reverse-proxy headers."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        # First hop is the original client
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host

    return "unknown"
