"""Custom middleware components."""

from safecache.core.middleware.identity import IdentityMiddleware
from safecache.core.middleware.logging import LoggingMiddleware
from safecache.core.middleware.request_id import RequestIDMiddleware


__all__ = [
    "IdentityMiddleware",
    "LoggingMiddleware",
    "RequestIDMiddleware",
]
