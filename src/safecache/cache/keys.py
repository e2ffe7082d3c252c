"""Cache key construction.

Every key written by this package is built here so the key families stay
consistent with the invalidation patterns that target them.
"""

from __future__ import annotations

import hashlib
import re
from typing import TYPE_CHECKING
from urllib.parse import urlencode


if TYPE_CHECKING:
    from starlette.requests import Request

RESPONSE_PREFIX = "cache"
COUNTER_PREFIX = "post"
USER_PREFIX = "user"
RATE_LIMIT_PREFIX = "rl"

_GLOB_SPECIAL = re.compile(r"[*?\[\]\\]")


def cache_key(*key_parts: object) -> str:
    """Build a cache key from parts.

    Example:
        key = cache_key("post", post_id, "likes")
        # Returns: "post:abc123:likes"
    """
    return ":".join(str(part) for part in key_parts)


def counter_key(subject_id: str, field: str) -> str:
    """Key of a hot counter: ``post:{subject_id}:{field}``."""
    return cache_key(COUNTER_PREFIX, subject_id, field)


def user_flag_key(user_id: str, subject_id: str, flag: str = "like") -> str:
    """Key of a per-user boolean: ``user:{user_id}:{flag}:{subject_id}``."""
    return cache_key(USER_PREFIX, user_id, flag, subject_id)


def escape_pattern(value: str) -> str:
    """Escape Redis glob metacharacters so ``value`` matches only itself.

    Example:
        escape_pattern("a*b")
        # Returns: "a\\*b"
    """
    return _GLOB_SPECIAL.sub(r"\\\g<0>", value)


def rate_limit_key(scope: str, *parts: object) -> str:
    """Key of a rate window: ``rl:{scope}:{parts...}``."""
    return cache_key(RATE_LIMIT_PREFIX, scope, *parts)


def canonical_query(request: Request) -> str:
    """Query string with parameters sorted, so parameter order never splits keys."""
    return urlencode(sorted(request.query_params.multi_items()))


def response_cache_key(request: Request, user_id: str | None = None) -> str:
    """Derive the response cache key for a request.

    ``cache:{path}:{sorted query}`` with ``:user={id}`` appended when the
    response varies by user. The path comes first so a prefix pattern such as
    ``cache:/api/v1/posts*`` covers every parameterized listing of a resource.
    """
    key = cache_key(RESPONSE_PREFIX, request.url.path, canonical_query(request))
    if user_id:
        key = f"{key}:user={user_id}"
    return key


def entity_tag(key: str, body: bytes) -> str:
    """Strong ETag for a cached body.

    Derived from both the key and the body so that an entry re-populated with
    different content after expiry gets a new validator.
    """
    digest = hashlib.sha256(key.encode() + b"\0" + body).hexdigest()[:32]
    return f'"{digest}"'
