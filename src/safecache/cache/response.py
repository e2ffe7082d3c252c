"""HTTP response caching for FastAPI endpoints.

This module provides:
- ``@cache_response``: serve GET responses from Redis, store them on a miss
- ``@invalidate_cache``: purge key patterns after a successful mutation

Both decorators wrap ``async`` endpoints that declare a ``request: Request``
parameter. Cache writes and purges run as detached tasks, so the client never
waits on Redis for anything but the initial lookup.

The body served on a hit is byte-for-byte the body the endpoint produced on the
miss; only the ``X-Cache``/``ETag``/``Cache-Control`` headers tell them apart.
A miss renders plain return values through the route's response model, so the
body is the same whether or not the cache was consulted.
"""

from __future__ import annotations

import functools
import inspect
import string
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

from fastapi import Request, Response
from fastapi.responses import ORJSONResponse
from fastapi.routing import APIRoute, serialize_response

from safecache.cache.keys import entity_tag, escape_pattern, response_cache_key
from safecache.core.middleware.identity import get_request_user_id
from safecache.observability.logging import get_logger
from safecache.observability.metrics import RESPONSE_CACHE


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from safecache.cache.client import SafeCacheClient

logger = get_logger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

JSON_MEDIA_TYPE = "application/json"


def _find_request_param(func: Callable[..., Any]) -> str:
    """Name of the endpoint parameter that receives the Request."""
    for name, param in inspect.signature(func).parameters.items():
        annotation = param.annotation
        if annotation is Request or annotation == "Request" or name == "request":
            return name
    msg = f"{func.__qualname__} must declare a `request: Request` parameter"
    raise TypeError(msg)


def _get_request(param: str, kwargs: dict[str, Any]) -> Request:
    request = kwargs.get(param)
    if not isinstance(request, Request):
        msg = f"Expected a Request in argument {param!r}"
        raise TypeError(msg)
    return request


def _get_cache_client(request: Request) -> SafeCacheClient | None:
    return getattr(request.app.state, "cache_client", None)


def _etag_matches(if_none_match: str | None, etag: str) -> bool:
    """Weak comparison of an If-None-Match header against ``etag``."""
    if not if_none_match:
        return False
    for candidate in if_none_match.split(","):
        tag = candidate.strip()
        if tag == "*" or tag.removeprefix("W/") == etag:
            return True
    return False


def _is_cacheable(response: Response) -> bool:
    # Hits are always served as 200, so other 2xx statuses are never stored.
    body = getattr(response, "body", None)
    media_type = (response.media_type or "").split(";")[0].strip()
    return (
        response.status_code == 200
        and media_type == JSON_MEDIA_TYPE
        and isinstance(body, (bytes, memoryview))
    )


async def _render(request: Request, result: Any) -> Response:
    """Render a plain return value the way FastAPI renders it for this route.

    The route's response model (with its include/exclude options) filters the
    content, so a miss produces the same body as an uncached request.
    """
    route = request.scope.get("route")
    if not isinstance(route, APIRoute):
        content = await serialize_response(response_content=result)
        return ORJSONResponse(content=content)

    content = await serialize_response(
        field=route.response_field,
        response_content=result,
        include=route.response_model_include,
        exclude=route.response_model_exclude,
        by_alias=route.response_model_by_alias,
        exclude_unset=route.response_model_exclude_unset,
        exclude_defaults=route.response_model_exclude_defaults,
        exclude_none=route.response_model_exclude_none,
    )
    return ORJSONResponse(content=content, status_code=route.status_code or 200)


def _placeholder_names(pattern: str) -> set[str]:
    """Names of the ``{name}`` placeholders in an invalidation pattern.

    Raises:
        ValueError: On malformed braces or a placeholder that is not a plain
            path parameter name.
    """
    names = set()
    for _, name, spec, conversion in string.Formatter().parse(pattern):
        if name is None:
            continue
        if not name.isidentifier() or spec or conversion:
            msg = f"Invalid placeholder {{{name}}} in cache pattern {pattern!r}"
            raise ValueError(msg)
        names.add(name)
    return names


def cache_response(
    ttl: int = 300,
    key_builder: Callable[[Request], str] | None = None,
    *,
    allow_authenticated: bool = False,
    vary_by_user_id: bool = False,
) -> Callable[[Callable[P, Awaitable[Any]]], Callable[P, Awaitable[Any]]]:
    """Cache successful GET responses of an endpoint in Redis.

    Args:
        ttl: Freshness window in seconds (entry TTL and ``max-age``).
        key_builder: Optional custom key builder receiving the Request.
        allow_authenticated: Also cache requests that carry a user id. Only
            safe for responses that do not depend on the user, unless
            ``vary_by_user_id`` is set too.
        vary_by_user_id: Append ``:user={id}`` to the key for authenticated
            requests (personalised feeds with a short TTL).

    Returns:
        Decorated endpoint.

    Example:
        @router.get("/posts")
        @cache_response(30)
        async def list_posts(request: Request, page: int = 1) -> dict: ...
    """
    if ttl <= 0:
        msg = f"Response cache TTL must be positive, got {ttl}"
        raise ValueError(msg)

    def decorator(func: Callable[P, Awaitable[Any]]) -> Callable[P, Awaitable[Any]]:
        request_param = _find_request_param(func)

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
            request = _get_request(request_param, kwargs)
            client = _get_cache_client(request)
            user_id = get_request_user_id(request)

            if (
                request.method != "GET"
                or (user_id and not allow_authenticated)
                or client is None
                or not client.is_ready()
            ):
                RESPONSE_CACHE.labels(result="bypass").inc()
                return await func(*args, **kwargs)

            if key_builder is not None:
                key = key_builder(request)
            else:
                key = response_cache_key(request, user_id if vary_by_user_id else None)

            visibility = "private" if user_id else "public"
            headers = {
                "X-Cache-Key": key,
                "Cache-Control": (
                    f"{visibility}, max-age={ttl}, stale-while-revalidate={ttl * 2}"
                ),
                "Vary": "Accept-Encoding",
            }

            cached = await client.get(key)
            if cached is not None:
                body = cached.encode()
                etag = entity_tag(key, body)
                headers.update({"X-Cache": "HIT", "ETag": etag})

                if _etag_matches(request.headers.get("if-none-match"), etag):
                    RESPONSE_CACHE.labels(result="not_modified").inc()
                    logger.debug("Cache HIT (not modified)", key=key)
                    return Response(status_code=304, headers=headers)

                RESPONSE_CACHE.labels(result="hit").inc()
                logger.debug("Cache HIT", key=key)
                return Response(content=body, media_type=JSON_MEDIA_TYPE, headers=headers)

            result = await func(*args, **kwargs)
            if isinstance(result, Response):
                response = result
            else:
                response = await _render(request, result)

            if not _is_cacheable(response):
                RESPONSE_CACHE.labels(result="bypass").inc()
                return response

            body = bytes(response.body)
            try:
                text = body.decode()
            except UnicodeDecodeError:
                RESPONSE_CACHE.labels(result="bypass").inc()
                logger.warning("Response body is not UTF-8, not caching", key=key)
                return response

            client.spawn(client.set(key, text, ttl), "response_cache_set")

            headers.update({"X-Cache": "MISS", "ETag": entity_tag(key, body)})
            response.headers.update(headers)
            RESPONSE_CACHE.labels(result="miss").inc()
            logger.debug("Cache MISS", key=key, ttl=ttl)
            return response

        return wrapper

    return decorator


def invalidate_cache(
    *patterns: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Purge response cache entries after a successful (2xx) mutation.

    Patterns are Redis glob patterns. ``{name}`` placeholders are filled from
    the request's path parameters, so a single-item route can target its own
    entries. Substituted values are glob-escaped: a parameter can narrow a
    pattern but never widen it.

    Example:
        @router.post("/posts")
        @invalidate_cache("cache:/api/v1/posts*")
        async def create_post(request: Request, body: PostIn) -> dict: ...

    Raises:
        ValueError: If no pattern is given or a placeholder is malformed.
    """
    if not patterns:
        msg = "invalidate_cache requires at least one key pattern"
        raise ValueError(msg)
    placeholders = {pattern: _placeholder_names(pattern) for pattern in patterns}

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        request_param = _find_request_param(func)

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            result = await func(*args, **kwargs)

            status_code = result.status_code if isinstance(result, Response) else 200
            if not 200 <= status_code < 300:
                return result

            request = _get_request(request_param, kwargs)
            client = _get_cache_client(request)
            if client is None:
                return result

            for pattern, names in placeholders.items():
                missing = names - request.path_params.keys()
                if missing:
                    # The mutation already succeeded; entries expire via TTL.
                    logger.warning(
                        "Cache invalidation skipped, path parameters missing",
                        pattern=pattern,
                        missing=sorted(missing),
                    )
                    continue
                values = {
                    name: escape_pattern(str(request.path_params[name]))
                    for name in names
                }
                resolved = pattern.format_map(values)
                client.spawn(client.delete_pattern(resolved), "invalidate")
                logger.debug("Cache invalidation scheduled", pattern=resolved)

            return result

        return wrapper

    return decorator


__all__ = ["cache_response", "invalidate_cache"]
