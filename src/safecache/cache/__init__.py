"""Fail-open Redis cache layer.

This module provides:
- SafeCacheClient: every store call degrades to a fallback value
- CounterStore: hot counters and per-user flags with fixed TTLs
- RateLimiter / RateLimit: fixed-window limits that fail open
- cache_response / invalidate_cache: HTTP response caching for endpoints
"""

from safecache.cache.client import CacheStats, SafeCacheClient
from safecache.cache.counters import CounterField, CounterStore
from safecache.cache.keys import (
    cache_key,
    counter_key,
    rate_limit_key,
    response_cache_key,
    user_flag_key,
)
from safecache.cache.rate_limit import RateLimit, RateLimiter, RateLimitResult
from safecache.cache.response import cache_response, invalidate_cache


__all__ = [
    "CacheStats",
    "CounterField",
    "CounterStore",
    "RateLimit",
    "RateLimitResult",
    "RateLimiter",
    "SafeCacheClient",
    "cache_key",
    "cache_response",
    "counter_key",
    "invalidate_cache",
    "rate_limit_key",
    "response_cache_key",
    "user_flag_key",
]
