"""Prometheus metrics instrumentation.

This module provides:
- FastAPI automatic request metrics
- Cache layer counters (operation outcomes, response cache results,
  rate limit decisions, invalidated keys)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator, metrics

from safecache.observability.logging import get_logger


if TYPE_CHECKING:
    from fastapi import FastAPI

    from safecache.core.config import Settings

logger = get_logger(__name__)

METRIC_NAMESPACE = "safecache"

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache store operations by outcome (ok, fallback, skipped).",
    ["op", "outcome"],
    namespace=METRIC_NAMESPACE,
)

RESPONSE_CACHE = Counter(
    "response_cache_total",
    "Response cache lookups by result (hit, miss, not_modified, bypass).",
    ["result"],
    namespace=METRIC_NAMESPACE,
)

RATE_LIMIT_DECISIONS = Counter(
    "rate_limit_total",
    "Rate limit decisions by scope.",
    ["scope", "decision"],
    namespace=METRIC_NAMESPACE,
)

INVALIDATED_KEYS = Counter(
    "cache_invalidated_keys_total",
    "Keys removed by pattern invalidation.",
    namespace=METRIC_NAMESPACE,
)


def setup_metrics(app: FastAPI, settings: Settings) -> Instrumentator:
    """Configure Prometheus HTTP instrumentation and the metrics endpoint.

    Args:
        app: The FastAPI application instance.
        settings: Application settings.

    Returns:
        Configured Instrumentator instance.
    """
    if not settings.observability.metrics.enabled:
        logger.info("Metrics collection disabled")
        return Instrumentator()

    prefix = settings.api.v1_prefix

    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=[
            f"{prefix}/health",
            f"{prefix}/ready",
            f"{prefix}/metrics",
        ],
    )
    instrumentator.add(
        metrics.default(
            metric_namespace=METRIC_NAMESPACE,
            metric_subsystem="http",
        )
    )
    instrumentator.instrument(app)

    metrics_endpoint = f"{prefix}/metrics"
    instrumentator.expose(
        app,
        endpoint=metrics_endpoint,
        include_in_schema=True,
        tags=["Monitoring"],
    )

    logger.info("Prometheus metrics configured", endpoint=metrics_endpoint)
    return instrumentator


__all__ = [
    "CACHE_OPERATIONS",
    "INVALIDATED_KEYS",
    "RATE_LIMIT_DECISIONS",
    "RESPONSE_CACHE",
    "setup_metrics",
]
