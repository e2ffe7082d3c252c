"""SafeCache: a fail-open Redis cache, counter and rate-limit layer for FastAPI."""

__version__ = "0.1.0"
