"""Application lifecycle events."""

from safecache.core.events.lifespan import lifespan


__all__ = ["lifespan"]
