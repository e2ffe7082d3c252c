"""Application entry point.

Usage:
    # Development with auto-reload
    uvicorn safecache.main:app --reload

    # Or run the module directly
    python -m safecache.main
"""

from safecache.factory import create_app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    from safecache.core.config import get_settings

    settings = get_settings()

    uvicorn.run(
        "safecache.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.is_development,
        log_level=settings.logging.level.lower(),
    )
