"""
Main entrypoint for the Directory API.

This module assembles the FastAPI application: logging, error
handlers, the origin guard, the rate limiter, the view cache and the
versioned routers.  ``create_app`` builds and configures the app,
which is then instantiated at module import time as ``app``::

    uvicorn directory_api.app.main:app --reload

When ``REDIS_URL`` is set, rate-limit counters and cached views are
shared through Redis; otherwise they are kept in process memory.
"""

import logging
from typing import Dict

from fastapi import FastAPI

from .api.v1.router import router as v1_router
from .core.cache import CacheInvalidator, InMemoryCache, RedisCache
from .core.config import settings
from .core.db import init_db
from .core.errors import register_exception_handlers
from .core.logging_config import setup_logging
from .core.origin import OriginGuard
from .core.rate_limit import InMemoryCounterStore, RateLimiter, RedisCounterStore


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Create and configure a FastAPI application.

    Returns
    -------
    FastAPI
        A configured FastAPI application instance.
    """
    # Initialise logging before anything else so that the setup below
    # can log.
    setup_logging(settings.log_level, settings.log_file or None)

    app = FastAPI(title=settings.project_name, version=settings.api_version)
    register_exception_handlers(app)

    app.state.origin_guard = OriginGuard(settings.allowed_origin_list())
    if settings.redis_url:
        counter_store = RedisCounterStore(settings.redis_url)
        cache = RedisCache(settings.redis_url, default_ttl=settings.cache_ttl_seconds)
        logger.info("Using Redis for rate limits and cache")
    else:
        counter_store = InMemoryCounterStore()
        cache = InMemoryCache(default_ttl=settings.cache_ttl_seconds)
        logger.info("Using in-process rate limits and cache")
    app.state.rate_limiter = RateLimiter(counter_store)
    app.state.cache = cache
    app.state.cache_invalidator = CacheInvalidator(cache)

    app.include_router(v1_router, prefix="/api/v1")

    @app.get("/health", tags=["health"])
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.on_event("startup")
    async def startup_event() -> None:
        # Creates the database file if needed and applies migrations.
        init_db()

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        await app.state.rate_limiter.store.close()
        await app.state.cache.close()

    return app


# Create the application instance at import time so that tools such as
# uvicorn can discover it without calling create_app manually.
app = create_app()
