"""Application factory for the FastAPI app.

Centralizes app construction (middleware, handlers, routers, limiter
lifecycle) to keep tests able to build isolated app instances.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from quotaguard.api.routes import admin_router, demo_router, health_router
from quotaguard.core.config import settings
from quotaguard.core.exception_handlers import setup_exception_handlers
from quotaguard.core.logging import configure_logging
from quotaguard.core.middleware import request_id_middleware
from quotaguard.core.rate_limit import get_rate_limiter, set_rate_limiter


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Build the limiter eagerly so an unsupported backend fails at startup
    limiter = get_rate_limiter()
    try:
        yield
    finally:
        limiter.close()
        set_rate_limiter(None)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="QuotaGuard",
        description=(
            "Tiered fixed-window rate limiting with hourly, minute and burst "
            "windows, pluggable storage (memory, Redis, SQL), a blacklist "
            "overlay and per-caller request statistics."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(demo_router)
    app.include_router(admin_router)
    app.include_router(health_router)

    return app
