"""Application factory for the admission service.

Centralizes app construction (metadata, middleware, handlers, routers) so
tests can build isolated instances.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from windowlimit.api.routes import admissions_router, health_router
from windowlimit.core.config import settings
from windowlimit.core.exception_handlers import setup_exception_handlers
from windowlimit.core.logging import configure_logging
from windowlimit.core.middleware import request_id_middleware
from windowlimit.core.rate_limit import close_script_store


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    await close_script_store()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="windowlimit",
        description=(
            "Sliding-window admission control backed by Redis. Each admission "
            "is decided atomically inside the store."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        lifespan=lifespan,
    )

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    app.include_router(admissions_router, prefix="/v1")
    app.include_router(health_router)

    return app
