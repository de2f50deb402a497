"""
FastAPI application factory.

* Registers routes for trips and admin.
* Builds the service container and starts / stops the acceptance
  processor via lifespan events.
* Maps domain errors to HTTP responses in one place.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.middleware import limiter
from src.api.routes import admin, trips
from src.config import Settings, settings as default_settings
from src.container import ServiceContainer, build_container
from src.domain.errors import TripServiceError

logger = logging.getLogger(__name__)


async def trip_error_handler(request: Request, exc: TripServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error_type": exc.error_type},
    )


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """Create the app.  A pre-built *container* is used as-is and not closed."""
    settings = settings or default_settings
    logging.basicConfig(level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start the acceptance processor on startup; stop on shutdown."""
        owned = container is None
        app.state.container = container or build_container(settings)
        await app.state.container.start()
        yield
        if owned:
            await app.state.container.close()
        else:
            await app.state.container.processor.stop()

    app = FastAPI(
        title="Trip Lifecycle API",
        description=(
            "Creates ride-hailing trips, tracks their status and applies "
            "driver acceptance events delivered over the event bus."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(TripServiceError, trip_error_handler)

    # Routers
    app.include_router(trips.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
