"""PostRelay FastAPI application entry point.

Configures the FastAPI app with:
- Lifespan events that build the component graph and start the scheduler loop
- Request-id, security-header and rate-limit middleware
- Route registration (health, publishing, callback administration)
- Error handlers mapping the publishing error taxonomy to HTTP responses
- OpenAPI documentation at /docs (debug mode only)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.api.middleware.security import (
    RateLimitMiddleware,
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
)
from src.api.routes import callbacks, health, publish
from src.api.version import API_VERSION
from src.core.config import Settings, get_settings
from src.core.errors import AuthError, PublishingError, SchedulingError, ValidationError
from src.core.logging_config import configure_logging
from src.core.redis import create_redis_client, verify_redis_connectivity
from src.core.tasks.scheduler import run_scheduler
from src.publishing.services import PublishingServices, create_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown.

    On startup: configure logging, connect to Redis (when it is the
    store backend), build the components unless they were injected, and
    start the scheduler loop.
    On shutdown: stop the scheduler loop and close connections.
    """
    settings: Settings = app.state.settings
    configure_logging(settings)

    # -- Components ---
    redis_client = None
    if getattr(app.state, "services", None) is None:
        if settings.store_backend == "redis":
            redis_client = create_redis_client(settings)
            if await verify_redis_connectivity(redis_client):
                logger.info("Redis connection verified")
            else:
                logger.warning("Redis is not reachable; starting in degraded mode")
        app.state.services = create_services(settings, redis_client)
        logger.info("Publishing components initialized (store=%s)", settings.store_backend)
    services: PublishingServices = app.state.services

    # -- Scheduler Loop ---
    shutdown_event = asyncio.Event()
    app.state.scheduler_shutdown = shutdown_event
    scheduler_task: asyncio.Task[None] | None = None
    if settings.scheduler_enabled:
        scheduler_task = asyncio.create_task(
            run_scheduler(services.scheduler, shutdown_event, settings.scheduler_poll_interval_seconds)
        )
        logger.info("Started scheduler loop")

    yield

    # -- Shutdown ---
    shutdown_event.set()
    if scheduler_task is not None:
        scheduler_task.cancel()
        await asyncio.gather(scheduler_task, return_exceptions=True)
        logger.info("Scheduler loop stopped")

    if redis_client is not None:
        await redis_client.aclose()
    logger.info("All connections closed")


def create_app(
    settings: Settings | None = None,
    services: PublishingServices | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use; defaults to the cached environment settings.
        services: Pre-built components. When omitted the lifespan builds them.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Authenticated asynchronous post publishing with signed status callbacks",
        version=API_VERSION,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services

    # -- Security Middleware ---
    # Note: middleware is applied in reverse order (last added = first executed).
    app.add_middleware(SecurityHeadersMiddleware, hsts=not settings.debug)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )

    # -- Routes ---
    app.include_router(health.router)
    app.include_router(publish.router)
    app.include_router(callbacks.router)

    # -- Error Handlers ---
    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        logger.warning("Auth error [%s]: %s (%s)", request_id, exc.message, exc.code)
        headers = {"WWW-Authenticate": 'Basic realm="PostRelay"'} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code, "request_id": request_id},
            headers=headers,
        )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        logger.warning("Validation error [%s]: %s", request_id, exc)
        return JSONResponse(
            status_code=422,
            content={
                "detail": "Validation failed",
                "errors": [error.to_dict() for error in exc.errors],
                "request_id": request_id,
            },
        )

    @app.exception_handler(SchedulingError)
    async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error("Scheduling error [%s]: %s", request_id, exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Failed to schedule post for publishing.", "request_id": request_id},
        )

    @app.exception_handler(PublishingError)
    async def publishing_error_handler(request: Request, exc: PublishingError) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error("Publishing error [%s]: %s", request_id, exc)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": str(exc), "request_id": request_id},
        )

    @app.exception_handler(Exception)  # Intentionally broad: top-level global error handler
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        logger.exception("Unhandled error [%s]: %s", request_id, exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "request_id": request_id},
        )

    return app


# Application instance used by uvicorn
app = create_app()
