"""
Stageworks backend application.

FastAPI application with structured logging, error handling, login lockout
and rate limiting.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stageworks.api import admin_router, auth_router, health_router
from stageworks.config import get_settings
from stageworks.core import get_logger, setup_logging
from stageworks.core.middleware import (
    RateLimitMiddleware,
    RequestContextMiddleware,
    RequestSizeLimitMiddleware,
    setup_exception_handlers,
)
from stageworks.db import dispose_engine, reset_session_factory, verify_database_connection
from stageworks.security import RateLimiterRegistry

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()

    # Startup
    setup_logging(
        level=settings.log_level,
        json_output=not settings.debug,
        log_file=settings.log_file or None,
    )
    logger.info(
        "Starting Stageworks backend",
        data={
            "host": settings.host,
            "port": settings.port,
            "environment": settings.environment,
            "max_attempts": settings.max_attempts,
            "lockout_duration_ms": settings.lockout_duration_ms,
        },
    )

    # Does NOT run migrations
    if verify_database_connection():
        logger.info("Database connection verified")
    else:
        logger.warning(
            "Database connection failed - run 'alembic upgrade head' to initialize"
        )

    _app.state.start_time = datetime.now(UTC)

    # Tests may install their own registry
    if getattr(_app.state, "rate_limiters", None) is None:
        _app.state.rate_limiters = RateLimiterRegistry.from_settings(settings)
    registry: RateLimiterRegistry = _app.state.rate_limiters
    registry.start()

    if not settings.is_production:
        logger.warning("Running outside production - cookies are not marked Secure")

    yield

    # Shutdown
    logger.info("Shutting down Stageworks backend")
    await registry.stop()
    dispose_engine()
    reset_session_factory()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Stageworks",
        description="Stageworks booking backend: authentication and login security",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Setup exception handlers (must be before middleware)
    setup_exception_handlers(app)

    # Add middleware (order matters - last added = first executed)
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=settings.max_request_bytes)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", settings.csrf_header_name],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(admin_router)

    return app


app = create_app()
