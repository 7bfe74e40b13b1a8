"""
FastAPI Application Entry Point.

This is the main application file for the Terminal Billing Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from terminal_backend.app.core.config import settings
from terminal_backend.app.core.logging_config import setup_logging
from terminal_backend.app.core.observability import ObservabilityMiddleware
from terminal_backend.app.core.redis_client import close_redis, ping_redis
from terminal_backend.app.api.v1.router import router as api_v1_router
from terminal_backend.app.db.session import engine, Base
from terminal_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from terminal_backend.app.models.tariff import Tariff  # noqa: F401
from terminal_backend.app.models.tariff_sequence import TariffCodeSequence, TariffScopeLock  # noqa: F401
from terminal_backend.app.models.audit_log import AuditLog  # noqa: F401

setup_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Disposes the connection pool and the event bus client on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_redis()
    await engine.dispose()

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Tariff pricing and lifecycle engine for terminal billing",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and event bus reachability
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "event_bus": "up" if await ping_redis() else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Terminal Billing Backend API",
        "docs": "/docs",
        "health": "/health",
    }
