"""
Assist - FastAPI Application

Main entry point for the payment and subscription backend.
Provides checkout, webhook, access and admin reconciliation endpoints.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from assist.api.rate_limit import limiter
from assist.config.logging_config import configure_logging
from assist.config.settings import Settings, get_settings
from assist.infrastructure.container import build_container
from assist.infrastructure.exceptions import (
    AssistError,
    InvalidArgumentError,
    MissingCorrelationError,
    NotCompletedError,
    NotFoundError,
    ProcessorRequestError,
    SignatureError,
    UpstreamError,
    UpstreamTimeoutError,
)
from assist.infrastructure.services.reconciliation_service import ReconciliationSchedule


logger = logging.getLogger(__name__)

# Most specific class wins; anything else in the hierarchy is a 500
ERROR_STATUS_CODES = {
    InvalidArgumentError: 400,
    SignatureError: 400,
    ProcessorRequestError: 400,
    NotFoundError: 404,
    NotCompletedError: 409,
    MissingCorrelationError: 422,
    UpstreamError: 503,
    UpstreamTimeoutError: 504,
    AssistError: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    settings: Settings = app.state.settings
    logger.info(f"Assist Backend starting in {settings.environment} mode...")

    # Tests install their own container before startup
    owns_container = getattr(app.state, "container", None) is None
    if owns_container:
        app.state.container = build_container(settings)
        container = app.state.container
        if container.db is not None and settings.database_url:
            try:
                await container.db.ping()
                logger.info("Database connection pool initialized")
            except Exception as e:
                logger.warning(f"Database initialization check failed: {e}")

    schedule: Optional[ReconciliationSchedule] = None
    if settings.reconcile_interval_seconds > 0:
        schedule = ReconciliationSchedule(
            app.state.container.reconciler,
            settings.reconcile_interval_seconds,
        )
        schedule.start()
    app.state.reconcile_schedule = schedule

    yield

    if schedule is not None:
        await schedule.stop()
        logger.info("Reconciliation schedule stopped")

    if owns_container:
        try:
            await app.state.container.close()
            logger.info("Database connection pool closed")
        except Exception as e:
            logger.warning(f"Database shutdown error: {e}")

    logger.info("Assist Backend shutting down...")


async def assist_error_handler(request: Request, exc: AssistError):
    """Map the AssistError hierarchy onto HTTP responses."""
    status_code = 500
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            status_code = ERROR_STATUS_CODES[cls]
            break

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Too many checkout or access calls from one account."""
    logger.warning(f"Rate limit hit on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=429,
        content={
            "error": "RateLimitExceeded",
            "message": f"Rate limit exceeded: {exc.detail}",
            "details": {"limit": exc.detail},
        },
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Settings are loaded (and validated) here, so a missing processor secret
    stops the process before it serves anything.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="Assist",
        description="Payment and subscription backend for The Assist App",
        version="1.0.0",
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.settings = settings
    app.state.container = None

    # CORS configuration from Settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Per-account limits on checkout and access routes
    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter

    app.add_exception_handler(AssistError, assist_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # ========================================================================
    # Health Check
    # ========================================================================

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "assist-backend"}

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "message": "Assist API",
            "version": "1.0.0",
            "docs": "/docs",
        }

    # ========================================================================
    # Register routers
    # ========================================================================

    from assist.api.routes import access, admin, checkout, webhooks

    app.include_router(checkout.router, prefix="/api")
    app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
    app.include_router(access.router, prefix="/api")
    app.include_router(admin.router, prefix="/api")

    return app


app = create_app()
