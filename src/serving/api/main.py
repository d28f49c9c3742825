"""
FastAPI Application Factory

Creates and configures the analytics API application.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from src.analytics.exceptions import AnalyticsError, InvalidPeriodError, UpstreamUnavailableError
from src.config import get_settings
from src.config.logging import configure_logging
from src.database.connection import close_database, init_database
from src.serving.api.middleware import (
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    get_request_id,
)
from src.serving.api.routes import analytics_router, health_router, webhooks_router
from src.serving.cache import close_redis, init_redis

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect the database (required) and Redis (optional)"""
    configure_logging()
    logger.info("Starting subscription analytics API")

    await init_database()

    try:
        await init_redis()
    except Exception as e:
        logger.warning("Redis unavailable, serving uncached", error=str(e))

    yield

    logger.info("Shutting down")
    await close_redis()
    await close_database()


def _error_response(request: Request, status_code: int, error: str, details: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "details": details,
            "request_id": get_request_id(request),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(InvalidPeriodError)
    async def invalid_period_handler(request: Request, exc: InvalidPeriodError) -> JSONResponse:
        return _error_response(request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Invalid period", str(exc))

    @app.exception_handler(UpstreamUnavailableError)
    async def upstream_handler(request: Request, exc: UpstreamUnavailableError) -> JSONResponse:
        logger.error("Upstream unavailable", source=exc.source, error=str(exc), path=request.url.path)
        return _error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f"Failed to reach {exc.source}",
            str(exc),
        )

    @app.exception_handler(AnalyticsError)
    async def analytics_error_handler(request: Request, exc: AnalyticsError) -> JSONResponse:
        logger.error("Analytics request failed", error=str(exc), path=request.url.path)
        return _error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Failed to compute analytics",
            str(exc),
        )


def create_api_app(use_lifespan: bool = True, rate_limit: Optional[int] = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        use_lifespan: Connect to the database and Redis on startup
        rate_limit: Override the per-client request limit

    Returns:
        Configured FastAPI app instance
    """
    settings = get_settings()

    app = FastAPI(
        title="Subscription Revenue Analytics API",
        description="Retention, trial conversion and MRR over the daily subscription ledger",
        version=settings.version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan if use_lifespan else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=rate_limit or settings.security.rate_limit_requests,
        window_seconds=settings.security.rate_limit_window_seconds,
    )
    # Added last so it runs first and every response carries a request id
    app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)

    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(analytics_router, prefix="/api/v1/analytics", tags=["Analytics"])
    app.include_router(webhooks_router, prefix="/api/v1/webhooks", tags=["Webhooks"])

    @app.get("/api/v1/info")
    async def api_info():
        return {
            "name": settings.app_name,
            "version": settings.version,
            "environment": settings.app_env,
        }

    return app
