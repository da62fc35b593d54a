"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from square_sync.api.routes import health_router, payments_router, webhooks_router
from square_sync.config import GatewayConfig, validate_production_config
from square_sync.database import init_db
from square_sync.errors import (
    CardDeclinedError,
    ConfigurationError,
    ConflictError,
    DecodeError,
    InvalidTransitionError,
    NotFoundError,
    ProtocolError,
    SquareSyncError,
    TransportError,
    UnsupportedCadenceError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# First match wins, so subclasses come before their bases.
ERROR_STATUS: list[tuple[type[SquareSyncError], int]] = [
    (CardDeclinedError, status.HTTP_402_PAYMENT_REQUIRED),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (UnsupportedCadenceError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (TransportError, status.HTTP_502_BAD_GATEWAY),
    (DecodeError, status.HTTP_502_BAD_GATEWAY),
    (ProtocolError, status.HTTP_502_BAD_GATEWAY),
]


def status_for(exc: SquareSyncError) -> int:
    for cls, code in ERROR_STATUS:
        if isinstance(exc, cls):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    init_db()
    config = GatewayConfig.from_env()
    if not config.is_test:
        for issue in validate_production_config(config):
            logger.warning("Gateway config: %s", issue)
    yield


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Square Sync API",
        description="CRM to Square payment sync and provisioning",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Exception handlers
    @app.exception_handler(SquareSyncError)
    async def square_sync_exception_handler(
        request: Request, exc: SquareSyncError
    ) -> JSONResponse:
        """Map typed errors to HTTP statuses."""
        code = status_for(exc)
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        content: dict = {"detail": str(exc), "code": exc.code}
        if isinstance(exc, ProtocolError) and exc.errors:
            content["errors"] = [
                {"code": e.code, "detail": e.detail, "category": e.category} for e in exc.errors
            ]
        return JSONResponse(status_code=code, content=content)

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(webhooks_router)
    app.include_router(payments_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
