"""API routes."""

from square_sync.api.routes.health import router as health_router
from square_sync.api.routes.payments import router as payments_router
from square_sync.api.routes.webhooks import router as webhooks_router

__all__ = ["health_router", "payments_router", "webhooks_router"]
