"""API routes."""

from piecerate_engine.api.routes.earnings import router as earnings_router
from piecerate_engine.api.routes.health import router as health_router
from piecerate_engine.api.routes.holds import router as holds_router

__all__ = ["holds_router", "earnings_router", "health_router"]
