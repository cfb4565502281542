"""Health check endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from piecerate_engine.api.dependencies import HoldEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    database: str
    subscribers: int


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(engine: HoldEngine) -> HealthResponse:
    """Check API and database health."""
    db_status = "unhealthy"
    try:
        async with engine.session_factory() as session:
            await session.execute(text("SELECT 1"))
        db_status = "healthy"
    except (SQLAlchemyError, OSError):
        logger.warning("Health check could not reach the database", exc_info=True)

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        database=db_status,
        subscribers=engine.feed.subscriber_count,
    )


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(engine: HoldEngine) -> dict[str, str]:
    """Ready once the lifespan has built the hold engine (503 before)."""
    return {"status": "ready", "engine": type(engine).__name__}


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Liveness check for container orchestration."""
    return {"status": "alive"}
