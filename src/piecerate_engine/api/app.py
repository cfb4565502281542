"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from piecerate_engine.api.routes import earnings_router, health_router, holds_router
from piecerate_engine.config import configure_logging, get_settings
from piecerate_engine.database import create_schema, dispose_db, init_db
from piecerate_engine.services import LoggingNotificationSink, PaymentHoldEngine

logger = logging.getLogger(__name__)


def create_app(hold_engine: PaymentHoldEngine | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Pass a ready engine to serve it as is (tests); otherwise the lifespan
    builds one from the environment settings.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        if hold_engine is not None:
            app.state.hold_engine = hold_engine
            yield
            return

        settings = get_settings()
        configure_logging(settings.log_level)
        engine, session_factory = init_db()
        if settings.create_schema:
            await create_schema(engine)
        app.state.hold_engine = PaymentHoldEngine(
            session_factory,
            notifier=LoggingNotificationSink(),
        )
        logger.info("Piece-rate engine %s started", settings.engine_version)
        try:
            yield
        finally:
            await dispose_db()

    app = FastAPI(
        title="Piece-Rate Engine API",
        description="Bundle payment holds and rework reconciliation",
        version="0.1.0",
        lifespan=lifespan,
    )
    if hold_engine is not None:
        app.state.hold_engine = hold_engine

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": {
                    "message": "An unexpected error occurred",
                    "code": "internal",
                },
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(holds_router, prefix="/api/v1")
    app.include_router(earnings_router, prefix="/api/v1")

    return app
