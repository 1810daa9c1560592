"""FastAPI application entry point for the exchange session service.

Lifecycle:
    1. Startup: Initialize logging and the database (tables created in dev mode).
    2. Running: Serve the REST API at /api/v1/*.
    3. Shutdown: Dispose of the database engine.

Run with:
    uvicorn exchange_sessions.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from exchange_sessions.config import get_settings
from exchange_sessions.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, debug=settings.app_debug)

    from exchange_sessions.infrastructure.database.engine import close_db, init_db

    await init_db()
    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    logger.info("app.shutting_down")
    await close_db()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory: creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Exchange Sessions",
        description=(
            "Lifecycle service for peer-to-peer currency swaps and parcel "
            "shipments: status graph, dual confirmation and action policy."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    from exchange_sessions.api.middleware import setup_middleware

    setup_middleware(app)

    from exchange_sessions.api.routes.health import router as health_router
    from exchange_sessions.api.routes.sessions import router as sessions_router

    app.include_router(health_router)
    app.include_router(sessions_router)

    return app


# The app instance used by Uvicorn
app = create_app()
