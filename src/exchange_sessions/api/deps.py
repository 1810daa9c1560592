"""FastAPI dependency injection providers.

Used with Depends() in route handlers to inject database sessions, the
session service, and configuration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends
from sqlalchemy.ext.asyncio import (  # noqa: TC002 - resolved at runtime by FastAPI
    AsyncSession,
    async_sessionmaker,
)

from exchange_sessions.config import Settings, get_settings
from exchange_sessions.infrastructure.database.engine import (
    get_async_session,
    get_session_factory,
)
from exchange_sessions.services.session_service import SessionService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    """Provide the session factory, for work that needs one DB session per attempt."""
    return get_session_factory()


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


async def get_session_service(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> SessionService:
    """Provide a SessionService bound to the request's DB session."""
    return SessionService(session, settings=settings)
