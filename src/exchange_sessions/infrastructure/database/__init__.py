"""Database infrastructure: engine, ORM models, and repositories."""

from exchange_sessions.infrastructure.database.engine import (
    close_db,
    get_async_session,
    get_session_factory,
    init_db,
)
from exchange_sessions.infrastructure.database.orm_models import (
    Base,
    ExchangeSessionRecord,
    SessionEventRecord,
)
from exchange_sessions.infrastructure.database.repositories import (
    SessionEventRepository,
    SessionRepository,
    to_domain,
)

__all__ = [
    "Base",
    "ExchangeSessionRecord",
    "SessionEventRecord",
    "SessionEventRepository",
    "SessionRepository",
    "to_domain",
    "get_async_session",
    "get_session_factory",
    "init_db",
    "close_db",
]
