"""Shared test fixtures for the exchange session test suite.

Provides:
    - Domain fixtures: terms, freshly opened sessions, and a ``drive`` helper
      that replays (role, action) steps through the Action Policy
    - A file-backed SQLite database per test (aiosqlite), so that separate
      DB sessions really use separate connections
    - Settings tuned for fast stale-state retries
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from exchange_sessions.config import Settings
from exchange_sessions.domain.enums import ExchangeType, PartyRole, SessionAction
from exchange_sessions.domain.policy import apply_action
from exchange_sessions.domain.session import ExchangeSession
from exchange_sessions.domain.terms import FxTerms, ShippingTerms
from exchange_sessions.infrastructure.database.orm_models import Base
from exchange_sessions.services.session_service import SessionService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable
    from pathlib import Path

    from exchange_sessions.infrastructure.database.orm_models import SessionEventRecord

INITIATOR_ID = "owner-amina"
TAKER_ID = "taker-koffi"


# ---------------------------------------------------------------------------
# Domain Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def opened_at() -> datetime:
    return datetime(2026, 3, 1, 9, 30, tzinfo=UTC)


@pytest.fixture
def fx_terms() -> FxTerms:
    return FxTerms(
        from_amount=Decimal("100"),
        from_currency="EUR",
        to_currency="XOF",
        to_amount=Decimal("65500"),
        rate=Decimal("655"),
    )


@pytest.fixture
def shipping_terms() -> ShippingTerms:
    return ShippingTerms(description="Laptop charger", weight="0.5kg", price="20 EUR")


@pytest.fixture
def fx_session(fx_terms: FxTerms, opened_at: datetime) -> ExchangeSession:
    """An FX session in PENDING_APPROVAL."""
    return ExchangeSession.open(
        exchange_type=ExchangeType.FX,
        initiator_id=INITIATOR_ID,
        taker_id=TAKER_ID,
        agreed_terms=fx_terms,
        offer_id="offer-1",
        session_id=uuid.UUID("12345678-1234-5678-1234-567812345678"),
        at=opened_at,
    )


@pytest.fixture
def shipping_session(shipping_terms: ShippingTerms, opened_at: datetime) -> ExchangeSession:
    """A SHIPPING session in PENDING_APPROVAL."""
    return ExchangeSession.open(
        exchange_type=ExchangeType.SHIPPING,
        initiator_id=INITIATOR_ID,
        taker_id=TAKER_ID,
        agreed_terms=shipping_terms,
        offer_id="offer-2",
        at=opened_at,
    )


@pytest.fixture
def drive() -> Callable[..., ExchangeSession]:
    """Return a helper that applies (role, action) steps in order.

    Usage:
        session = drive(fx_session, (PartyRole.INITIATOR, "accept"))
    """

    def _drive(session: ExchangeSession, *steps: tuple[PartyRole, str]) -> ExchangeSession:
        for role, action in steps:
            session = apply_action(session, role, SessionAction(action)).session
        return session

    return _drive


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="development",
        database_url="sqlite+aiosqlite://",
        stale_retry_attempts=3,
        stale_retry_max_wait_seconds=0.01,
    )


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sessions.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    await engine.dispose()


class ServiceHarness:
    """Runs service calls in their own committed transaction, like separate requests."""

    def __init__(self, factory: async_sessionmaker[AsyncSession], settings: Settings) -> None:
        self.factory = factory
        self.settings = settings

    async def create(
        self,
        agreed_terms: FxTerms | ShippingTerms,
        offer_id: str | None = "offer-1",
        taker_id: str = TAKER_ID,
        initiator_id: str = INITIATOR_ID,
    ) -> ExchangeSession:
        async with self.factory() as db:
            created = await SessionService(db, self.settings).create_session(
                exchange_type=agreed_terms.exchange_type,
                initiator_id=initiator_id,
                taker_id=taker_id,
                agreed_terms=agreed_terms,
                offer_id=offer_id,
            )
            await db.commit()
        return created

    async def act(
        self,
        session_id: uuid.UUID,
        action: str,
        actor_id: str,
        **kwargs: Any,
    ) -> ExchangeSession:
        async with self.factory() as db:
            updated = await SessionService(db, self.settings).request_transition(
                session_id, SessionAction(action), actor_id, **kwargs
            )
            await db.commit()
        return updated

    async def get(self, session_id: uuid.UUID) -> ExchangeSession:
        async with self.factory() as db:
            return await SessionService(db, self.settings).get_session(session_id)

    async def events(self, session_id: uuid.UUID) -> list[SessionEventRecord]:
        async with self.factory() as db:
            return await SessionService(db, self.settings).get_events(session_id)


@pytest.fixture
def harness(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> ServiceHarness:
    return ServiceHarness(session_factory, settings)
