#!/usr/bin/env python3
"""Exchange Sessions: end-to-end simulation.

Replays three scenarios between an offer owner (initiator) and a taker:

    Scenario 1: FX happy path
        - Taker opens a 100 EUR -> XOF session, initiator accepts
        - Initiator confirms (AWAITING_CONFIRMATION), taker confirms
        - Session walks CONFIRMED -> IN_PROGRESS -> COMPLETED in one step

    Scenario 2: Shipping with disputes
        - Parcel session accepted and confirmed by the initiator; the taker reports an issue
        - Resolved, shipped (IN_TRANSIT) and marked delivered by the receiver
        - Initiator disputes the delivery, it is resolved and re-shipped
        - Both parties confirm the handover and the session completes

    Scenario 3: Concurrent confirmations
        - Both parties confirm at the same time on separate connections
        - One write wins, the other is retried against the fresh state
        - The session completes exactly once

Usage:
    # Option A: Against the configured database (DATABASE_URL):
    python simulation.py

    # Option B: Throwaway SQLite file (no server needed):
    python simulation.py --sqlite

    # Run a specific scenario:
    python simulation.py --sqlite --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio
import tempfile
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from exchange_sessions.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from exchange_sessions.domain.enums import (  # noqa: E402
    ExchangeType,
    PartyRole,
    SessionAction,
    SessionStatus,
)
from exchange_sessions.domain.policy import available_actions  # noqa: E402
from exchange_sessions.domain.progress import progress  # noqa: E402
from exchange_sessions.domain.terms import FxTerms, ShippingTerms  # noqa: E402
from exchange_sessions.services.session_service import (  # noqa: E402
    SessionService,
    request_transition_with_retry,
)

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from exchange_sessions.domain.session import ExchangeSession

# Module-level state
_sqlite_engine = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> async_sessionmaker[AsyncSession]:
    """Initialize the database engine, create tables and return a session factory."""
    global _sqlite_engine, _session_factory

    if use_sqlite:
        from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

        from exchange_sessions.infrastructure.database.orm_models import Base

        # A file, not :memory:, so concurrent sessions get their own connections.
        db_path = Path(tempfile.mkdtemp(prefix="exchange-sim-")) / "sessions.db"
        _sqlite_engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", echo=False)
        _session_factory = async_sessionmaker(
            bind=_sqlite_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        async with _sqlite_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.sqlite_initialized", path=str(db_path))
    else:
        from exchange_sessions.infrastructure.database.engine import (
            get_session_factory,
            init_db,
        )

        await init_db()
        _session_factory = get_session_factory()
    return _session_factory


async def shutdown_database() -> None:
    """Close database connections."""
    global _sqlite_engine, _session_factory

    if _sqlite_engine is not None:
        await _sqlite_engine.dispose()
        _sqlite_engine = None
    else:
        from exchange_sessions.infrastructure.database.engine import close_db

        await close_db()
    _session_factory = None


# ---------------------------------------------------------------------------
# Parties
# ---------------------------------------------------------------------------
@dataclass
class Party:
    """A simulated participant acting through the session service."""

    party_id: str
    role: PartyRole

    async def act(
        self,
        factory: async_sessionmaker[AsyncSession],
        session_id: uuid.UUID,
        action: SessionAction,
        reason: str | None = None,
    ) -> ExchangeSession:
        updated = await request_transition_with_retry(
            factory, session_id, action, self.party_id, reason=reason
        )
        logger.info(
            f"{self.role.value.upper()}: {action.value}",
            party=self.party_id,
            status=updated.status.value,
        )
        return updated

    def describe_options(self, session: ExchangeSession) -> str:
        options = available_actions(session, self.role)
        return ", ".join(f"{o.label} -> {o.resulting_status}" for o in options) or "(none)"


INITIATOR = Party("owner-amina", PartyRole.INITIATOR)
TAKER = Party("taker-koffi", PartyRole.TAKER)


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------
def section(title: str) -> None:
    print(f"\n{'-' * 70}\n  {title}\n{'-' * 70}")


def print_session(session: ExchangeSession) -> None:
    snapshot = progress(session)
    print(
        f"  status={session.status}  v{session.version}  "
        f"progress={snapshot.percent}% ({snapshot.step_label})"
    )
    print(f"    initiator can: {INITIATOR.describe_options(session)}")
    print(f"    taker can:     {TAKER.describe_options(session)}")


async def print_audit_trail(factory: async_sessionmaker[AsyncSession], session_id: Any) -> None:
    section("Audit trail")
    async with factory() as db:
        events = await SessionService(db).get_events(session_id)
    for evt in events:
        print(
            f"  v{evt.session_version}.{evt.hop}  {evt.event_type:<24} "
            f"{evt.from_status or '-':>22} -> {evt.to_status:<22} by {evt.actor_id}"
        )


async def open_session(
    factory: async_sessionmaker[AsyncSession],
    exchange_type: ExchangeType,
    terms: FxTerms | ShippingTerms,
    offer_id: str,
) -> ExchangeSession:
    async with factory() as db:
        created = await SessionService(db).create_session(
            exchange_type=exchange_type,
            initiator_id=INITIATOR.party_id,
            taker_id=TAKER.party_id,
            agreed_terms=terms,
            offer_id=offer_id,
        )
        await db.commit()
    return created


# ===========================================================================
# Scenario 1: FX happy path
# ===========================================================================
async def scenario_1_fx_happy_path(factory: async_sessionmaker[AsyncSession]) -> None:
    section("SCENARIO 1: FX happy path (100 EUR -> XOF)")
    session = await open_session(
        factory,
        ExchangeType.FX,
        FxTerms(
            from_amount=Decimal("100"),
            from_currency="EUR",
            to_currency="XOF",
            to_amount=Decimal("65500"),
            rate=Decimal("655"),
        ),
        offer_id="offer-fx-1",
    )
    print_session(session)

    for party, action in (
        (INITIATOR, SessionAction.ACCEPT),
        (INITIATOR, SessionAction.CONFIRM),
        (TAKER, SessionAction.CONFIRM),
    ):
        session = await party.act(factory, session.id, action)
        print_session(session)

    if session.status != SessionStatus.COMPLETED:
        raise RuntimeError(f"expected COMPLETED, got {session.status}")
    await print_audit_trail(factory, session.id)


# ===========================================================================
# Scenario 2: Shipping with a dispute
# ===========================================================================
async def scenario_2_shipping_dispute(factory: async_sessionmaker[AsyncSession]) -> None:
    section("SCENARIO 2: Parcel shipment with a dispute")
    session = await open_session(
        factory,
        ExchangeType.SHIPPING,
        ShippingTerms(description="Laptop charger", weight="0.5kg", price="20 EUR"),
        offer_id="offer-ship-1",
    )

    steps: tuple[tuple[Party, SessionAction, str | None], ...] = (
        (INITIATOR, SessionAction.ACCEPT, None),
        (INITIATOR, SessionAction.CONFIRM, None),
        (TAKER, SessionAction.DISPUTE, "Pickup address missing from the listing"),
        (TAKER, SessionAction.CONFIRM, None),
        (INITIATOR, SessionAction.PROGRESS, None),
        (TAKER, SessionAction.PROGRESS, None),
        (INITIATOR, SessionAction.DISPUTE, "Receiver reports a damaged box"),
        (INITIATOR, SessionAction.CONFIRM, None),
        (INITIATOR, SessionAction.PROGRESS, None),
        (TAKER, SessionAction.PROGRESS, None),
        (INITIATOR, SessionAction.COMPLETE, None),
        (TAKER, SessionAction.COMPLETE, None),
    )
    for party, action, reason in steps:
        session = await party.act(factory, session.id, action, reason=reason)
        print_session(session)

    if session.status != SessionStatus.COMPLETED:
        raise RuntimeError(f"expected COMPLETED, got {session.status}")
    await print_audit_trail(factory, session.id)


# ===========================================================================
# Scenario 3: Concurrent confirmations
# ===========================================================================
async def scenario_3_concurrent_confirmations(
    factory: async_sessionmaker[AsyncSession],
) -> None:
    section("SCENARIO 3: Both parties confirm at the same time")
    session = await open_session(
        factory,
        ExchangeType.FX,
        FxTerms(from_amount=Decimal("50"), from_currency="USD", to_currency="NGN"),
        offer_id="offer-fx-2",
    )
    session = await INITIATOR.act(factory, session.id, SessionAction.ACCEPT)

    results = await asyncio.gather(
        INITIATOR.act(factory, session.id, SessionAction.CONFIRM),
        TAKER.act(factory, session.id, SessionAction.CONFIRM),
    )
    final = max(results, key=lambda s: s.version)
    print_session(final)

    if final.status != SessionStatus.COMPLETED:
        raise RuntimeError(f"expected COMPLETED, got {final.status}")
    await print_audit_trail(factory, session.id)


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_fx_happy_path,
    2: scenario_2_shipping_dispute,
    3: scenario_3_concurrent_confirmations,
}


async def run(scenarios: list[int], use_sqlite: bool = False) -> None:
    factory = await init_database(use_sqlite=use_sqlite)
    try:
        for num in scenarios:
            await SCENARIOS[num](factory)
        print("\n" + "=" * 70)
        print("  ALL SCENARIOS COMPLETED SUCCESSFULLY")
        print("=" * 70 + "\n")
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Exchange Sessions Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        choices=[0, *SCENARIOS],
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use a throwaway SQLite file instead of DATABASE_URL.",
    )
    args = parser.parse_args()

    selected = list(SCENARIOS) if args.scenario == 0 else [args.scenario]
    asyncio.run(run(selected, use_sqlite=args.sqlite))
