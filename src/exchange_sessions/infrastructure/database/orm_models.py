"""SQLAlchemy 2.0 ORM models for exchange sessions.

Two tables:
    1. exchange_sessions — One row per session: parties, terms, status,
       confirmation ledger and lifecycle timestamps.
    2. session_events    — Append-only audit log, one row per status hop or
       recorded confirmation.

Design decisions:
    - UUIDs as primary keys (generic Uuid type, native on PostgreSQL).
    - Agreed terms stored as JSON (JSONB on PostgreSQL); amounts as strings
      so Decimal precision survives the round trip.
    - ``version`` is the SQLAlchemy version_id_col: every UPDATE is issued as
      ``... WHERE id = ? AND version = ?`` and a lost race surfaces as
      StaleDataError.
    - CHECK constraints mirror the status vocabulary, distinct parties and the
      completed_at invariant at the database level.
    - A partial unique index over non-terminal statuses backs the
      one-active-session-per-(offer, taker) rule against concurrent creates.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from exchange_sessions.domain.enums import ExchangeType, SessionStatus
from exchange_sessions.domain.state_machine import is_active_status

if TYPE_CHECKING:
    from collections.abc import Iterable
    from enum import Enum

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _quoted(values: Iterable[Enum]) -> str:
    return ", ".join(f"'{v.value}'" for v in values)


_ACTIVE_STATUS_SQL = f"status IN ({_quoted(s for s in SessionStatus if is_active_status(s))})"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# 1. exchange_sessions
# ---------------------------------------------------------------------------
class ExchangeSessionRecord(Base):
    """Persisted form of an ExchangeSession aggregate."""

    __tablename__ = "exchange_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Origin ---
    offer_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Offer the session was opened against",
    )
    conversation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    exchange_type: Mapped[str] = mapped_column(String(16), nullable=False)

    # --- Participants ---
    initiator_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Party who owns the offer",
    )
    taker_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Party who took the offer",
    )

    # --- Terms & status ---
    agreed_terms: Mapped[dict] = mapped_column(JSONType, nullable=False)
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=SessionStatus.PENDING_APPROVAL.value,
        comment="Current lifecycle status (guarded by SessionStateMachine)",
    )

    # --- Confirmation ledger ---
    initiator_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    taker_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    initiator_confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    taker_confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Optimistic concurrency ---
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}  # noqa: RUF012

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_quoted(SessionStatus)})",
            name="ck_session_valid_status",
        ),
        CheckConstraint(
            f"exchange_type IN ({_quoted(ExchangeType)})",
            name="ck_session_valid_type",
        ),
        CheckConstraint("initiator_id <> taker_id", name="ck_session_distinct_parties"),
        CheckConstraint(
            "(status = 'COMPLETED') = (completed_at IS NOT NULL)",
            name="ck_session_completed_at",
        ),
        Index("idx_session_status", "status"),
        Index("idx_session_initiator", "initiator_id"),
        Index("idx_session_taker", "taker_id"),
        # At most one open session per (offer, taker); closed ones may repeat.
        Index(
            "uq_session_active_offer_taker",
            "offer_id",
            "taker_id",
            unique=True,
            postgresql_where=text(_ACTIVE_STATUS_SQL),
            sqlite_where=text(_ACTIVE_STATUS_SQL),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ExchangeSessionRecord id={self.id} type={self.exchange_type} "
            f"status={self.status} v{self.version}>"
        )


# ---------------------------------------------------------------------------
# 2. session_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class SessionEventRecord(Base):
    """Immutable audit record of a status hop or a recorded confirmation.

    Rows are only ever inserted. A multi-hop confirmation writes several rows
    sharing one ``session_version``, ordered by ``hop``.
    """

    __tablename__ = "session_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("exchange_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )

    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    action: Mapped[str | None] = mapped_column(
        String(16),
        nullable=True,
        comment="SessionAction that caused the event (null for creation and system events)",
    )
    actor_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="SYSTEM",
        comment="Party who triggered the event, or SYSTEM",
    )
    from_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    session_version: Mapped[int] = mapped_column(Integer, nullable=False)
    hop: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        Index("idx_event_session", "session_id", "session_version", "hop"),
        Index("idx_event_type", "event_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<SessionEventRecord id={self.id} type={self.event_type} "
            f"{self.from_status}->{self.to_status}>"
        )
