"""Repository classes for database access.

Repositories encapsulate all SQL queries and translate between ORM records
and domain aggregates. They accept an AsyncSession and never manage their
own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from exchange_sessions.domain.enums import ExchangeType, PartyRole, SessionStatus
from exchange_sessions.domain.exceptions import (
    DuplicateSessionError,
    SessionNotFoundError,
    StaleSessionStateError,
)
from exchange_sessions.domain.session import ConfirmationRecord, ExchangeSession
from exchange_sessions.domain.state_machine import REACHABLE_STATUSES, is_active_status
from exchange_sessions.domain.terms import terms_from_dict
from exchange_sessions.infrastructure.database.orm_models import (
    ExchangeSessionRecord,
    SessionEventRecord,
)

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from exchange_sessions.domain.enums import EventType, SessionAction

_ACTIVE_STATUSES = tuple(
    s.value for s in REACHABLE_STATUSES[ExchangeType.SHIPPING] if is_active_status(s)
)


def _as_utc(value: datetime | None) -> datetime | None:
    """Backends without timezone support (SQLite) hand back naive UTC values."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def to_domain(record: ExchangeSessionRecord) -> ExchangeSession:
    """Rebuild the immutable aggregate from its ORM record."""
    exchange_type = ExchangeType(record.exchange_type)
    return ExchangeSession(
        id=record.id,
        exchange_type=exchange_type,
        status=SessionStatus(record.status),
        initiator_id=record.initiator_id,
        taker_id=record.taker_id,
        agreed_terms=terms_from_dict(exchange_type, record.agreed_terms),
        created_at=_as_utc(record.created_at),
        updated_at=_as_utc(record.updated_at),
        confirmations=ConfirmationRecord(
            initiator_confirmed=record.initiator_confirmed,
            taker_confirmed=record.taker_confirmed,
            initiator_confirmed_at=_as_utc(record.initiator_confirmed_at),
            taker_confirmed_at=_as_utc(record.taker_confirmed_at),
        ),
        offer_id=record.offer_id,
        conversation_id=record.conversation_id,
        completed_at=_as_utc(record.completed_at),
        cancelled_at=_as_utc(record.cancelled_at),
        cancel_reason=record.cancel_reason,
        version=record.version,
    )


def _copy_mutable_fields(session: ExchangeSession, record: ExchangeSessionRecord) -> None:
    confirmations = session.confirmations
    terms = session.agreed_terms.to_dict()
    if record.agreed_terms != terms:
        record.agreed_terms = terms
    record.status = session.status.value
    record.initiator_confirmed = confirmations.initiator_confirmed
    record.taker_confirmed = confirmations.taker_confirmed
    record.initiator_confirmed_at = confirmations.initiator_confirmed_at
    record.taker_confirmed_at = confirmations.taker_confirmed_at
    record.updated_at = session.updated_at
    record.completed_at = session.completed_at
    record.cancelled_at = session.cancelled_at
    record.cancel_reason = session.cancel_reason


class SessionRepository:
    """Data access for exchange sessions."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, exchange_session: ExchangeSession) -> ExchangeSession:
        """Insert a new session and return it with its first version number."""
        record = ExchangeSessionRecord(
            id=exchange_session.id,
            offer_id=exchange_session.offer_id,
            conversation_id=exchange_session.conversation_id,
            exchange_type=exchange_session.exchange_type.value,
            initiator_id=exchange_session.initiator_id,
            taker_id=exchange_session.taker_id,
            created_at=exchange_session.created_at,
        )
        _copy_mutable_fields(exchange_session, record)
        self._session.add(record)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            # Lost a concurrent create against uq_session_active_offer_taker.
            if exchange_session.offer_id is not None and "unique" in str(exc.orig).lower():
                raise DuplicateSessionError(
                    exchange_session.offer_id, exchange_session.taker_id
                ) from exc
            raise
        return to_domain(record)

    async def get_record(self, session_id: uuid.UUID) -> ExchangeSessionRecord | None:
        result = await self._session.execute(
            select(ExchangeSessionRecord).where(ExchangeSessionRecord.id == session_id)
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, session_id: uuid.UUID) -> ExchangeSession | None:
        """Fetch a session by its UUID."""
        record = await self.get_record(session_id)
        return None if record is None else to_domain(record)

    async def find_active_for_offer(self, offer_id: str, taker_id: str) -> ExchangeSession | None:
        """Return the taker's non-terminal session on ``offer_id``, if any."""
        result = await self._session.execute(
            select(ExchangeSessionRecord)
            .where(
                ExchangeSessionRecord.offer_id == offer_id,
                ExchangeSessionRecord.taker_id == taker_id,
                ExchangeSessionRecord.status.in_(_ACTIVE_STATUSES),
            )
            .limit(1)
        )
        record = result.scalar_one_or_none()
        return None if record is None else to_domain(record)

    async def list_for_party(
        self,
        party_id: str,
        status: SessionStatus | None = None,
        role: PartyRole | None = None,
        *,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[ExchangeSession], int]:
        """Fetch one page of the sessions ``party_id`` takes part in.

        Args:
            party_id: The participant.
            status: Only sessions currently in this status.
            role: Only sessions where ``party_id`` plays this role (both when None).
            limit: Page size.
            offset: Rows to skip.

        Returns:
            The page, most recently updated first, and the total number of
            matching sessions.
        """
        if role is None:
            condition = or_(
                ExchangeSessionRecord.initiator_id == party_id,
                ExchangeSessionRecord.taker_id == party_id,
            )
        elif PartyRole(role) is PartyRole.INITIATOR:
            condition = ExchangeSessionRecord.initiator_id == party_id
        else:
            condition = ExchangeSessionRecord.taker_id == party_id
        filters = [condition]
        if status is not None:
            filters.append(ExchangeSessionRecord.status == SessionStatus(status).value)

        total = await self._session.scalar(
            select(func.count()).select_from(ExchangeSessionRecord).where(*filters)
        )
        result = await self._session.execute(
            select(ExchangeSessionRecord)
            .where(*filters)
            .order_by(
                ExchangeSessionRecord.updated_at.desc(),
                ExchangeSessionRecord.created_at.desc(),
            )
            .limit(limit)
            .offset(offset)
        )
        return [to_domain(record) for record in result.scalars().all()], total or 0

    async def save(self, exchange_session: ExchangeSession) -> ExchangeSession:
        """Write a new snapshot over the version it was derived from.

        Raises:
            SessionNotFoundError: The row no longer exists.
            StaleSessionStateError: The row moved on since ``exchange_session``
                was read, either in this DB session or concurrently.
        """
        record = await self.get_record(exchange_session.id)
        if record is None:
            raise SessionNotFoundError(str(exchange_session.id))
        if record.version != exchange_session.version:
            raise StaleSessionStateError(
                str(exchange_session.id),
                expected_version=exchange_session.version,
                actual_version=record.version,
            )

        _copy_mutable_fields(exchange_session, record)
        try:
            await self._session.flush()
        except StaleDataError as exc:
            raise StaleSessionStateError(
                str(exchange_session.id), expected_version=exchange_session.version
            ) from exc
        return to_domain(record)


class SessionEventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        session_id: uuid.UUID,
        event_type: EventType,
        to_status: SessionStatus,
        session_version: int,
        *,
        from_status: SessionStatus | None = None,
        action: SessionAction | None = None,
        actor_id: str = "SYSTEM",
        hop: int = 0,
        at: datetime | None = None,
        metadata: dict | None = None,
    ) -> SessionEventRecord:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = SessionEventRecord(
            session_id=session_id,
            event_type=event_type.value,
            action=action.value if action else None,
            actor_id=actor_id,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value,
            session_version=session_version,
            hop=hop,
            metadata_json=metadata,
        )
        if at is not None:
            evt.created_at = at
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_session(self, session_id: uuid.UUID) -> list[SessionEventRecord]:
        """Fetch all events for a session in the order they were applied."""
        result = await self._session.execute(
            select(SessionEventRecord)
            .where(SessionEventRecord.session_id == session_id)
            .order_by(SessionEventRecord.session_version.asc(), SessionEventRecord.hop.asc())
        )
        return list(result.scalars().all())
