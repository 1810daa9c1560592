"""Session Service: application layer for the exchange session lifecycle.

Coordinates between:
    - Action Policy / Confirmation Ledger (what an action does)
    - Repositories (optimistically versioned persistence)
    - Event log (one audit row per status hop or recorded confirmation)

HTTP routes and the scenario script both call into this service. A service
instance works inside one DB session and never commits; the caller owns the
transaction, so status, confirmations, timestamps and audit rows land
together or not at all.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from exchange_sessions.config import get_settings
from exchange_sessions.domain.enums import (
    EventType,
    PartyRole,
    SessionAction,
    SessionStatus,
)
from exchange_sessions.domain.exceptions import (
    DuplicateSessionError,
    IllegalTransitionError,
    InvariantViolationError,
    SessionNotFoundError,
    StaleSessionStateError,
    UnauthorizedError,
)
from exchange_sessions.domain.policy import apply_action
from exchange_sessions.domain.policy import available_actions as policy_available_actions
from exchange_sessions.domain.progress import progress
from exchange_sessions.domain.session import SIDE_FOR_ROLE, ExchangeSession, utcnow
from exchange_sessions.infrastructure.database.repositories import (
    SessionEventRepository,
    SessionRepository,
)
from exchange_sessions.logging_config import (
    bind_session_context,
    clear_session_context,
    get_logger,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Sequence
    from datetime import datetime
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
    from tenacity import RetryCallState

    from exchange_sessions.config import Settings
    from exchange_sessions.domain.enums import ConfirmationSide, ExchangeType
    from exchange_sessions.domain.policy import ActionOption
    from exchange_sessions.domain.progress import ProgressSnapshot
    from exchange_sessions.domain.terms import AgreedTerms
    from exchange_sessions.infrastructure.database.orm_models import SessionEventRecord

logger = get_logger(__name__)

SYSTEM_ACTOR = "SYSTEM"

_HOP_EVENTS: dict[SessionStatus, EventType] = {
    SessionStatus.ACCEPTED: EventType.SESSION_ACCEPTED,
    SessionStatus.REJECTED: EventType.SESSION_REJECTED,
    SessionStatus.CANCELLED: EventType.SESSION_CANCELLED,
    SessionStatus.AWAITING_CONFIRMATION: EventType.CONFIRMATION_REQUESTED,
    SessionStatus.CONFIRMED: EventType.TERMS_CONFIRMED,
    SessionStatus.IN_PROGRESS: EventType.EXCHANGE_STARTED,
    SessionStatus.IN_TRANSIT: EventType.SHIPMENT_DISPATCHED,
    SessionStatus.DELIVERED: EventType.SHIPMENT_DELIVERED,
    SessionStatus.COMPLETED: EventType.SESSION_COMPLETED,
    SessionStatus.DISPUTED: EventType.DISPUTE_RAISED,
}

ARBITRATION_OUTCOMES = frozenset(
    {SessionStatus.CONFIRMED, SessionStatus.COMPLETED, SessionStatus.CANCELLED}
)


def event_for_hop(from_status: SessionStatus, to_status: SessionStatus) -> EventType:
    """Return the audit event type recorded for one status hop."""
    if from_status == SessionStatus.DISPUTED and to_status == SessionStatus.CONFIRMED:
        return EventType.DISPUTE_RESOLVED
    return _HOP_EVENTS[to_status]


class SessionService:
    """Manages the exchange session lifecycle inside one DB session."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._session_repo = SessionRepository(session)
        self._event_repo = SessionEventRepository(session)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_session(
        self,
        exchange_type: ExchangeType,
        initiator_id: str,
        taker_id: str,
        agreed_terms: AgreedTerms,
        offer_id: str | None = None,
        conversation_id: str | None = None,
    ) -> ExchangeSession:
        """Open a session in PENDING_APPROVAL on behalf of the taker.

        Raises:
            SelfExchangeError: The taker owns the offer.
            DuplicateSessionError: The taker already has an active session on the offer.
        """
        draft = ExchangeSession.open(
            exchange_type=exchange_type,
            initiator_id=initiator_id,
            taker_id=taker_id,
            agreed_terms=agreed_terms,
            offer_id=offer_id,
            conversation_id=conversation_id,
        )
        if offer_id is not None:
            existing = await self._session_repo.find_active_for_offer(offer_id, taker_id)
            if existing is not None:
                raise DuplicateSessionError(offer_id, taker_id)

        created = await self._session_repo.create(draft)
        await self._event_repo.record(
            session_id=created.id,
            event_type=EventType.SESSION_CREATED,
            to_status=created.status,
            session_version=created.version,
            actor_id=taker_id,
            at=created.created_at,
            metadata={"offer_id": offer_id, "exchange_type": created.exchange_type.value},
        )

        logger.info(
            "session.created",
            session_id=str(created.id),
            exchange_type=created.exchange_type.value,
            offer_id=offer_id,
        )
        return created

    # ------------------------------------------------------------------
    # Party actions
    # ------------------------------------------------------------------

    async def request_transition(
        self,
        session_id: uuid.UUID,
        action: SessionAction,
        actor_id: str,
        side: ConfirmationSide | None = None,
        reason: str | None = None,
        expected_version: int | None = None,
        *,
        notes: str | None = None,
        accepted_amount: Decimal | None = None,
    ) -> ExchangeSession:
        """Apply ``action`` on behalf of ``actor_id``; the sole entry point for party mutations.

        Args:
            session_id: Target session.
            action: Requested SessionAction.
            actor_id: Party making the request; must be initiator or taker.
            side: Confirmation side for ``confirm``/``complete`` (defaults to the actor's own).
            reason: Free-text reason, recorded for cancel/reject/dispute.
            expected_version: Version the client last read. A mismatch fails fast.
            notes: Free-text note kept in the audit metadata (e.g. a transfer reference).
            accepted_amount: FX only, with ``accept``: the portion of the offered
                amount the initiator takes. Written into the agreed terms.

        Raises:
            SessionNotFoundError, UnauthorizedError, ActionNotPermittedError,
            IllegalTransitionError, ConfirmationError, InvalidTermsError,
            StaleSessionStateError.
        """
        bind_session_context(str(session_id), actor_id)
        try:
            current = await self._get_or_raise(session_id)
            role = self._role_or_raise(current, actor_id)
            self._check_expected_version(current, expected_version)

            action = SessionAction(action)
            try:
                result = apply_action(
                    current,
                    role,
                    action,
                    side=side,
                    reason=reason,
                    accepted_amount=accepted_amount,
                    at=utcnow(),
                )
            except InvariantViolationError:
                logger.error(
                    "session.invariant_violation",
                    status=current.status.value,
                    action=action.value,
                    role=role.value,
                )
                raise

            metadata: dict = {"role": role.value}
            if result.confirmation_recorded:
                metadata["side"] = SIDE_FOR_ROLE[role].value
            if reason:
                metadata["reason"] = reason
            if notes:
                metadata["notes"] = notes
            if accepted_amount is not None:
                metadata["accepted_amount"] = str(accepted_amount)

            saved = await self._persist(
                current,
                result.session,
                result.path,
                actor_id=actor_id,
                action=action,
                confirmation_recorded=result.confirmation_recorded,
                metadata=metadata,
            )

            if result.confirmation_recorded:
                logger.info(
                    "session.confirmation_recorded",
                    role=role.value,
                    status=saved.status.value,
                    hops=[s.value for s in result.path],
                )
            else:
                logger.info(
                    "session.transitioned",
                    action=action.value,
                    from_status=current.status.value,
                    to_status=saved.status.value,
                )
            return saved
        finally:
            clear_session_context()

    async def available_actions(self, session_id: uuid.UUID, party_id: str) -> list[ActionOption]:
        """List the actions ``party_id`` may take on the session right now."""
        current = await self._get_or_raise(session_id)
        role = self._role_or_raise(current, party_id)
        return policy_available_actions(current, role)

    # ------------------------------------------------------------------
    # System and operator actions
    # ------------------------------------------------------------------

    async def cancel_by_system(
        self,
        session_id: uuid.UUID,
        reason: str | None = None,
    ) -> ExchangeSession:
        """Cancel a session on behalf of an external scheduler (timeouts, expiry).

        Raises:
            IllegalTransitionError: The session's status has no edge to CANCELLED.
        """
        current = await self._get_or_raise(session_id)
        updated = current.transition_to(
            SessionStatus.CANCELLED,
            reason=reason or self._settings.system_cancel_reason,
        )
        updated.check_invariants()

        saved = await self._persist(
            current,
            updated,
            (SessionStatus.CANCELLED,),
            actor_id=SYSTEM_ACTOR,
            metadata={"reason": updated.cancel_reason},
        )
        logger.info(
            "session.cancelled_by_system",
            session_id=str(session_id),
            from_status=current.status.value,
            reason=updated.cancel_reason,
        )
        return saved

    async def arbitrate_dispute(
        self,
        session_id: uuid.UUID,
        outcome: SessionStatus,
        arbiter_id: str,
        reason: str | None = None,
    ) -> ExchangeSession:
        """Record an externally decided outcome for a DISPUTED session.

        Args:
            session_id: Disputed session.
            outcome: CONFIRMED (resume), COMPLETED (settle) or CANCELLED (void).
            arbiter_id: Who decided; recorded as the event actor.
            reason: Decision note.

        Raises:
            IllegalTransitionError: Session is not DISPUTED, or ``outcome`` is not
                one of the arbitration outcomes.
        """
        current = await self._get_or_raise(session_id)
        outcome = SessionStatus(outcome)
        if current.status != SessionStatus.DISPUTED or outcome not in ARBITRATION_OUTCOMES:
            raise IllegalTransitionError(current.status.value, outcome.value)

        updated = current.transition_to(outcome, reason=reason)
        updated.check_invariants()

        saved = await self._persist(
            current,
            updated,
            (outcome,),
            actor_id=arbiter_id,
            metadata={"arbitrated": True, "reason": reason},
        )
        logger.info(
            "session.dispute_arbitrated",
            session_id=str(session_id),
            outcome=outcome.value,
            arbiter_id=arbiter_id,
        )
        return saved

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_session(self, session_id: uuid.UUID) -> ExchangeSession:
        """Get a session or raise SessionNotFoundError."""
        return await self._get_or_raise(session_id)

    async def get_session_for_party(self, session_id: uuid.UUID, party_id: str) -> ExchangeSession:
        """Get a session, refusing parties that do not take part in it."""
        current = await self._get_or_raise(session_id)
        self._role_or_raise(current, party_id)
        return current

    async def list_sessions(
        self,
        party_id: str,
        status: SessionStatus | None = None,
        role: PartyRole | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[ExchangeSession], int]:
        """Return one page of the party's sessions and the total number that match."""
        return await self._session_repo.list_for_party(
            party_id, status, role, limit=limit, offset=(page - 1) * limit
        )

    async def get_progress(self, session_id: uuid.UUID) -> ProgressSnapshot:
        current = await self._get_or_raise(session_id)
        return progress(current)

    async def get_events(self, session_id: uuid.UUID) -> list[SessionEventRecord]:
        """Return the audit trail of a session in the order it was written."""
        await self._get_or_raise(session_id)
        return await self._event_repo.get_by_session(session_id)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _get_or_raise(self, session_id: uuid.UUID) -> ExchangeSession:
        current = await self._session_repo.get_by_id(session_id)
        if current is None:
            raise SessionNotFoundError(str(session_id))
        return current

    @staticmethod
    def _role_or_raise(current: ExchangeSession, party_id: str) -> PartyRole:
        role = current.role_of(party_id)
        if role is None:
            raise UnauthorizedError(party_id, str(current.id))
        return role

    @staticmethod
    def _check_expected_version(current: ExchangeSession, expected_version: int | None) -> None:
        if expected_version is not None and expected_version != current.version:
            logger.warning(
                "session.stale_conflict",
                expected_version=expected_version,
                actual_version=current.version,
            )
            raise StaleSessionStateError(
                str(current.id),
                expected_version=expected_version,
                actual_version=current.version,
            )

    async def _persist(
        self,
        before: ExchangeSession,
        updated: ExchangeSession,
        path: Sequence[SessionStatus],
        *,
        actor_id: str,
        action: SessionAction | None = None,
        confirmation_recorded: bool = False,
        metadata: dict | None = None,
    ) -> ExchangeSession:
        """Write the new snapshot, then one audit row per recorded confirmation or hop."""
        try:
            saved = await self._session_repo.save(updated)
        except StaleSessionStateError:
            logger.warning(
                "session.stale_conflict",
                session_id=str(before.id),
                expected_version=before.version,
            )
            raise

        at: datetime = updated.updated_at
        hop = 0
        if confirmation_recorded:
            await self._event_repo.record(
                session_id=saved.id,
                event_type=EventType.CONFIRMATION_RECORDED,
                from_status=before.status,
                to_status=before.status,
                session_version=saved.version,
                action=action,
                actor_id=actor_id,
                hop=hop,
                at=at,
                metadata=metadata,
            )
            hop += 1

        previous = before.status
        for target in path:
            await self._event_repo.record(
                session_id=saved.id,
                event_type=event_for_hop(previous, target),
                from_status=previous,
                to_status=target,
                session_version=saved.version,
                action=action,
                actor_id=actor_id,
                hop=hop,
                at=at,
                metadata=metadata,
            )
            previous = target
            hop += 1
        return saved


# ---------------------------------------------------------------------------
# Retry on optimistic-concurrency conflicts
# ---------------------------------------------------------------------------


def _log_stale_retry(retry_state: RetryCallState) -> None:
    logger.warning("session.transition_retry", attempt=retry_state.attempt_number)


async def request_transition_with_retry(
    session_factory: async_sessionmaker[AsyncSession],
    session_id: uuid.UUID,
    action: SessionAction,
    actor_id: str,
    side: ConfirmationSide | None = None,
    reason: str | None = None,
    settings: Settings | None = None,
    *,
    notes: str | None = None,
    accepted_amount: Decimal | None = None,
) -> ExchangeSession:
    """Run ``request_transition`` in its own transaction, retrying on stale state.

    Every attempt opens a fresh DB session and re-reads the session, so the
    action is re-validated against whatever the concurrent writer left behind
    (a confirm retried after a cancellation fails on the terminal status).
    Only StaleSessionStateError is retried; after the last attempt it propagates.
    """
    settings = settings or get_settings()
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(settings.stale_retry_attempts),
        wait=wait_exponential(multiplier=0.05, max=settings.stale_retry_max_wait_seconds),
        retry=retry_if_exception_type(StaleSessionStateError),
        before_sleep=_log_stale_retry,
        reraise=True,
    ):
        with attempt:
            async with session_factory() as db:
                service = SessionService(db, settings=settings)
                updated = await service.request_transition(
                    session_id,
                    action,
                    actor_id,
                    side=side,
                    reason=reason,
                    notes=notes,
                    accepted_amount=accepted_amount,
                )
                await db.commit()
    return updated
