"""Exchange Session aggregate.

An ExchangeSession is an immutable snapshot: every mutation returns a new
instance, so a failed operation can never leave a half-applied session
behind. Status changes go through ``transition_to``, which consults the
Status Graph and keeps the status-dependent timestamps consistent.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal

from exchange_sessions.domain.enums import (
    ConfirmationSide,
    ExchangeType,
    PartyRole,
    SessionStatus,
)
from exchange_sessions.domain.exceptions import (
    InvalidTermsError,
    InvariantViolationError,
    SelfExchangeError,
)
from exchange_sessions.domain.state_machine import is_reachable, is_terminal, validate_transition
from exchange_sessions.domain.terms import AgreedTerms, FxTerms

# The only side each role may attest to.
SIDE_FOR_ROLE: dict[PartyRole, ConfirmationSide] = {
    PartyRole.INITIATOR: ConfirmationSide.SENT,
    PartyRole.TAKER: ConfirmationSide.RECEIVED,
}

CLOSED_STATUSES = frozenset({SessionStatus.CANCELLED, SessionStatus.REJECTED})

DEFAULT_CLOSE_REASONS: dict[SessionStatus, str] = {
    SessionStatus.CANCELLED: "Cancelled",
    SessionStatus.REJECTED: "Declined by the offer owner",
}


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ConfirmationRecord:
    """Which party has attested to their side of the exchange, and when."""

    initiator_confirmed: bool = False
    taker_confirmed: bool = False
    initiator_confirmed_at: datetime | None = None
    taker_confirmed_at: datetime | None = None

    def is_confirmed(self, role: PartyRole) -> bool:
        if role == PartyRole.INITIATOR:
            return self.initiator_confirmed
        return self.taker_confirmed

    def confirmed_at(self, role: PartyRole) -> datetime | None:
        if role == PartyRole.INITIATOR:
            return self.initiator_confirmed_at
        return self.taker_confirmed_at

    @property
    def both_confirmed(self) -> bool:
        return self.initiator_confirmed and self.taker_confirmed

    def with_confirmation(self, role: PartyRole, at: datetime) -> ConfirmationRecord:
        """Return a copy with ``role``'s flag set."""
        if role == PartyRole.INITIATOR:
            return replace(self, initiator_confirmed=True, initiator_confirmed_at=at)
        return replace(self, taker_confirmed=True, taker_confirmed_at=at)

    def to_dict(self) -> dict:
        return {
            "initiator_confirmed": self.initiator_confirmed,
            "taker_confirmed": self.taker_confirmed,
            "initiator_confirmed_at": self.initiator_confirmed_at,
            "taker_confirmed_at": self.taker_confirmed_at,
        }


@dataclass(frozen=True)
class ExchangeSession:
    """One exchange attempt between an initiator (offer owner) and a taker.

    Attributes:
        id: Session UUID.
        exchange_type: FX or SHIPPING; selects the terms shape and status vocabulary.
        status: Current lifecycle status.
        initiator_id: Party who owns the offer.
        taker_id: Party who took the offer.
        agreed_terms: FxTerms or ShippingTerms.
        confirmations: Dual-party confirmation ledger.
        offer_id: Offer the session was opened against.
        conversation_id: Linked conversation, if any.
        completed_at: Set iff status is COMPLETED.
        cancelled_at: Set iff status is CANCELLED or REJECTED.
        cancel_reason: Set iff status is CANCELLED or REJECTED.
        version: Optimistic concurrency token, owned by the persistence layer.
    """

    id: uuid.UUID
    exchange_type: ExchangeType
    status: SessionStatus
    initiator_id: str
    taker_id: str
    agreed_terms: AgreedTerms
    created_at: datetime
    updated_at: datetime
    confirmations: ConfirmationRecord = field(default_factory=ConfirmationRecord)
    offer_id: str | None = None
    conversation_id: str | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    version: int = 0

    @classmethod
    def open(
        cls,
        *,
        exchange_type: ExchangeType,
        initiator_id: str,
        taker_id: str,
        agreed_terms: AgreedTerms,
        offer_id: str | None = None,
        conversation_id: str | None = None,
        session_id: uuid.UUID | None = None,
        at: datetime | None = None,
    ) -> ExchangeSession:
        """Open a new session in PENDING_APPROVAL on behalf of the taker."""
        if initiator_id == taker_id:
            raise SelfExchangeError(taker_id)
        at = at or utcnow()
        session = cls(
            id=session_id or uuid.uuid4(),
            exchange_type=ExchangeType(exchange_type),
            status=SessionStatus.PENDING_APPROVAL,
            initiator_id=initiator_id,
            taker_id=taker_id,
            agreed_terms=agreed_terms,
            offer_id=offer_id,
            conversation_id=conversation_id,
            created_at=at,
            updated_at=at,
        )
        session.check_invariants()
        return session

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def role_of(self, party_id: str) -> PartyRole | None:
        """Resolve a party to its role in this session, or None for outsiders."""
        if party_id == self.initiator_id:
            return PartyRole.INITIATOR
        if party_id == self.taker_id:
            return PartyRole.TAKER
        return None

    def party_id_for(self, role: PartyRole) -> str:
        return self.initiator_id if role == PartyRole.INITIATOR else self.taker_id

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def transition_to(
        self,
        target: SessionStatus,
        *,
        at: datetime | None = None,
        reason: str | None = None,
    ) -> ExchangeSession:
        """Return a copy moved to ``target`` along one Status Graph edge.

        Raises:
            IllegalTransitionError: If the edge does not exist or ``target`` is
                not part of this exchange type's vocabulary.
        """
        target = validate_transition(self.status, target, self.exchange_type)
        at = at or utcnow()
        changes: dict = {"status": target, "updated_at": at}

        if target == SessionStatus.COMPLETED:
            changes["completed_at"] = at
        elif target in CLOSED_STATUSES:
            changes["cancelled_at"] = at
            changes["cancel_reason"] = reason or DEFAULT_CLOSE_REASONS[target]
        elif target == SessionStatus.CONFIRMED and self.status == SessionStatus.DISPUTED:
            # Resolution renegotiates the exchange; both sides confirm again.
            changes["confirmations"] = ConfirmationRecord()

        return replace(self, **changes)

    def with_accepted_amount(self, amount: Decimal) -> ExchangeSession:
        """Return a copy whose FX terms record the amount accepted by the initiator.

        Raises:
            InvalidTermsError: Shipping sessions carry no amount, or ``amount``
                is not within (0, from_amount].
        """
        terms = self.agreed_terms
        if not isinstance(terms, FxTerms):
            raise InvalidTermsError(f"Session {self.id} has no amount to accept")
        amount = Decimal(str(amount))
        if amount <= 0 or amount > terms.from_amount:
            raise InvalidTermsError(
                f"Accepted amount {amount} must be positive and at most {terms.from_amount}"
            )
        return replace(self, agreed_terms=replace(terms, accepted_amount=amount))

    # ------------------------------------------------------------------
    # Invariants
    # ------------------------------------------------------------------

    def check_invariants(self) -> None:
        """Raise InvariantViolationError if the snapshot is internally inconsistent."""
        if self.initiator_id == self.taker_id:
            raise InvariantViolationError(f"Session {self.id} has the same party on both sides")
        if self.agreed_terms.exchange_type != self.exchange_type:
            raise InvariantViolationError(
                f"Session {self.id} is {self.exchange_type} but carries "
                f"{self.agreed_terms.exchange_type} terms"
            )
        if not is_reachable(self.status, self.exchange_type):
            raise InvariantViolationError(
                f"Status {self.status} is not reachable for {self.exchange_type} sessions"
            )
        if (self.status == SessionStatus.COMPLETED) != (self.completed_at is not None):
            raise InvariantViolationError(
                f"Session {self.id} in {self.status} has completed_at={self.completed_at}"
            )
        closed = self.status in CLOSED_STATUSES
        if closed != (self.cancelled_at is not None) or closed != (self.cancel_reason is not None):
            raise InvariantViolationError(
                f"Session {self.id} in {self.status} has inconsistent cancellation fields"
            )
        if self.confirmations.both_confirmed and self.status != SessionStatus.COMPLETED:
            raise InvariantViolationError(
                f"Session {self.id} is confirmed by both parties but still {self.status}"
            )
