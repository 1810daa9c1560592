"""Confirmation Ledger.

Tracks which party has attested to their side of the exchange and decides
what a confirmation does to the session status. The confirmation write and
any status hops it triggers are produced together as one new snapshot, so
there is never a state where both parties have confirmed but the session has
not reached COMPLETED.

Role -> side mapping is fixed:
    initiator -> sent
    taker     -> received
"""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

from exchange_sessions.domain.enums import (
    ConfirmationSide,
    ExchangeType,
    PartyRole,
    SessionStatus,
)
from exchange_sessions.domain.exceptions import (
    AlreadyConfirmedError,
    InvalidConfirmationSideError,
    InvariantViolationError,
    SessionNotConfirmableError,
)
from exchange_sessions.domain.session import SIDE_FOR_ROLE, utcnow
from exchange_sessions.domain.state_machine import find_path

if TYPE_CHECKING:
    from datetime import datetime

    from exchange_sessions.domain.session import ExchangeSession

CONFIRMABLE_STATUSES = frozenset(
    {
        SessionStatus.ACCEPTED,
        SessionStatus.AWAITING_CONFIRMATION,
        SessionStatus.CONFIRMED,
        SessionStatus.IN_PROGRESS,
        SessionStatus.IN_TRANSIT,
        SessionStatus.DELIVERED,
    }
)

_NEVER_VIA = (SessionStatus.DISPUTED, SessionStatus.CANCELLED, SessionStatus.REJECTED)

# Shipments complete through the transit statuses whenever the graph allows it.
_COMPLETION_AVOID: dict[ExchangeType, tuple[SessionStatus, ...]] = {
    ExchangeType.FX: _NEVER_VIA,
    ExchangeType.SHIPPING: (*_NEVER_VIA, SessionStatus.IN_PROGRESS),
}


def is_confirmable(status: SessionStatus) -> bool:
    return SessionStatus(status) in CONFIRMABLE_STATUSES


def other_role(role: PartyRole) -> PartyRole:
    return PartyRole.TAKER if role == PartyRole.INITIATOR else PartyRole.INITIATOR


def completion_path(session: ExchangeSession) -> tuple[SessionStatus, ...]:
    """Return the hops that take ``session`` to COMPLETED once both parties confirmed.

    Raises:
        InvariantViolationError: If the graph offers no such path, which would
            leave a fully confirmed session stranded.
    """
    path = find_path(
        session.status,
        SessionStatus.COMPLETED,
        session.exchange_type,
        avoid=_COMPLETION_AVOID[session.exchange_type],
    )
    if path is None:
        path = find_path(
            session.status, SessionStatus.COMPLETED, session.exchange_type, avoid=_NEVER_VIA
        )
    if path is None:
        raise InvariantViolationError(
            f"No completion path from {session.status} for {session.exchange_type} session"
        )
    return path


def confirmation_path(session: ExchangeSession, role: PartyRole) -> tuple[SessionStatus, ...]:
    """Return the status hops a confirmation by ``role`` would cause.

    - the second confirmation drives the session to COMPLETED;
    - the first confirmation in ACCEPTED moves it to AWAITING_CONFIRMATION;
    - any other confirmation leaves the status alone.
    """
    role = PartyRole(role)
    if session.confirmations.is_confirmed(other_role(role)):
        return completion_path(session)
    if session.status == SessionStatus.ACCEPTED:
        return (SessionStatus.AWAITING_CONFIRMATION,)
    return ()


def apply_confirmation(
    session: ExchangeSession,
    role: PartyRole,
    side: ConfirmationSide | None = None,
    *,
    at: datetime | None = None,
) -> tuple[ExchangeSession, tuple[SessionStatus, ...]]:
    """Record ``role``'s confirmation and return the new snapshot plus the hops taken.

    Args:
        session: Current snapshot.
        role: Acting party's role.
        side: Side being attested. None resolves to the role's own side.
        at: Timestamp for the confirmation and any hops (defaults to now).

    Raises:
        SessionNotConfirmableError: Status does not accept confirmations.
        InvalidConfirmationSideError: ``side`` belongs to the other role.
        AlreadyConfirmedError: ``role`` has confirmed before.
    """
    role = PartyRole(role)
    if not is_confirmable(session.status):
        raise SessionNotConfirmableError(str(session.status))

    expected_side = SIDE_FOR_ROLE[role]
    if side is not None and ConfirmationSide(side) != expected_side:
        raise InvalidConfirmationSideError(str(role), str(side))

    if session.confirmations.is_confirmed(role):
        raise AlreadyConfirmedError(str(role))

    at = at or utcnow()
    path = confirmation_path(session, role)

    updated = replace(
        session,
        confirmations=session.confirmations.with_confirmation(role, at),
        updated_at=at,
    )
    for hop in path:
        updated = updated.transition_to(hop, at=at)

    updated.check_invariants()
    return updated, path


def record_confirmation(
    session: ExchangeSession,
    role: PartyRole,
    side: ConfirmationSide | None = None,
    *,
    at: datetime | None = None,
) -> ExchangeSession:
    """Record ``role``'s confirmation and return the new snapshot.

    See ``apply_confirmation`` for the failure modes.
    """
    updated, _ = apply_confirmation(session, role, side, at=at)
    return updated
