"""Action Policy.

The single decision point for "what may this party do now, and what happens
if they do it". Screens, notifications and the request layer all derive from
``available_actions`` and ``apply_action`` instead of re-encoding status and
role rules themselves.

Confirmations (``confirm``/``complete``) are delegated to the Confirmation
Ledger; every other action is a single Status Graph hop looked up in the
table below and gated by role.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from exchange_sessions.domain.enums import (
    ActionVariant,
    ConfirmationSide,
    ExchangeType,
    PartyRole,
    SessionAction,
    SessionStatus,
)
from exchange_sessions.domain.exceptions import (
    ActionNotPermittedError,
    IllegalTransitionError,
    InvalidTermsError,
)
from exchange_sessions.domain.ledger import apply_confirmation, confirmation_path
from exchange_sessions.domain.session import SIDE_FOR_ROLE

if TYPE_CHECKING:
    from datetime import datetime
    from decimal import Decimal

    from exchange_sessions.domain.session import ExchangeSession


@dataclass(frozen=True)
class ActionOption:
    """An action offered to a party, with its presentation affordances."""

    action: SessionAction
    label: str
    resulting_status: SessionStatus
    variant: ActionVariant
    confirmation_side: ConfirmationSide | None = None


@dataclass(frozen=True)
class ActionResult:
    """Outcome of ``apply_action``.

    Attributes:
        session: The new snapshot.
        path: Statuses traversed, in order (empty when only the ledger changed).
        action: The action applied.
        role: Role of the acting party.
        confirmation_recorded: Whether the ledger recorded a confirmation.
    """

    session: ExchangeSession
    path: tuple[SessionStatus, ...]
    action: SessionAction
    role: PartyRole
    confirmation_recorded: bool = False


@dataclass(frozen=True)
class _Move:
    target: SessionStatus
    roles: frozenset[PartyRole]
    label: str
    variant: ActionVariant


_BOTH = frozenset(PartyRole)
_INITIATOR = frozenset({PartyRole.INITIATOR})
_TAKER = frozenset({PartyRole.TAKER})

_DISPUTE = _Move(SessionStatus.DISPUTED, _BOTH, "Report Issue", ActionVariant.DANGER)
_CANCEL = _Move(SessionStatus.CANCELLED, _BOTH, "Cancel", ActionVariant.SECONDARY)

_MOVES: dict[SessionStatus, dict[SessionAction, _Move]] = {
    SessionStatus.PENDING_APPROVAL: {
        SessionAction.ACCEPT: _Move(
            SessionStatus.ACCEPTED, _INITIATOR, "Accept", ActionVariant.PRIMARY
        ),
        SessionAction.REJECT: _Move(
            SessionStatus.REJECTED, _INITIATOR, "Decline", ActionVariant.DANGER
        ),
        SessionAction.CANCEL: _Move(
            SessionStatus.CANCELLED, _TAKER, "Cancel Request", ActionVariant.SECONDARY
        ),
    },
    SessionStatus.ACCEPTED: {SessionAction.CANCEL: _CANCEL},
    SessionStatus.AWAITING_CONFIRMATION: {
        SessionAction.CANCEL: _CANCEL,
        SessionAction.DISPUTE: _DISPUTE,
    },
    SessionStatus.CONFIRMED: {SessionAction.DISPUTE: _DISPUTE},
    SessionStatus.IN_PROGRESS: {SessionAction.DISPUTE: _DISPUTE},
    SessionStatus.IN_TRANSIT: {
        SessionAction.PROGRESS: _Move(
            SessionStatus.DELIVERED, _TAKER, "Mark as Delivered", ActionVariant.PRIMARY
        ),
        SessionAction.DISPUTE: _DISPUTE,
    },
    SessionStatus.DELIVERED: {SessionAction.DISPUTE: _DISPUTE},
    SessionStatus.DISPUTED: {
        SessionAction.CONFIRM: _Move(
            SessionStatus.CONFIRMED, _BOTH, "Resolve Issue", ActionVariant.PRIMARY
        ),
        SessionAction.CANCEL: _Move(
            SessionStatus.CANCELLED, _BOTH, "Cancel Exchange", ActionVariant.DANGER
        ),
    },
}

# Who moves a CONFIRMED session forward depends on the exchange type.
_PROGRESS_FROM_CONFIRMED: dict[ExchangeType, _Move] = {
    ExchangeType.FX: _Move(
        SessionStatus.IN_PROGRESS, _INITIATOR, "Start Exchange", ActionVariant.PRIMARY
    ),
    ExchangeType.SHIPPING: _Move(
        SessionStatus.IN_TRANSIT, _BOTH, "Mark as Shipped", ActionVariant.PRIMARY
    ),
}

LEDGER_ACTIONS = frozenset({SessionAction.CONFIRM, SessionAction.COMPLETE})

# Statuses where the not-yet-confirmed party is offered a ledger action.
_CONFIRMATION_OFFERS: dict[SessionStatus, tuple[SessionAction, dict[ConfirmationSide, str]]] = {
    SessionStatus.ACCEPTED: (
        SessionAction.CONFIRM,
        {ConfirmationSide.SENT: "Confirm Exchange", ConfirmationSide.RECEIVED: "Confirm Exchange"},
    ),
    SessionStatus.AWAITING_CONFIRMATION: (
        SessionAction.CONFIRM,
        {ConfirmationSide.SENT: "Confirm Exchange", ConfirmationSide.RECEIVED: "Confirm Exchange"},
    ),
    SessionStatus.IN_PROGRESS: (
        SessionAction.COMPLETE,
        {ConfirmationSide.SENT: "Complete Exchange", ConfirmationSide.RECEIVED: "Complete Exchange"},
    ),
    SessionStatus.IN_TRANSIT: (
        SessionAction.CONFIRM,
        {ConfirmationSide.SENT: "Confirm Sent", ConfirmationSide.RECEIVED: "Confirm Received"},
    ),
    SessionStatus.DELIVERED: (
        SessionAction.COMPLETE,
        {ConfirmationSide.SENT: "Confirm Handover", ConfirmationSide.RECEIVED: "Confirm Receipt"},
    ),
}

_VARIANT_ORDER = {ActionVariant.PRIMARY: 0, ActionVariant.SECONDARY: 1, ActionVariant.DANGER: 2}


def _moves_for(status: SessionStatus, exchange_type: ExchangeType) -> dict[SessionAction, _Move]:
    moves = dict(_MOVES.get(SessionStatus(status), {}))
    if status == SessionStatus.CONFIRMED:
        moves[SessionAction.PROGRESS] = _PROGRESS_FROM_CONFIRMED[ExchangeType(exchange_type)]
    return moves


def _settled_status(session: ExchangeSession, role: PartyRole) -> SessionStatus:
    path = confirmation_path(session, role)
    return path[-1] if path else session.status


def available_actions(session: ExchangeSession, role: PartyRole) -> list[ActionOption]:
    """List the actions ``role`` may take on ``session`` right now.

    Terminal sessions offer nothing. A party that has already confirmed is
    never offered another confirmation.
    """
    if session.is_terminal:
        return []

    role = PartyRole(role)
    options: list[ActionOption] = []

    offer = _CONFIRMATION_OFFERS.get(session.status)
    if offer is not None and not session.confirmations.is_confirmed(role):
        action, labels = offer
        side = SIDE_FOR_ROLE[role]
        options.append(
            ActionOption(
                action=action,
                label=labels[side],
                resulting_status=_settled_status(session, role),
                variant=ActionVariant.PRIMARY,
                confirmation_side=side,
            )
        )

    for action, move in _moves_for(session.status, session.exchange_type).items():
        if role in move.roles:
            options.append(
                ActionOption(
                    action=action,
                    label=move.label,
                    resulting_status=move.target,
                    variant=move.variant,
                )
            )

    options.sort(key=lambda option: _VARIANT_ORDER[option.variant])
    return options


def expected_next_status(
    session: ExchangeSession,
    role: PartyRole,
    action: SessionAction,
) -> SessionStatus | None:
    """Return the status ``action`` by ``role`` would leave the session in, or None if not offered."""
    for option in available_actions(session, role):
        if option.action == action:
            return option.resulting_status
    return None


def requires_action(session: ExchangeSession, role: PartyRole) -> bool:
    """Return True when the session is waiting on ``role`` (list-badge indicator)."""
    return any(o.variant == ActionVariant.PRIMARY for o in available_actions(session, role))


def apply_action(
    session: ExchangeSession,
    role: PartyRole,
    action: SessionAction,
    *,
    side: ConfirmationSide | None = None,
    reason: str | None = None,
    accepted_amount: Decimal | None = None,
    at: datetime | None = None,
) -> ActionResult:
    """Apply ``action`` by ``role`` and return the new snapshot.

    This is the transition function: the session is never mutated in place,
    so a rejected action leaves the caller's snapshot untouched.

    Raises:
        IllegalTransitionError: The action leads nowhere from the current status.
        ActionNotPermittedError: The action exists here but belongs to the other role.
        ConfirmationError: Any ledger rejection for ``confirm``/``complete``.
        InvalidTermsError: ``accepted_amount`` given with anything but ``accept``,
            or outside the offered amount.
    """
    action = SessionAction(action)
    role = PartyRole(role)
    if accepted_amount is not None and action != SessionAction.ACCEPT:
        raise InvalidTermsError(f"An accepted amount cannot be given with {action}")
    move = _moves_for(session.status, session.exchange_type).get(action)

    if move is None and action in LEDGER_ACTIONS:
        updated, path = apply_confirmation(session, role, side, at=at)
        return ActionResult(
            session=updated,
            path=path,
            action=action,
            role=role,
            confirmation_recorded=True,
        )

    if move is None:
        raise IllegalTransitionError(str(session.status), str(action))
    if role not in move.roles:
        raise ActionNotPermittedError(str(role), str(action), str(session.status))

    updated = session.transition_to(move.target, at=at, reason=reason)
    if accepted_amount is not None:
        updated = updated.with_accepted_amount(accepted_amount)
    updated.check_invariants()
    return ActionResult(session=updated, path=(move.target,), action=action, role=role)
