"""Exchange Session Status Graph.

Uses python-statemachine to enforce legal status transitions at the domain level.
This is the single source of truth for which transitions are legal, independent
of *why* a transition is requested: no matter what the policy layer or the API
asks for, an illegal transition (e.g., DISPUTED -> PENDING_APPROVAL) is refused.

Each event has exactly one target status, so "is FROM -> TO legal?" is
answered by firing TO's event on a machine started at FROM.

Transition table:
    PENDING_APPROVAL       -> ACCEPTED               (accept)
    PENDING_APPROVAL       -> REJECTED               (reject)
    ACCEPTED               -> AWAITING_CONFIRMATION  (request_confirmation)
    ACCEPTED, CONFIRMED    -> IN_PROGRESS            (begin_exchange)
    AWAITING_CONFIRMATION  -> CONFIRMED              (confirm_terms)
    DISPUTED               -> CONFIRMED              (confirm_terms)
    CONFIRMED              -> IN_TRANSIT             (ship_parcel)
    IN_TRANSIT             -> DELIVERED              (mark_delivered)
    IN_PROGRESS, DELIVERED -> COMPLETED              (complete_exchange)
    DISPUTED               -> COMPLETED              (complete_exchange)
    any active but PENDING_APPROVAL, ACCEPTED -> DISPUTED (raise_dispute)
    PENDING_APPROVAL, ACCEPTED, AWAITING_CONFIRMATION,
    CONFIRMED, IN_PROGRESS, DISPUTED -> CANCELLED    (cancel_session)
"""

from __future__ import annotations

from collections import deque
from functools import lru_cache
from typing import TYPE_CHECKING

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from exchange_sessions.domain.enums import ExchangeType, SessionStatus
from exchange_sessions.domain.exceptions import IllegalTransitionError

if TYPE_CHECKING:
    from collections.abc import Iterable


class SessionStateMachine(StateMachine):
    """State machine that guards exchange session lifecycle transitions.

    Usage:
        sm = SessionStateMachine(current_status="CONFIRMED")
        sm.raise_dispute()  # transitions to DISPUTED
        sm.status           # SessionStatus.DISPUTED
    """

    # --- States ---
    PENDING_APPROVAL = State("Pending approval", value="PENDING_APPROVAL", initial=True)
    ACCEPTED = State("Accepted", value="ACCEPTED")
    AWAITING_CONFIRMATION = State("Awaiting confirmation", value="AWAITING_CONFIRMATION")
    CONFIRMED = State("Confirmed", value="CONFIRMED")
    IN_PROGRESS = State("In progress", value="IN_PROGRESS")
    IN_TRANSIT = State("In transit", value="IN_TRANSIT")
    DELIVERED = State("Delivered", value="DELIVERED")
    DISPUTED = State("Disputed", value="DISPUTED")
    COMPLETED = State("Completed", value="COMPLETED", final=True)
    CANCELLED = State("Cancelled", value="CANCELLED", final=True)
    REJECTED = State("Rejected", value="REJECTED", final=True)

    # --- Events / Transitions ---

    # Approval
    accept = PENDING_APPROVAL.to(ACCEPTED)
    reject = PENDING_APPROVAL.to(REJECTED)

    # Confirmation
    request_confirmation = ACCEPTED.to(AWAITING_CONFIRMATION)
    confirm_terms = AWAITING_CONFIRMATION.to(CONFIRMED) | DISPUTED.to(CONFIRMED)

    # Exchange
    begin_exchange = ACCEPTED.to(IN_PROGRESS) | CONFIRMED.to(IN_PROGRESS)
    ship_parcel = CONFIRMED.to(IN_TRANSIT)
    mark_delivered = IN_TRANSIT.to(DELIVERED)
    complete_exchange = (
        IN_PROGRESS.to(COMPLETED) | DELIVERED.to(COMPLETED) | DISPUTED.to(COMPLETED)
    )

    # Disputes
    raise_dispute = (
        AWAITING_CONFIRMATION.to(DISPUTED)
        | CONFIRMED.to(DISPUTED)
        | IN_PROGRESS.to(DISPUTED)
        | IN_TRANSIT.to(DISPUTED)
        | DELIVERED.to(DISPUTED)
    )

    # Cancellation (also used by externally scheduled timeouts)
    cancel_session = (
        PENDING_APPROVAL.to(CANCELLED)
        | ACCEPTED.to(CANCELLED)
        | AWAITING_CONFIRMATION.to(CANCELLED)
        | CONFIRMED.to(CANCELLED)
        | IN_PROGRESS.to(CANCELLED)
        | DISPUTED.to(CANCELLED)
    )

    def __init__(self, current_status: str = SessionStatus.PENDING_APPROVAL.value) -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current SessionStatus value (e.g., "ACCEPTED").
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(f"Unknown status '{current_status}'. Valid states: {valid}")
        super().__init__(start_value=str(current_status))

    @property
    def status(self) -> SessionStatus:
        """Return the current state as a SessionStatus."""
        return SessionStatus(self.current_state_value)


# Event that leads into each status. PENDING_APPROVAL has no incoming event.
TARGET_EVENTS: dict[SessionStatus, str] = {
    SessionStatus.ACCEPTED: "accept",
    SessionStatus.REJECTED: "reject",
    SessionStatus.AWAITING_CONFIRMATION: "request_confirmation",
    SessionStatus.CONFIRMED: "confirm_terms",
    SessionStatus.IN_PROGRESS: "begin_exchange",
    SessionStatus.IN_TRANSIT: "ship_parcel",
    SessionStatus.DELIVERED: "mark_delivered",
    SessionStatus.COMPLETED: "complete_exchange",
    SessionStatus.DISPUTED: "raise_dispute",
    SessionStatus.CANCELLED: "cancel_session",
}

REACHABLE_STATUSES: dict[ExchangeType, frozenset[SessionStatus]] = {
    ExchangeType.FX: frozenset(SessionStatus)
    - {SessionStatus.IN_TRANSIT, SessionStatus.DELIVERED},
    ExchangeType.SHIPPING: frozenset(SessionStatus),
}


@lru_cache(maxsize=None)
def allowed_transitions(status: SessionStatus) -> frozenset[SessionStatus]:
    """Return every status reachable from ``status`` in one legal hop."""
    status = SessionStatus(status)
    targets = set()
    for target, event_name in TARGET_EVENTS.items():
        sm = SessionStateMachine(current_status=status.value)
        try:
            sm.send(event_name)
        except TransitionNotAllowed:
            continue
        targets.add(target)
    return frozenset(targets)


def is_legal_transition(from_status: SessionStatus, to_status: SessionStatus) -> bool:
    """Return True if the Status Graph has an edge ``from_status -> to_status``."""
    return SessionStatus(to_status) in allowed_transitions(SessionStatus(from_status))


def is_terminal(status: SessionStatus) -> bool:
    """A status is terminal iff it has no legal outgoing transitions."""
    return not allowed_transitions(SessionStatus(status))


def is_active_status(status: SessionStatus) -> bool:
    """Return True while the session still blocks its taker from reopening the same offer."""
    return not is_terminal(status)


def is_reachable(status: SessionStatus, exchange_type: ExchangeType) -> bool:
    """Return True if ``status`` belongs to the vocabulary of ``exchange_type``."""
    return SessionStatus(status) in REACHABLE_STATUSES[ExchangeType(exchange_type)]


def validate_transition(
    from_status: SessionStatus,
    to_status: SessionStatus,
    exchange_type: ExchangeType | None = None,
) -> SessionStatus:
    """Validate a transition and return the target status.

    Raises:
        IllegalTransitionError: If the edge does not exist, or the target is
            outside the reachable set of ``exchange_type``.
    """
    if not is_legal_transition(from_status, to_status):
        raise IllegalTransitionError(str(from_status), str(to_status))
    if exchange_type is not None and not is_reachable(to_status, exchange_type):
        raise IllegalTransitionError(str(from_status), str(to_status))
    return SessionStatus(to_status)


def find_path(
    from_status: SessionStatus,
    to_status: SessionStatus,
    exchange_type: ExchangeType,
    avoid: Iterable[SessionStatus] = (),
) -> tuple[SessionStatus, ...] | None:
    """Return the shortest sequence of legal hops from ``from_status`` to ``to_status``.

    The returned tuple excludes ``from_status`` and ends with ``to_status``;
    it is empty when both are equal. Intermediate statuses never leave the
    reachable set of ``exchange_type`` and never touch ``avoid``. Ties are
    broken by SessionStatus declaration order, so the result is deterministic.

    Returns None when no such path exists.
    """
    start = SessionStatus(from_status)
    goal = SessionStatus(to_status)
    if start == goal:
        return ()

    blocked = set(avoid) - {goal}
    reachable = REACHABLE_STATUSES[ExchangeType(exchange_type)]
    previous: dict[SessionStatus, SessionStatus] = {}
    queue = deque([start])
    seen = {start}

    while queue:
        current = queue.popleft()
        for candidate in SessionStatus:
            if candidate in seen or candidate in blocked or candidate not in reachable:
                continue
            if candidate not in allowed_transitions(current):
                continue
            previous[candidate] = current
            if candidate == goal:
                path = [goal]
                while path[-1] in previous and previous[path[-1]] != start:
                    path.append(previous[path[-1]])
                return tuple(reversed(path))
            seen.add(candidate)
            queue.append(candidate)
    return None
