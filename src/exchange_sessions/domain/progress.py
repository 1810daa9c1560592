"""Progress Projection.

Maps (status, exchange type) to a completion percentage and a named step for
linear display. Display-only: unknown combinations fall back to 0% instead
of raising.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from exchange_sessions.domain.enums import ExchangeType, SessionStatus

if TYPE_CHECKING:
    from exchange_sessions.domain.session import ExchangeSession

S = SessionStatus

STATUS_LABELS: dict[SessionStatus, str] = {
    S.PENDING_APPROVAL: "Pending",
    S.ACCEPTED: "Accepted",
    S.AWAITING_CONFIRMATION: "Awaiting Confirmation",
    S.CONFIRMED: "Confirmed",
    S.IN_PROGRESS: "In Progress",
    S.IN_TRANSIT: "In Transit",
    S.DELIVERED: "Delivered",
    S.DISPUTED: "Disputed",
    S.COMPLETED: "Completed",
    S.CANCELLED: "Cancelled",
    S.REJECTED: "Rejected",
}

_FX_PERCENT: dict[SessionStatus, int] = {
    S.PENDING_APPROVAL: 10,
    S.ACCEPTED: 25,
    S.AWAITING_CONFIRMATION: 40,
    S.CONFIRMED: 55,
    S.IN_PROGRESS: 75,
    S.DISPUTED: 50,
    S.COMPLETED: 100,
    S.CANCELLED: 0,
    S.REJECTED: 0,
}

_SHIPPING_PERCENT: dict[SessionStatus, int] = {
    S.PENDING_APPROVAL: 10,
    S.ACCEPTED: 20,
    S.AWAITING_CONFIRMATION: 30,
    S.CONFIRMED: 40,
    S.IN_PROGRESS: 50,
    S.IN_TRANSIT: 70,
    S.DELIVERED: 90,
    S.DISPUTED: 50,
    S.COMPLETED: 100,
    S.CANCELLED: 0,
    S.REJECTED: 0,
}

_PERCENT_TABLES = {ExchangeType.FX: _FX_PERCENT, ExchangeType.SHIPPING: _SHIPPING_PERCENT}

_STEPS: dict[ExchangeType, tuple[tuple[SessionStatus, str], ...]] = {
    ExchangeType.FX: (
        (S.PENDING_APPROVAL, "Request Sent"),
        (S.ACCEPTED, "Accepted"),
        (S.AWAITING_CONFIRMATION, "Confirm Details"),
        (S.CONFIRMED, "Ready"),
        (S.IN_PROGRESS, "Exchanging"),
        (S.COMPLETED, "Complete"),
    ),
    ExchangeType.SHIPPING: (
        (S.PENDING_APPROVAL, "Request Sent"),
        (S.ACCEPTED, "Accepted"),
        (S.AWAITING_CONFIRMATION, "Confirm Details"),
        (S.CONFIRMED, "Ready to Ship"),
        (S.IN_TRANSIT, "In Transit"),
        (S.DELIVERED, "Delivered"),
        (S.COMPLETED, "Complete"),
    ),
}


@dataclass(frozen=True)
class ProgressSnapshot:
    """Linear display projection of a session.

    Attributes:
        percent: Completion percentage, 0-100.
        step_index: Index into ``status_steps``; -1 for closed sessions or
            statuses that are not on the linear path.
        step_label: Human-readable name of the current step.
        total_steps: Number of steps on the linear path.
    """

    percent: int
    step_index: int
    step_label: str
    total_steps: int


def status_steps(exchange_type: ExchangeType) -> tuple[tuple[SessionStatus, str], ...]:
    """Return the (status, label) steps of the linear timeline for ``exchange_type``."""
    return _STEPS[ExchangeType(exchange_type)]


def progress_percent(status: SessionStatus, exchange_type: ExchangeType) -> int:
    return _PERCENT_TABLES[ExchangeType(exchange_type)].get(status, 0)


def current_step_index(status: SessionStatus, exchange_type: ExchangeType) -> int:
    steps = status_steps(exchange_type)
    for index, (step_status, _) in enumerate(steps):
        if step_status == status:
            return index
    if status == S.DISPUTED:
        # Shown just before completion.
        return len(steps) - 2
    return -1


def project_progress(status: SessionStatus, exchange_type: ExchangeType) -> ProgressSnapshot:
    """Project a (status, exchange type) pair onto the linear timeline."""
    steps = status_steps(exchange_type)
    index = current_step_index(status, exchange_type)
    on_path = 0 <= index < len(steps) and steps[index][0] == status
    label = steps[index][1] if on_path else STATUS_LABELS.get(status, "Unknown")
    return ProgressSnapshot(
        percent=progress_percent(status, exchange_type),
        step_index=index,
        step_label=label,
        total_steps=len(steps),
    )


def progress(session: ExchangeSession) -> ProgressSnapshot:
    """Project ``session`` onto its type's linear timeline."""
    return project_progress(session.status, session.exchange_type)
