"""Status ingestion boundary.

Older clients and imported records use a looser status vocabulary
(lowercase names, "active", "declined", "delivered_pending_confirmation",
...). They are translated here, once, when data enters the system. The
state machine only ever sees SessionStatus values.
"""

from __future__ import annotations

from exchange_sessions.domain.enums import SessionStatus

LEGACY_STATUS_ALIASES: dict[str, SessionStatus] = {
    "pending": SessionStatus.PENDING_APPROVAL,
    "active": SessionStatus.IN_PROGRESS,
    "declined": SessionStatus.REJECTED,
    "expired": SessionStatus.CANCELLED,
    "done": SessionStatus.COMPLETED,
    "closed": SessionStatus.COMPLETED,
    "delivered_pending_confirmation": SessionStatus.DELIVERED,
}


class UnknownStatusError(ValueError):
    """Raised when an inbound status string has no canonical equivalent."""

    def __init__(self, raw: str) -> None:
        super().__init__(f"Unknown session status '{raw}'")
        self.raw = raw


def normalize_status(raw: str) -> SessionStatus:
    """Translate an inbound status string to its canonical SessionStatus.

    Raises:
        UnknownStatusError: If ``raw`` is neither a canonical status nor a known alias.
    """
    key = raw.strip().lower().replace("-", "_").replace(" ", "_")
    if key in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[key]
    try:
        return SessionStatus(key.upper())
    except ValueError:
        raise UnknownStatusError(raw) from None
