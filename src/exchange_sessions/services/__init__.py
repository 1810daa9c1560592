"""Application services: use case orchestration."""

from exchange_sessions.services.session_service import (
    ARBITRATION_OUTCOMES,
    SYSTEM_ACTOR,
    SessionService,
    event_for_hop,
    request_transition_with_retry,
)

__all__ = [
    "ARBITRATION_OUTCOMES",
    "SYSTEM_ACTOR",
    "SessionService",
    "event_for_hop",
    "request_transition_with_retry",
]
