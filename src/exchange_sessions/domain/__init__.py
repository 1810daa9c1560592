"""Domain layer: pure business logic with zero framework dependencies."""

from exchange_sessions.domain.enums import (
    ActionVariant,
    ConfirmationSide,
    EventType,
    ExchangeType,
    PartyRole,
    SessionAction,
    SessionStatus,
)
from exchange_sessions.domain.exceptions import (
    ActionNotPermittedError,
    AlreadyConfirmedError,
    AuthorizationError,
    ConfirmationError,
    DuplicateSessionError,
    ExchangeSessionError,
    IllegalTransitionError,
    InvalidConfirmationSideError,
    InvariantViolationError,
    SelfExchangeError,
    SessionNotConfirmableError,
    SessionNotFoundError,
    StaleSessionStateError,
    UnauthorizedError,
)
from exchange_sessions.domain.ledger import (
    CONFIRMABLE_STATUSES,
    apply_confirmation,
    confirmation_path,
    record_confirmation,
)
from exchange_sessions.domain.policy import (
    ActionOption,
    ActionResult,
    apply_action,
    available_actions,
    expected_next_status,
    requires_action,
)
from exchange_sessions.domain.progress import ProgressSnapshot, progress, project_progress
from exchange_sessions.domain.session import ConfirmationRecord, ExchangeSession
from exchange_sessions.domain.state_machine import (
    SessionStateMachine,
    allowed_transitions,
    is_active_status,
    is_legal_transition,
    is_terminal,
    validate_transition,
)
from exchange_sessions.domain.terms import FxTerms, ShippingTerms

__all__ = [
    "ActionVariant",
    "ConfirmationSide",
    "EventType",
    "ExchangeType",
    "PartyRole",
    "SessionAction",
    "SessionStatus",
    "ActionNotPermittedError",
    "AlreadyConfirmedError",
    "AuthorizationError",
    "ConfirmationError",
    "DuplicateSessionError",
    "ExchangeSessionError",
    "IllegalTransitionError",
    "InvalidConfirmationSideError",
    "InvariantViolationError",
    "SelfExchangeError",
    "SessionNotConfirmableError",
    "SessionNotFoundError",
    "StaleSessionStateError",
    "UnauthorizedError",
    "CONFIRMABLE_STATUSES",
    "apply_confirmation",
    "confirmation_path",
    "record_confirmation",
    "ActionOption",
    "ActionResult",
    "apply_action",
    "available_actions",
    "expected_next_status",
    "requires_action",
    "ProgressSnapshot",
    "progress",
    "project_progress",
    "ConfirmationRecord",
    "ExchangeSession",
    "SessionStateMachine",
    "allowed_transitions",
    "is_active_status",
    "is_legal_transition",
    "is_terminal",
    "validate_transition",
    "FxTerms",
    "ShippingTerms",
]
