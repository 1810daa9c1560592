"""Domain exceptions for exchange sessions.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
"""


class ExchangeSessionError(Exception):
    """Base exception for all domain errors."""

    retryable: bool = False

    def __init__(self, message: str, code: str = "EXCHANGE_SESSION_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- State Machine Errors ---


class IllegalTransitionError(ExchangeSessionError):
    """Raised when a requested status or action is not reachable from the current status.

    Example: DISPUTED -> PENDING_APPROVAL, or "accept" on an IN_PROGRESS session.
    """

    def __init__(self, current_status: str, attempted: str) -> None:
        super().__init__(
            message=f"Illegal transition: {current_status} -> {attempted}",
            code="ILLEGAL_TRANSITION",
        )
        self.current_status = current_status
        self.attempted = attempted


class InvariantViolationError(ExchangeSessionError):
    """Raised when an aggregate fails its own consistency check.

    This always indicates a logic defect, never a normal runtime condition.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVARIANT_VIOLATION")


# --- Session Errors ---


class SessionNotFoundError(ExchangeSessionError):
    """Raised when a session ID does not exist."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            message=f"Session not found: {session_id}",
            code="SESSION_NOT_FOUND",
        )
        self.session_id = session_id


class DuplicateSessionError(ExchangeSessionError):
    """Raised when a taker already has an active session on the same offer."""

    def __init__(self, offer_id: str, taker_id: str) -> None:
        super().__init__(
            message=f"Party {taker_id} already has an active session for offer {offer_id}",
            code="DUPLICATE_SESSION",
        )
        self.offer_id = offer_id
        self.taker_id = taker_id


class SelfExchangeError(ExchangeSessionError):
    """Raised when a party tries to take their own offer."""

    def __init__(self, party_id: str) -> None:
        super().__init__(
            message=f"Party {party_id} cannot open a session on their own offer",
            code="SELF_EXCHANGE",
        )
        self.party_id = party_id


class InvalidTermsError(ExchangeSessionError):
    """Raised when a change to the agreed terms is not allowed."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_TERMS")


class StaleSessionStateError(ExchangeSessionError):
    """Raised when another write landed between reading and writing a session.

    Safe to retry after re-reading the current state.
    """

    retryable = True

    def __init__(
        self,
        session_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ) -> None:
        detail = ""
        if expected_version is not None and actual_version is not None:
            detail = f" (expected version {expected_version}, found {actual_version})"
        super().__init__(
            message=f"Session {session_id} was modified concurrently{detail}",
            code="STALE_SESSION_STATE",
        )
        self.session_id = session_id
        self.expected_version = expected_version
        self.actual_version = actual_version


# --- Authorization Errors ---


class AuthorizationError(ExchangeSessionError):
    """Base exception for requests the acting party is not entitled to make."""


class UnauthorizedError(AuthorizationError):
    """Raised when the acting party is neither initiator nor taker of the session."""

    def __init__(self, party_id: str, session_id: str) -> None:
        super().__init__(
            message=f"Party {party_id} is not a participant in session {session_id}",
            code="UNAUTHORIZED",
        )
        self.party_id = party_id
        self.session_id = session_id


class ActionNotPermittedError(AuthorizationError):
    """Raised when a participant requests an action reserved for the other role."""

    def __init__(self, role: str, action: str, status: str) -> None:
        super().__init__(
            message=f"The {role} may not {action} a session in {status}",
            code="ACTION_NOT_PERMITTED",
        )
        self.role = role
        self.action = action
        self.status = status


# --- Confirmation Errors ---


class ConfirmationError(ExchangeSessionError):
    """Base exception for confirmation ledger rejections."""


class InvalidConfirmationSideError(ConfirmationError):
    """Raised when a party attests to the other party's side of the exchange."""

    def __init__(self, role: str, side: str) -> None:
        super().__init__(
            message=f"The {role} cannot confirm the '{side}' side",
            code="INVALID_CONFIRMATION_SIDE",
        )
        self.role = role
        self.side = side


class AlreadyConfirmedError(ConfirmationError):
    """Raised when a party confirms a second time."""

    def __init__(self, role: str) -> None:
        super().__init__(
            message=f"The {role} has already confirmed this exchange",
            code="ALREADY_CONFIRMED",
        )
        self.role = role


class SessionNotConfirmableError(ConfirmationError):
    """Raised when confirmations are not accepted in the session's current status."""

    def __init__(self, status: str) -> None:
        super().__init__(
            message=f"Cannot confirm a session in {status}",
            code="SESSION_NOT_CONFIRMABLE",
        )
        self.status = status
