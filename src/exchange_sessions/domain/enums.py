"""Domain enumerations for exchange sessions.

These enums define the canonical vocabulary used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class ExchangeType(enum.StrEnum):
    """Kind of exchange a session carries out."""

    FX = "FX"
    SHIPPING = "SHIPPING"


class SessionStatus(enum.StrEnum):
    """Lifecycle states of an exchange session.

    Which statuses are reachable for which exchange type, and which
    transitions between them are legal, is owned by domain/state_machine.py.
    """

    PENDING_APPROVAL = "PENDING_APPROVAL"
    ACCEPTED = "ACCEPTED"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    DISPUTED = "DISPUTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"


class PartyRole(enum.StrEnum):
    """Role a party plays in a given session."""

    INITIATOR = "initiator"
    TAKER = "taker"


class ConfirmationSide(enum.StrEnum):
    """Which side of the exchange a party attests to."""

    SENT = "sent"
    RECEIVED = "received"


class SessionAction(enum.StrEnum):
    """Intents a party can send against a session."""

    ACCEPT = "accept"
    REJECT = "reject"
    CANCEL = "cancel"
    CONFIRM = "confirm"
    PROGRESS = "progress"
    COMPLETE = "complete"
    DISPUTE = "dispute"


class ActionVariant(enum.StrEnum):
    """Presentation hint attached to an offered action."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    DANGER = "danger"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the session_events table.

    Every status hop produces exactly one event, and every accepted
    confirmation produces one CONFIRMATION_RECORDED event ahead of the hops
    it triggers.
    """

    SESSION_CREATED = "SESSION_CREATED"
    SESSION_ACCEPTED = "SESSION_ACCEPTED"
    SESSION_REJECTED = "SESSION_REJECTED"
    SESSION_CANCELLED = "SESSION_CANCELLED"

    CONFIRMATION_RECORDED = "CONFIRMATION_RECORDED"
    CONFIRMATION_REQUESTED = "CONFIRMATION_REQUESTED"
    TERMS_CONFIRMED = "TERMS_CONFIRMED"

    EXCHANGE_STARTED = "EXCHANGE_STARTED"
    SHIPMENT_DISPATCHED = "SHIPMENT_DISPATCHED"
    SHIPMENT_DELIVERED = "SHIPMENT_DELIVERED"
    SESSION_COMPLETED = "SESSION_COMPLETED"

    DISPUTE_RAISED = "DISPUTE_RAISED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"
