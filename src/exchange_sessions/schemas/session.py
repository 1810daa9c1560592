"""Pydantic schemas for the exchange session API.

Request schemas are where agreed terms get validated; once a session exists
the domain trusts its terms. Response schemas are built from domain
aggregates (``from_domain``) or ORM records (``from_attributes``), keeping the
HTTP shapes separate from both.
"""

from __future__ import annotations

import math
import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import UTC, datetime
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from exchange_sessions.domain.enums import (
    ActionVariant,
    ConfirmationSide,
    ExchangeType,
    PartyRole,
    SessionAction,
    SessionStatus,
)
from exchange_sessions.domain.policy import ActionOption, available_actions, requires_action
from exchange_sessions.domain.progress import STATUS_LABELS, progress, status_steps
from exchange_sessions.domain.session import ExchangeSession
from exchange_sessions.domain.terms import AgreedTerms, FxTerms, ShippingTerms

CurrencyCode = Annotated[str, Field(pattern=r"^[A-Z]{3}$", examples=["EUR"])]
PartyId = Annotated[str, Field(min_length=1, max_length=64)]

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class FxTermsIn(BaseModel):
    """Currency swap terms as submitted by the taker."""

    model_config = ConfigDict(extra="forbid")

    from_amount: Decimal = Field(..., ge=0, description="Amount in from_currency")
    from_currency: CurrencyCode
    to_currency: CurrencyCode = Field(..., examples=["XOF"])
    to_amount: Decimal | None = Field(default=None, ge=0)
    rate: Decimal | None = Field(default=None, gt=0, description="Omit for negotiable pricing")
    is_full_amount: bool = True

    @model_validator(mode="after")
    def _check_pricing(self) -> FxTermsIn:
        if self.from_currency == self.to_currency:
            raise ValueError("from_currency and to_currency must differ")
        if self.rate is None and self.to_amount is not None:
            raise ValueError("to_amount requires a rate; omit both for negotiable pricing")
        return self

    def to_domain(self) -> FxTerms:
        return FxTerms(
            from_amount=self.from_amount,
            from_currency=self.from_currency,
            to_currency=self.to_currency,
            to_amount=self.to_amount,
            rate=self.rate,
            is_full_amount=self.is_full_amount,
        )


class ShippingTermsIn(BaseModel):
    """Parcel terms as submitted by the taker. Free text only."""

    model_config = ConfigDict(extra="forbid")

    description: str = Field(..., min_length=1, max_length=2000)
    weight: str | None = Field(default=None, max_length=64, examples=["2kg"])
    price: str | None = Field(default=None, max_length=64, examples=["15 EUR"])

    def to_domain(self) -> ShippingTerms:
        return ShippingTerms(description=self.description, weight=self.weight, price=self.price)


_TERMS_MODEL: dict[ExchangeType, type[BaseModel]] = {
    ExchangeType.FX: FxTermsIn,
    ExchangeType.SHIPPING: ShippingTermsIn,
}


class CreateSessionRequest(BaseModel):
    """Request body for opening a session against an offer."""

    exchange_type: ExchangeType
    initiator_id: PartyId = Field(..., description="Offer owner")
    taker_id: PartyId = Field(..., description="Party taking the offer")
    terms: FxTermsIn | ShippingTermsIn
    offer_id: str | None = Field(default=None, max_length=64)
    conversation_id: str | None = Field(default=None, max_length=64)

    @model_validator(mode="after")
    def _check_terms_shape(self) -> CreateSessionRequest:
        expected = _TERMS_MODEL[self.exchange_type]
        if not isinstance(self.terms, expected):
            raise ValueError(f"{self.exchange_type} sessions require {expected.__name__} terms")
        return self

    def agreed_terms(self) -> AgreedTerms:
        return self.terms.to_domain()


class TransitionRequest(BaseModel):
    """Request body for POST /sessions/{id}/actions."""

    action: SessionAction
    actor_id: PartyId
    side: ConfirmationSide | None = Field(
        default=None,
        description="Side being confirmed; defaults to the actor's own side",
    )
    reason: str | None = Field(default=None, max_length=2000)
    expected_version: int | None = Field(
        default=None,
        ge=1,
        description="Version the client last read; a mismatch is rejected as stale",
    )
    notes: str | None = Field(default=None, max_length=500)
    accepted_amount: Decimal | None = Field(
        default=None,
        gt=0,
        description="With accept on FX sessions: the portion of from_amount taken",
    )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class SessionResponse(BaseModel):
    """Response schema for an exchange session."""

    id: uuid.UUID
    exchange_type: ExchangeType
    status: SessionStatus
    status_label: str
    initiator_id: str
    taker_id: str
    offer_id: str | None
    conversation_id: str | None
    agreed_terms: dict
    initiator_confirmed: bool
    taker_confirmed: bool
    initiator_confirmed_at: datetime | None
    taker_confirmed_at: datetime | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None
    cancelled_at: datetime | None
    cancel_reason: str | None
    version: int

    @classmethod
    def from_domain(cls, session: ExchangeSession) -> SessionResponse:
        return cls(
            id=session.id,
            exchange_type=session.exchange_type,
            status=session.status,
            status_label=STATUS_LABELS[session.status],
            initiator_id=session.initiator_id,
            taker_id=session.taker_id,
            offer_id=session.offer_id,
            conversation_id=session.conversation_id,
            agreed_terms=session.agreed_terms.to_dict(),
            created_at=session.created_at,
            updated_at=session.updated_at,
            completed_at=session.completed_at,
            cancelled_at=session.cancelled_at,
            cancel_reason=session.cancel_reason,
            version=session.version,
            **session.confirmations.to_dict(),
        )


class ActionOptionResponse(BaseModel):
    """An action the requesting party may take now."""

    action: SessionAction
    label: str
    resulting_status: SessionStatus
    variant: ActionVariant
    confirmation_side: ConfirmationSide | None = None

    @classmethod
    def from_domain(cls, option: ActionOption) -> ActionOptionResponse:
        return cls(
            action=option.action,
            label=option.label,
            resulting_status=option.resulting_status,
            variant=option.variant,
            confirmation_side=option.confirmation_side,
        )


class ProgressResponse(BaseModel):
    """Linear timeline projection for display."""

    percent: int = Field(ge=0, le=100)
    step_index: int
    step_label: str
    total_steps: int
    steps: list[str]

    @classmethod
    def from_domain(cls, session: ExchangeSession) -> ProgressResponse:
        snapshot = progress(session)
        return cls(
            percent=snapshot.percent,
            step_index=snapshot.step_index,
            step_label=snapshot.step_label,
            total_steps=snapshot.total_steps,
            steps=[label for _, label in status_steps(session.exchange_type)],
        )


class SessionDetailResponse(BaseModel):
    """A session as seen by one of its parties."""

    session: SessionResponse
    role: PartyRole
    requires_action: bool
    actions: list[ActionOptionResponse]
    progress: ProgressResponse

    @classmethod
    def for_party(cls, session: ExchangeSession, role: PartyRole) -> SessionDetailResponse:
        return cls(
            session=SessionResponse.from_domain(session),
            role=role,
            requires_action=requires_action(session, role),
            actions=[
                ActionOptionResponse.from_domain(o) for o in available_actions(session, role)
            ],
            progress=ProgressResponse.from_domain(session),
        )


class SessionListResponse(BaseModel):
    """One page of a party's sessions."""

    items: list[SessionResponse]
    page: int = Field(ge=1)
    limit: int = Field(ge=1)
    total: int = Field(ge=0)
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def from_page(
        cls, sessions: list[ExchangeSession], *, page: int, limit: int, total: int
    ) -> SessionListResponse:
        total_pages = math.ceil(total / limit)
        return cls(
            items=[SessionResponse.from_domain(s) for s in sessions],
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


class SessionEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    session_id: uuid.UUID
    event_type: str
    action: str | None
    actor_id: str
    from_status: str | None
    to_status: str
    session_version: int
    hop: int
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
