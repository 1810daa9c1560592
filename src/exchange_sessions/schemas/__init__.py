"""Pydantic API schemas."""

from exchange_sessions.schemas.session import (
    ActionOptionResponse,
    CreateSessionRequest,
    FxTermsIn,
    HealthResponse,
    ProgressResponse,
    SessionDetailResponse,
    SessionEventResponse,
    SessionResponse,
    ShippingTermsIn,
    TransitionRequest,
)

__all__ = [
    "ActionOptionResponse",
    "CreateSessionRequest",
    "FxTermsIn",
    "HealthResponse",
    "ProgressResponse",
    "SessionDetailResponse",
    "SessionEventResponse",
    "SessionResponse",
    "ShippingTermsIn",
    "TransitionRequest",
]
