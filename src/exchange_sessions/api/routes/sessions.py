"""Exchange session REST API routes.

Thin adapter over SessionService: every mutation goes through
``request_transition``, and every screen-facing response carries the
actions the requesting party may take next.

Routes:
    POST   /api/v1/sessions                — Open a session against an offer
    GET    /api/v1/sessions?party_id=      — List a party's sessions, paged
    GET    /api/v1/sessions/{id}?party_id= — Session detail, actions and progress
    POST   /api/v1/sessions/{id}/actions   — Apply an action
    GET    /api/v1/sessions/{id}/events    — Audit trail
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by FastAPI

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import (  # noqa: TC002 - resolved at runtime by FastAPI
    AsyncSession,
    async_sessionmaker,
)

from exchange_sessions.api.deps import (
    get_app_settings,
    get_db_session_factory,
    get_session_service,
)
from exchange_sessions.config import Settings  # noqa: TC001 - resolved at runtime by FastAPI
from exchange_sessions.domain.enums import PartyRole  # noqa: TC001
from exchange_sessions.domain.policy import LEDGER_ACTIONS
from exchange_sessions.ingestion import normalize_status
from exchange_sessions.logging_config import get_logger
from exchange_sessions.schemas.session import (
    CreateSessionRequest,
    SessionDetailResponse,
    SessionEventResponse,
    SessionListResponse,
    SessionResponse,
    TransitionRequest,
)
from exchange_sessions.services.session_service import (
    SessionService,
    request_transition_with_retry,
)

router = APIRouter(prefix="/api/v1/sessions", tags=["Sessions"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=SessionResponse,
    status_code=201,
    summary="Open an exchange session",
)
async def create_session(
    request: CreateSessionRequest,
    svc: SessionService = Depends(get_session_service),
) -> SessionResponse:
    """Open a session in PENDING_APPROVAL on behalf of the taker."""
    created = await svc.create_session(
        exchange_type=request.exchange_type,
        initiator_id=request.initiator_id,
        taker_id=request.taker_id,
        agreed_terms=request.agreed_terms(),
        offer_id=request.offer_id,
        conversation_id=request.conversation_id,
    )
    return SessionResponse.from_domain(created)


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get(
    "",
    response_model=SessionListResponse,
    summary="List a party's sessions",
)
async def list_sessions(
    party_id: str = Query(..., min_length=1),
    status: str | None = Query(
        default=None,
        description="Canonical status or a legacy alias such as 'active' or 'declined'",
    ),
    role: PartyRole | None = Query(
        default=None,
        description="Only sessions where the party is the initiator or the taker",
    ),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    svc: SessionService = Depends(get_session_service),
) -> SessionListResponse:
    """List sessions where ``party_id`` takes part, most recently updated first."""
    canonical = normalize_status(status) if status is not None else None
    sessions, total = await svc.list_sessions(party_id, canonical, role, page=page, limit=limit)
    return SessionListResponse.from_page(sessions, page=page, limit=limit, total=total)


@router.get(
    "/{session_id}",
    response_model=SessionDetailResponse,
    summary="Get session detail for a party",
)
async def get_session(
    session_id: uuid.UUID,
    party_id: str = Query(..., min_length=1),
    svc: SessionService = Depends(get_session_service),
) -> SessionDetailResponse:
    """Session, the party's available actions and the progress projection."""
    current = await svc.get_session_for_party(session_id, party_id)
    return SessionDetailResponse.for_party(current, current.role_of(party_id))


@router.get(
    "/{session_id}/events",
    response_model=list[SessionEventResponse],
    summary="Get session audit trail",
)
async def get_session_events(
    session_id: uuid.UUID,
    svc: SessionService = Depends(get_session_service),
) -> list[SessionEventResponse]:
    """Audit events in the order they were applied."""
    events = await svc.get_events(session_id)
    return [SessionEventResponse.model_validate(e) for e in events]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@router.post(
    "/{session_id}/actions",
    response_model=SessionDetailResponse,
    summary="Apply an action to a session",
)
async def apply_session_action(
    session_id: uuid.UUID,
    request: TransitionRequest,
    svc: SessionService = Depends(get_session_service),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
    settings: Settings = Depends(get_app_settings),
) -> SessionDetailResponse:
    """Apply ``action`` for ``actor_id`` and return the session as that party now sees it.

    Confirmations sent without ``expected_version`` are retried on a stale
    conflict, so two parties confirming at the same moment both succeed and
    the session completes once. A client that pins ``expected_version`` gets
    the 409 instead.
    """
    if request.action in LEDGER_ACTIONS and request.expected_version is None:
        updated = await request_transition_with_retry(
            session_factory,
            session_id,
            request.action,
            request.actor_id,
            side=request.side,
            reason=request.reason,
            settings=settings,
            notes=request.notes,
            accepted_amount=request.accepted_amount,
        )
    else:
        updated = await svc.request_transition(
            session_id,
            request.action,
            request.actor_id,
            side=request.side,
            reason=request.reason,
            expected_version=request.expected_version,
            notes=request.notes,
            accepted_amount=request.accepted_amount,
        )
    return SessionDetailResponse.for_party(updated, updated.role_of(request.actor_id))
