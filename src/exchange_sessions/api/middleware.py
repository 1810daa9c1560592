"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — handles browser clients
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from exchange_sessions.domain.exceptions import (
    AlreadyConfirmedError,
    AuthorizationError,
    DuplicateSessionError,
    ExchangeSessionError,
    IllegalTransitionError,
    InvalidConfirmationSideError,
    InvalidTermsError,
    InvariantViolationError,
    SelfExchangeError,
    SessionNotConfirmableError,
    SessionNotFoundError,
    StaleSessionStateError,
)
from exchange_sessions.ingestion import UnknownStatusError

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

# Rejections that are part of normal operation, by HTTP status.
_CLIENT_ERROR_STATUS: dict[type[ExchangeSessionError], int] = {
    InvalidConfirmationSideError: 422,
    InvalidTermsError: 422,
    AlreadyConfirmedError: 409,
    SessionNotConfirmableError: 409,
    DuplicateSessionError: 409,
    SelfExchangeError: 400,
}


def _error_response(status_code: int, exc: ExchangeSessionError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": exc.message, "retryable": exc.retryable},
    )


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except SessionNotFoundError as exc:
            logger.warning("session.not_found", error=exc.message)
            return _error_response(404, exc)
        except IllegalTransitionError as exc:
            logger.warning(
                "state_machine.illegal_transition",
                current=exc.current_status,
                attempted=exc.attempted,
            )
            return _error_response(409, exc)
        except AuthorizationError as exc:
            logger.warning("session.forbidden", error=exc.message, code=exc.code)
            return _error_response(403, exc)
        except StaleSessionStateError as exc:
            logger.warning("session.stale_conflict", error=exc.message)
            return _error_response(409, exc)
        except InvariantViolationError as exc:
            logger.error("session.invariant_violation", error=exc.message)
            return _error_response(500, exc)
        except ExchangeSessionError as exc:
            status_code = _CLIENT_ERROR_STATUS.get(type(exc), 400)
            logger.warning("domain.rejected", error=exc.message, code=exc.code)
            return _error_response(status_code, exc)
        except UnknownStatusError as exc:
            logger.warning("ingestion.unknown_status", raw=exc.raw)
            return JSONResponse(
                status_code=422,
                content={"error": "UNKNOWN_STATUS", "message": str(exc), "retryable": False},
            )
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                    "retryable": False,
                },
            )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters — middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)
