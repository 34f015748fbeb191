"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — handles the browser dashboard
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from aetherlock_oracle.domain.exceptions import (
    AetherLockError,
    EscrowNotFoundError,
    InvalidFileError,
    InvalidRequestError,
    InvalidStateTransitionError,
    NotCancellableError,
    PayloadTooLargeError,
    PipelineCancelledError,
    UnauthorizedPartyError,
    UnknownEscrowError,
    VerificationFailedError,
    VerificationInProgressError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[AetherLockError], int], ...] = (
    (EscrowNotFoundError, 404),
    (UnknownEscrowError, 404),
    (InvalidStateTransitionError, 409),
    (VerificationInProgressError, 409),
    (NotCancellableError, 409),
    (PayloadTooLargeError, 413),
    (InvalidFileError, 400),
    (InvalidRequestError, 400),
    (UnauthorizedPartyError, 403),
    (PipelineCancelledError, 409),
)


def _mapped_status(exc: AetherLockError) -> int | None:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return None


def status_for(exc: AetherLockError) -> int:
    """HTTP status for a domain error.

    A failed pipeline run answers with its cause's status when the cause is
    a caller error, and 502 when an upstream dependency failed.
    """
    if isinstance(exc, VerificationFailedError):
        return _mapped_status(exc.cause) or 502
    return _mapped_status(exc) or 400


def error_body(exc: AetherLockError) -> dict:
    body = {"error": exc.code, "message": exc.message}
    if isinstance(exc, VerificationFailedError):
        body["stage"] = exc.stage
        body["cause"] = {"error": exc.cause.code, "message": exc.cause.message}
    return body


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
        except VerificationFailedError as exc:
            logger.warning(
                "pipeline.request_failed",
                escrow_id=exc.escrow_id,
                stage=exc.stage,
                cause=exc.cause.code,
            )
            return JSONResponse(status_code=status_for(exc), content=error_body(exc))
        except InvalidStateTransitionError as exc:
            logger.warning(
                "state_machine.invalid_transition",
                current=exc.current_state,
                attempted=exc.attempted_state,
            )
            return JSONResponse(status_code=409, content=error_body(exc))
        except AetherLockError as exc:
            logger.warning("domain.error", error=exc.message, code=exc.code)
            return JSONResponse(status_code=status_for(exc), content=error_body(exc))
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
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
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)
