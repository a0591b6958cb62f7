"""
Application error hierarchy and FastAPI exception handlers.

AppError is the base for all typed errors. The global exception handler
converts AppError subclasses to consistent JSON responses.

Non-AppError exceptions (including store failures) bubble up as 500s, with
Sentry reporting in production.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shared.logging import get_logger

log = get_logger(__name__)


class AppError(Exception):
    """Base application error. All typed errors inherit from this."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details

    def to_dict(self) -> dict:
        payload: dict = {"error": self.message, "code": self.error_code}
        if self.field is not None:
            payload["field"] = self.field
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(AppError):
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(AppError):
    status_code = 401
    error_code = "authentication_error"


class ForbiddenError(AppError):
    status_code = 403
    error_code = "forbidden"


class NotFoundError(AppError):
    status_code = 404
    error_code = "not_found"


class ConflictError(AppError):
    status_code = 409
    error_code = "conflict"


# ── Authentication taxonomy ──────────────────────────────────────────────────


class InvalidCredentialsError(AuthenticationError):
    """Wrong password and unknown email are deliberately indistinguishable."""

    error_code = "invalid_credentials"


class NotAuthenticatedError(AuthenticationError):
    """Missing, malformed, unknown or expired session: one outcome for all."""

    error_code = "not_authenticated"


class LoginFlowAbortedError(AuthenticationError):
    """The candidate session disappeared mid step-up; restart from login."""

    error_code = "login_restart_required"


class ChallengeNotFoundError(NotFoundError):
    error_code = "challenge_not_found"


class ChallengeExpiredError(AppError):
    status_code = 410
    error_code = "challenge_expired"


class CodeMismatchError(ValidationError):
    error_code = "code_mismatch"


class StaleVerificationError(ForbiddenError):
    error_code = "stale_verification"


class InvalidStateError(ConflictError):
    error_code = "invalid_login_state"


class ConstraintConflictError(ConflictError):
    """Upsert race on (target, type) that a single retry could not settle."""

    error_code = "constraint_conflict"


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        # Sentry integration: if sentry_sdk is initialized it will auto-capture
        # unhandled exceptions before this handler fires.
        log.error(
            "unhandled_exception",
            path=request.url.path,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return JSONResponse(
            status_code=500,
            content={"error": "An internal server error occurred.", "code": "internal_error"},
        )
