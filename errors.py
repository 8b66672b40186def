"""
Application error hierarchy and FastAPI exception handlers.

AppError is the base for all typed errors. Workflows raise these; the global
exception handler converts them to consistent JSON responses.

Non-AppError exceptions bubble up as 500s (with Sentry reporting in production).
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


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


class MismatchError(ValidationError):
    """Password and its confirmation differ."""

    error_code = "password_mismatch"


class InvalidOrExpiredError(AppError):
    """A single-use token is unknown, already consumed, or past its expiry."""

    status_code = 400
    error_code = "invalid_or_expired_token"


class AuthenticationError(AppError):
    status_code = 401
    error_code = "authentication_error"


class InvalidCredentialsError(AuthenticationError):
    """Login failure. Never says whether the account or the password was wrong."""

    error_code = "invalid_credentials"


class InvalidSessionError(AuthenticationError):
    error_code = "invalid_session"


class SessionExpiredError(AuthenticationError):
    error_code = "session_expired"


class ExternalAuthError(AuthenticationError):
    """The OAuth provider rejected the exchange or its identity token failed verification."""

    error_code = "external_auth_failed"


class ForbiddenError(AppError):
    status_code = 403
    error_code = "forbidden"


class DeactivatedError(ForbiddenError):
    error_code = "account_deactivated"


class NotFoundError(AppError):
    status_code = 404
    error_code = "not_found"


class ConflictError(AppError):
    status_code = 409
    error_code = "conflict"

    def __init__(
        self,
        message: str,
        *,
        reason: Optional[str] = None,
        field: Optional[str] = None,
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(message, field=field, details=details)
        self.reason = reason

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.reason is not None:
            payload["reason"] = self.reason
        return payload


class RateLimitError(AppError):
    status_code = 429
    error_code = "rate_limit_exceeded"

    def __init__(self, message: str, *, retry_after: int) -> None:
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["retry_after"] = self.retry_after
        return payload


class DeliveryFailedError(AppError):
    """Outbound email could not be sent; provisional state has been rolled back."""

    status_code = 502
    error_code = "email_delivery_failed"


class InternalError(AppError):
    status_code = 500
    error_code = "internal_error"


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        headers = None
        if isinstance(exc, RateLimitError):
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(
            status_code=exc.status_code, content=exc.to_dict(), headers=headers
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        # Sentry integration: if sentry_sdk is initialized it will auto-capture
        # unhandled exceptions before this handler fires.
        return JSONResponse(
            status_code=500,
            content={"error": "An internal server error occurred.", "code": "internal_error"},
        )
