# auth/errors.py
"""
Error taxonomy for the authentication subsystem and the JSON envelope it renders to.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_ERROR"
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        if error_code:
            self.error_code = error_code
        self.details = details or {}
        self.headers = headers

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "status": "error",
            "message": self.message,
            "error_code": self.error_code,
        }
        body.update(self.details)
        return body


class ValidationError(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "VALIDATION_ERROR"
    default_message = "Validation failed"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, Any]]] = None, **kwargs):
        super().__init__(message, **kwargs)
        if errors:
            self.details["errors"] = errors


class AuthenticationError(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "AUTHENTICATION_FAILED"
    default_message = "Authentication failed"


class OTPExpiredError(AuthenticationError):
    error_code = "OTP_EXPIRED"
    default_message = "OTP has expired. Please request a new one."


class ResetTokenError(AuthenticationError):
    error_code = "RESET_TOKEN_INVALID"
    default_message = "Invalid reset token"


class TokenInvalidError(AuthenticationError):
    error_code = "TOKEN_INVALID"
    default_message = "Invalid token"


class TokenRevokedError(AuthenticationError):
    error_code = "TOKEN_REVOKED"
    default_message = "Token has been revoked"


class SessionNotFoundError(AuthenticationError):
    error_code = "SESSION_NOT_FOUND"
    default_message = "Session not found"


class SessionRevokedError(AuthenticationError):
    error_code = "SESSION_REVOKED"
    default_message = "Session has been revoked or expired"


class AuthorizationError(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "FORBIDDEN"
    default_message = "You do not have permission to perform this action"


class NotFoundError(AuthError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"
    default_message = "Resource not found"


class OTPNotFoundError(NotFoundError):
    error_code = "OTP_NOT_FOUND"
    default_message = "OTP not found or expired. Please request a new one."


class NoPendingSignupError(NotFoundError):
    error_code = "NO_PENDING_SIGNUP"
    default_message = "No pending signup found for this phone number. Please sign up again."


class LockedError(AuthError):
    """Too many failed attempts; carries the time left until unlock."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "LOCKED"
    default_message = "Too many failed attempts"

    def __init__(self, message: Optional[str] = None, lockout_time_remaining: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.lockout_time_remaining = lockout_time_remaining
        self.details.update({
            "locked": True,
            "lockout_time_remaining": lockout_time_remaining,
            "remaining_attempts": 0,
        })
        if lockout_time_remaining and self.headers is None:
            self.headers = {"Retry-After": str(lockout_time_remaining)}


class RateLimitedError(AuthError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "RATE_LIMITED"
    default_message = "Too many requests. Please try again later."

    def __init__(self, message: Optional[str] = None, retry_after: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        self.details["retry_after"] = retry_after
        if self.headers is None:
            self.headers = {
                "Retry-After": str(retry_after),
                "X-RateLimit-Remaining": "0",
            }


class InternalError(AuthError):
    """Unexpected failure; the message shown to clients stays opaque."""


class CodeDeliveryError(InternalError):
    error_code = "OTP_DELIVERY_FAILED"
    default_message = "Failed to send OTP. Please try again."


def error_response(exc: AuthError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=exc.headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error as the ``{status, message, ...}`` envelope."""

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError):
        log_fn = logger.error if exc.status_code >= 500 else logger.info
        log_fn(f"{request.method} {request.url.path} -> {exc.status_code} {exc.error_code}: {exc.message}")
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ())[1:]) or None,
                "message": err.get("msg"),
            }
            for err in exc.errors()
        ]
        return error_response(ValidationError("Validation failed", errors=errors))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return error_response(InternalError())
