"""
Structured error handling with stable error codes.

No stack traces are exposed to clients. All errors are mapped to
stable, documented error codes for reliable client handling.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes for API responses."""

    # General errors (1xxx)
    INTERNAL_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"
    NOT_FOUND = "E1002"
    METHOD_NOT_ALLOWED = "E1003"
    REQUEST_TOO_LARGE = "E1004"
    RATE_LIMITED = "E1005"
    SERVICE_UNAVAILABLE = "E1006"
    INVALID_IDENTITY = "E1007"

    # Authentication errors (2xxx)
    UNAUTHORIZED = "E2000"
    INVALID_CREDENTIALS = "E2001"
    SESSION_EXPIRED = "E2002"
    CSRF_FAILED = "E2003"
    VERIFICATION_INVALID = "E2005"
    ACCOUNT_DISABLED = "E2007"
    USERNAME_TAKEN = "E2008"
    EMAIL_TAKEN = "E2009"
    ACCOUNT_LOCKED = "E2011"

    # Authorization errors (3xxx)
    FORBIDDEN = "E3000"


@dataclass(frozen=True)
class ErrorResponse:
    """Structured error response for API.

    Format: {error: {code, message, request_id, details?}}
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        error: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
        }
        if self.request_id:
            error["request_id"] = self.request_id
        if self.details:
            error["details"] = self.details
        return {"error": error}


class AppError(Exception):
    """Base application error with structured error detail."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        self.headers = headers
        super().__init__(message)

    def to_response(self, request_id: str | None = None) -> ErrorResponse:
        """Create error response with request ID."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            request_id=request_id,
            details=self.details,
        )


# Convenience error classes
class ValidationError(AppError):
    """Validation error (400)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.VALIDATION_ERROR, message, 400, details)


class UnauthorizedError(AppError):
    """Authentication required (401)."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(ErrorCode.UNAUTHORIZED, message, 401)


class ForbiddenError(AppError):
    """Access denied (403)."""

    def __init__(self, message: str = "Access denied"):
        super().__init__(ErrorCode.FORBIDDEN, message, 403)


class RateLimitError(AppError):
    """Rate limit exceeded (429)."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        details: dict[str, Any] | None = None,
        retry_after_seconds: int | None = None,
    ):
        headers = None
        if retry_after_seconds is not None:
            headers = {"Retry-After": str(retry_after_seconds)}
        super().__init__(ErrorCode.RATE_LIMITED, message, 429, details, headers)


class StorageUnavailableError(AppError):
    """The durable store could not be reached (503).

    Callers on a security path must treat this as a denial.
    """

    def __init__(self, message: str = "Storage unavailable"):
        super().__init__(ErrorCode.SERVICE_UNAVAILABLE, message, 503)


class InvalidIdentityError(AppError):
    """Malformed identity (email) passed to the security layer (400)."""

    def __init__(self, message: str = "Invalid email address"):
        super().__init__(ErrorCode.INVALID_IDENTITY, message, 400)


class AccountLockedError(AppError):
    """Too many failed logins; account temporarily locked (429)."""

    def __init__(
        self,
        retry_after_seconds: int,
        time_remaining: str,
        message: str = "Too many failed login attempts. Please try again later.",
    ):
        super().__init__(
            ErrorCode.ACCOUNT_LOCKED,
            message,
            429,
            {"retry_after_seconds": retry_after_seconds, "time_remaining": time_remaining},
            {"Retry-After": str(retry_after_seconds)},
        )


class InvalidCredentialsError(AppError):
    """Invalid credentials (401)."""

    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(ErrorCode.INVALID_CREDENTIALS, message, 401)


class SessionExpiredError(AppError):
    """Session expired (401)."""

    def __init__(self, message: str = "Session expired"):
        super().__init__(ErrorCode.SESSION_EXPIRED, message, 401)


class CSRFError(AppError):
    """CSRF validation failed (403)."""

    def __init__(self, message: str = "CSRF validation failed"):
        super().__init__(ErrorCode.CSRF_FAILED, message, 403)


class VerificationInvalidError(AppError):
    """Verification code invalid, used or expired (400)."""

    def __init__(self, message: str = "Invalid or expired verification code"):
        super().__init__(ErrorCode.VERIFICATION_INVALID, message, 400)


class AccountDisabledError(AppError):
    """Account disabled (403)."""

    def __init__(self, message: str = "Account is disabled"):
        super().__init__(ErrorCode.ACCOUNT_DISABLED, message, 403)


class UsernameTakenError(AppError):
    """Username already taken (409)."""

    def __init__(self, message: str = "Username already taken"):
        super().__init__(ErrorCode.USERNAME_TAKEN, message, 409)


class EmailTakenError(AppError):
    """Email already taken (409)."""

    def __init__(self, message: str = "Email already registered"):
        super().__init__(ErrorCode.EMAIL_TAKEN, message, 409)
