"""Core module with logging, errors, middleware and metrics."""

from stageworks.core.errors import (
    AccountDisabledError,
    AccountLockedError,
    AppError,
    CSRFError,
    EmailTakenError,
    ErrorCode,
    ErrorResponse,
    ForbiddenError,
    InvalidCredentialsError,
    InvalidIdentityError,
    RateLimitError,
    SessionExpiredError,
    StorageUnavailableError,
    UnauthorizedError,
    UsernameTakenError,
    ValidationError,
    VerificationInvalidError,
)
from stageworks.core.logging import get_logger, setup_logging

__all__ = [
    "get_logger",
    "setup_logging",
    "AppError",
    "ErrorCode",
    "ErrorResponse",
    "AccountDisabledError",
    "AccountLockedError",
    "CSRFError",
    "EmailTakenError",
    "ForbiddenError",
    "InvalidCredentialsError",
    "InvalidIdentityError",
    "RateLimitError",
    "SessionExpiredError",
    "StorageUnavailableError",
    "UnauthorizedError",
    "UsernameTakenError",
    "ValidationError",
    "VerificationInvalidError",
]
