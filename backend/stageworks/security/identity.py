"""
Identity normalization for the login security layer.

The lockout key is the account email, trimmed and lower-cased.
"""

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from stageworks.core.errors import InvalidIdentityError

_email_adapter = TypeAdapter(EmailStr)


def normalize_identity(email: str | None) -> str:
    """
    Validate and normalize an email into a lockout identity.

    Raises:
        InvalidIdentityError: If the value is not a well-formed email.
    """
    if not email or not isinstance(email, str):
        raise InvalidIdentityError()
    candidate = email.strip()
    if len(candidate) > 255:
        raise InvalidIdentityError()
    try:
        validated = _email_adapter.validate_python(candidate)
    except PydanticValidationError as exc:
        raise InvalidIdentityError() from exc
    return str(validated).lower()


def mask_identity(identity: str) -> str:
    """Mask an identity for log output (``u***@example.com``)."""
    local, sep, domain = identity.partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"
