"""Authentication module for Stageworks."""

from stageworks.auth.csrf import generate_csrf_token, tokens_match, validate_origin
from stageworks.auth.dependencies import (
    Audit,
    LoginSecurity,
    RateLimiters,
    RequireAdmin,
    RequireAuth,
    ValidateCSRF,
    enforce_admin_rate_limit,
    get_audit_context,
    get_login_security,
    get_rate_limiters,
    require_admin,
    require_auth,
    validate_csrf,
)
from stageworks.auth.password import hash_password, needs_rehash, verify_password
from stageworks.auth.session import (
    SessionData,
    cleanup_expired_sessions,
    create_session,
    delete_session,
    validate_session,
)

__all__ = [
    # Password
    "hash_password",
    "verify_password",
    "needs_rehash",
    # CSRF
    "generate_csrf_token",
    "tokens_match",
    "validate_origin",
    # Session
    "SessionData",
    "create_session",
    "delete_session",
    "validate_session",
    "cleanup_expired_sessions",
    # Dependencies
    "require_auth",
    "require_admin",
    "validate_csrf",
    "get_login_security",
    "get_rate_limiters",
    "get_audit_context",
    "enforce_admin_rate_limit",
    # Type aliases
    "Audit",
    "LoginSecurity",
    "RateLimiters",
    "RequireAuth",
    "RequireAdmin",
    "ValidateCSRF",
]
