"""
FastAPI dependencies for authentication and login security.

These dependencies protect routes, resolve the current user from the session
cookie and build the per-request login security service.
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from stageworks.auth.csrf import tokens_match, validate_origin
from stageworks.auth.session import validate_session
from stageworks.config import get_settings
from stageworks.core import (
    AccountDisabledError,
    CSRFError,
    ForbiddenError,
    RateLimitError,
    SessionExpiredError,
    UnauthorizedError,
    get_logger,
)
from stageworks.core.logging import user_id_ctx
from stageworks.core.metrics import metrics
from stageworks.core.middleware import get_client_ip
from stageworks.db import get_db
from stageworks.db.models import User, UserSession
from stageworks.db.repositories import AuditContext
from stageworks.security import (
    LockoutPolicy,
    LoginSecurityService,
    RateLimiterRegistry,
    SqlAttemptStore,
)

logger = get_logger(__name__)


def get_session_token(request: Request) -> str | None:
    settings = get_settings()
    return request.cookies.get(settings.session_cookie_name)


async def require_auth(
    request: Request,
    db: Annotated[Session, Depends(get_db)],
) -> tuple[User, UserSession]:
    """
    Require an authenticated, active user.

    Raises:
        UnauthorizedError: If no session cookie.
        SessionExpiredError: If the session is expired or unknown.
        AccountDisabledError: If the account is disabled.
    """
    token = get_session_token(request)
    if not token:
        raise UnauthorizedError("Authentication required")

    result = validate_session(db, token)
    if not result:
        raise SessionExpiredError("Session expired or invalid")

    session, user = result
    if user.status == "disabled":
        raise AccountDisabledError("Account is disabled")
    if user.status != "active":
        raise UnauthorizedError("Account not active")

    user_id_ctx.set(user.id)
    return user, session


async def require_admin(
    auth: Annotated[tuple[User, UserSession], Depends(require_auth)],
) -> tuple[User, UserSession]:
    """Require the admin role."""
    user, session = auth
    if user.role != "admin":
        raise ForbiddenError("Admin access required")
    return user, session


async def validate_csrf(request: Request) -> None:
    """
    Double-submit CSRF check for state-changing requests.

    Requests without a session cookie are skipped; they fail authentication.
    """
    settings = get_settings()

    if request.method in ("GET", "HEAD", "OPTIONS"):
        return

    origin = request.headers.get("origin")
    referer = request.headers.get("referer")
    if not validate_origin(origin, referer, settings.cors_origins_list):
        raise CSRFError("Invalid origin")

    if not get_session_token(request):
        return

    header_token = request.headers.get(settings.csrf_header_name)
    cookie_token = request.cookies.get(settings.csrf_cookie_name)
    if not header_token or not cookie_token:
        raise CSRFError("CSRF token missing")
    if not tokens_match(header_token, cookie_token):
        raise CSRFError("CSRF token mismatch")


def get_login_security(
    db: Annotated[Session, Depends(get_db)],
) -> LoginSecurityService:
    """Login security service bound to the request's database session."""
    settings = get_settings()
    return LoginSecurityService(
        SqlAttemptStore(db), LockoutPolicy.from_settings(settings)
    )


def get_audit_context(request: Request) -> AuditContext:
    return AuditContext(
        ip_address=get_client_ip(request), user_agent=request.headers.get("user-agent")
    )


def get_rate_limiters(request: Request) -> RateLimiterRegistry:
    """Resolve the limiter registry from app state (create if missing)."""
    registry = getattr(request.app.state, "rate_limiters", None)
    if registry is None:
        registry = RateLimiterRegistry.from_settings(get_settings())
        request.app.state.rate_limiters = registry
    return registry


async def enforce_admin_rate_limit(
    request: Request,
    registry: Annotated[RateLimiterRegistry, Depends(get_rate_limiters)],
) -> None:
    """Throttle the admin API per client IP."""
    client_ip = get_client_ip(request)
    limiter = registry.admin
    if not limiter.is_allowed(client_ip):
        metrics.increment("rate_limited_total")
        logger.warning(
            "Admin rate limit exceeded",
            data={"ip": client_ip, "path": request.url.path},
        )
        retry_after_ms = limiter.get_time_until_reset(client_ip)
        raise RateLimitError(
            "Too many admin requests. Please try again later.",
            details={"retry_after_ms": retry_after_ms},
            retry_after_seconds=max(1, -(-retry_after_ms // 1000)),
        )


# Type aliases for cleaner dependency injection
RequireAuth = Annotated[tuple[User, UserSession], Depends(require_auth)]
RequireAdmin = Annotated[tuple[User, UserSession], Depends(require_admin)]
ValidateCSRF = Annotated[None, Depends(validate_csrf)]
LoginSecurity = Annotated[LoginSecurityService, Depends(get_login_security)]
RateLimiters = Annotated[RateLimiterRegistry, Depends(get_rate_limiters)]
Audit = Annotated[AuditContext, Depends(get_audit_context)]
