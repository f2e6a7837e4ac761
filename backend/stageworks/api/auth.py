"""
Authentication API endpoints.

Handles login with lockout protection, logout, the current user and the
email verification sign-up flow.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stageworks.auth import (
    Audit,
    LoginSecurity,
    RateLimiters,
    RequireAuth,
    SessionData,
    ValidateCSRF,
    create_session,
    delete_session,
    hash_password,
    needs_rehash,
    verify_password,
)
from stageworks.auth.verification import VerificationCodeSender, get_verification_sender
from stageworks.config import get_settings
from stageworks.core import (
    AccountDisabledError,
    AccountLockedError,
    AppError,
    EmailTakenError,
    ErrorCode,
    InvalidCredentialsError,
    RateLimitError,
    UsernameTakenError,
    VerificationInvalidError,
    get_logger,
)
from stageworks.core.metrics import metrics
from stageworks.db import get_db
from stageworks.db.models import User
from stageworks.db.repositories import (
    AuditContext,
    consume_verification_code,
    create_user,
    delete_verification_codes,
    email_exists,
    get_user_by_email,
    issue_verification_code,
    log_account_locked,
    log_login,
    log_login_failed,
    log_logout,
    log_register,
    log_verification_sent,
    update_last_login,
    username_exists,
)
from stageworks.security import LockoutStatus, mask_identity, normalize_identity

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

USERNAME_PATTERN = r"^[a-zA-Z0-9_-]+$"


class LoginRequest(BaseModel):
    """Login request body. The email is validated by the security layer."""

    email: str = Field(..., min_length=1, max_length=320)
    password: str = Field(..., min_length=1, max_length=128)


class SendVerificationRequest(BaseModel):
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=64, pattern=USERNAME_PATTERN)


class VerifyCodeRequest(SendVerificationRequest):
    password: str = Field(..., min_length=8, max_length=128)
    code: str = Field(..., pattern=r"^\d{6}$")


class UserResponse(BaseModel):
    id: str
    username: str
    email: str
    role: str
    status: str


def _user_payload(user: User) -> dict[str, Any]:
    return UserResponse.model_validate(user, from_attributes=True).model_dump()


def _set_auth_cookies(response: Response, session_data: SessionData) -> None:
    """Session cookie is HttpOnly; the CSRF cookie must stay readable by the SPA."""
    settings = get_settings()
    common = {
        "secure": settings.cookie_secure if settings.is_production else False,
        "samesite": settings.cookie_samesite,
        "domain": settings.cookie_domain or None,
        "max_age": settings.session_ttl_seconds,
    }
    response.set_cookie(
        settings.session_cookie_name, session_data.token, httponly=True, **common
    )
    response.set_cookie(
        settings.csrf_cookie_name, session_data.csrf_token, httponly=False, **common
    )


def _clear_auth_cookies(response: Response) -> None:
    settings = get_settings()
    for name in (settings.session_cookie_name, settings.csrf_cookie_name):
        response.delete_cookie(key=name, domain=settings.cookie_domain or None)


def _start_session(
    db: Session, response: Response, user: User, audit: AuditContext
) -> dict[str, Any]:
    session_data = create_session(
        db, user, ip_address=audit.ip_address, user_agent=audit.user_agent
    )
    update_last_login(db, user)
    _set_auth_cookies(response, session_data)
    return {"user": _user_payload(user), "csrf_token": session_data.csrf_token}


def _locked(status: LockoutStatus) -> AccountLockedError:
    return AccountLockedError(status.retry_after_seconds, status.time_remaining)


@router.post("/login")
async def login(
    response: Response,
    body: LoginRequest,
    security: LoginSecurity,
    audit: Audit,
    db: Annotated[Session, Depends(get_db)],
) -> dict[str, Any]:
    """
    Log in with email and password.

    Locked accounts are refused before the password is checked. Storage
    failures in the lockout layer surface as 503 and never let a login
    through.
    """
    status = security.check_lockout_status(body.email, audit.ip_address)
    masked = mask_identity(normalize_identity(body.email))
    if status.locked:
        logger.warning(
            "Login refused for locked account",
            data={"identity": masked, "ip": audit.ip_address},
        )
        raise _locked(status)

    user = get_user_by_email(db, body.email.strip())
    if user is None or not verify_password(body.password, user.password_hash):
        status = security.record_failed_attempt(body.email, audit.ip_address, audit.user_agent)
        log_login_failed(db, audit, masked)
        if status.locked:
            log_account_locked(db, audit, masked, status.lockout_until)
            raise _locked(status)
        raise InvalidCredentialsError()

    if user.status == "disabled":
        raise AccountDisabledError()

    security.clear_lockout(body.email, audit.ip_address)
    if needs_rehash(user.password_hash):
        user.password_hash = hash_password(body.password)
    payload = _start_session(db, response, user, audit)
    log_login(db, audit, user.id)
    return payload


@router.post("/logout")
async def logout(
    response: Response,
    auth: RequireAuth,
    _csrf: ValidateCSRF,
    audit: Audit,
    db: Annotated[Session, Depends(get_db)],
) -> dict[str, str]:
    """Log out and invalidate the current session."""
    user, session = auth
    delete_session(db, session.id)
    _clear_auth_cookies(response)
    log_logout(db, audit, user.id, session.id)
    return {"status": "logged_out"}


@router.get("/me")
async def get_current_user_info(auth: RequireAuth) -> dict[str, Any]:
    user, _ = auth
    return {"user": _user_payload(user)}


@router.post("/send-verification")
async def send_verification(
    body: SendVerificationRequest,
    limiters: RateLimiters,
    audit: Audit,
    sender: Annotated[VerificationCodeSender, Depends(get_verification_sender)],
    db: Annotated[Session, Depends(get_db)],
) -> dict[str, Any]:
    """
    Issue a sign-up verification code.

    Throttled per email address. Issuing a code replaces any earlier one.
    """
    email = body.email.lower()
    limiter = limiters.verification

    if not limiter.is_allowed(email):
        metrics.increment("rate_limited_total")
        retry_after_ms = limiter.get_time_until_reset(email)
        raise RateLimitError(
            "Too many verification requests. Please try again later.",
            details={"time_until_reset_ms": retry_after_ms},
            retry_after_seconds=max(1, -(-retry_after_ms // 1000)),
        )

    if email_exists(db, email):
        raise EmailTakenError()
    if username_exists(db, body.username):
        raise UsernameTakenError()

    entry = issue_verification_code(db, email, get_settings().verification_code_ttl_seconds)
    if not sender.send(email, entry.code, body.username):
        delete_verification_codes(db, email)
        logger.error("Verification code delivery failed", data={"email": mask_identity(email)})
        raise AppError(ErrorCode.INTERNAL_ERROR, "Failed to send verification email", 502)

    log_verification_sent(db, audit, mask_identity(email))
    return {
        "status": "sent",
        "expires_at": entry.expires_at.isoformat(),
        "remaining_attempts": limiter.get_remaining_attempts(email),
    }


@router.get("/verification-status")
async def verification_status(
    limiters: RateLimiters,
    email: Annotated[EmailStr, Query()],
) -> dict[str, Any]:
    """Remaining verification sends for an email and time until the window resets."""
    key = email.lower()
    limiter = limiters.verification
    return {
        "remaining_attempts": limiter.get_remaining_attempts(key),
        "time_until_reset_ms": limiter.get_time_until_reset(key),
    }


@router.post("/verify-code", status_code=201)
async def verify_code(
    response: Response,
    body: VerifyCodeRequest,
    audit: Audit,
    db: Annotated[Session, Depends(get_db)],
) -> dict[str, Any]:
    """Consume a verification code, create the account and log it in."""
    email = body.email.lower()

    if email_exists(db, email):
        raise EmailTakenError()
    if username_exists(db, body.username):
        raise UsernameTakenError()

    if not consume_verification_code(db, email, body.code):
        raise VerificationInvalidError()

    try:
        user = create_user(
            db,
            username=body.username,
            email=email,
            password_hash=hash_password(body.password),
            email_verified=True,
        )
    except IntegrityError:
        # Lost a race with a concurrent sign-up for the same email or username
        db.rollback()
        if email_exists(db, email):
            raise EmailTakenError() from None
        raise UsernameTakenError() from None
    log_register(db, audit, user.id, user.username)
    return _start_session(db, response, user, audit)
