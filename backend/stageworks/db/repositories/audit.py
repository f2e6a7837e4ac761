"""
Audit trail for authentication and lockout events.

Identities of accounts that failed to log in are stored masked; the raw
email only appears for admin actions that name an account explicitly.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from stageworks.core.logging import request_id_ctx
from stageworks.db.models import AuditLog


class AuditAction:
    """Audit action constants."""

    # Authentication
    LOGIN = "login"
    LOGOUT = "logout"
    LOGIN_FAILED = "login_failed"
    REGISTER = "register"

    # Lockouts
    ACCOUNT_LOCKED = "account_locked"
    LOCKOUT_CLEAR = "lockout_clear"
    LOCKOUT_CLEANUP = "lockout_cleanup"

    # Verification
    VERIFICATION_SENT = "verification_sent"


@dataclass(frozen=True)
class AuditContext:
    """Client details attached to every entry."""

    ip_address: str | None = None
    user_agent: str | None = None


def log_audit(
    db: Session,
    action: str,
    ctx: AuditContext,
    actor_user_id: str | None = None,
    target_type: str | None = None,
    target_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> AuditLog:
    """
    Write one audit entry and commit.

    ``details`` is stored as JSON; datetimes are written in ISO form. The
    request ID is taken from the logging context when a request is active.
    """
    entry = AuditLog(
        actor_user_id=actor_user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        details=json.dumps(details, default=str) if details else None,
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent[:512] if ctx.user_agent else None,
        request_id=request_id_ctx.get(),
    )
    db.add(entry)
    db.commit()
    return entry


def log_login(db: Session, ctx: AuditContext, user_id: str) -> AuditLog:
    return log_audit(
        db, AuditAction.LOGIN, ctx, actor_user_id=user_id, target_type="user", target_id=user_id
    )


def log_login_failed(db: Session, ctx: AuditContext, masked_identity: str) -> AuditLog:
    """Failed logins carry no actor; the target is the masked email."""
    return log_audit(
        db, AuditAction.LOGIN_FAILED, ctx, target_type="account", target_id=masked_identity
    )


def log_account_locked(
    db: Session, ctx: AuditContext, masked_identity: str, lockout_until: datetime
) -> AuditLog:
    return log_audit(
        db,
        AuditAction.ACCOUNT_LOCKED,
        ctx,
        target_type="account",
        target_id=masked_identity,
        details={"lockout_until": lockout_until},
    )


def log_logout(db: Session, ctx: AuditContext, user_id: str, session_id: str) -> AuditLog:
    return log_audit(
        db,
        AuditAction.LOGOUT,
        ctx,
        actor_user_id=user_id,
        target_type="session",
        target_id=session_id,
    )


def log_register(db: Session, ctx: AuditContext, user_id: str, username: str) -> AuditLog:
    return log_audit(
        db,
        AuditAction.REGISTER,
        ctx,
        actor_user_id=user_id,
        target_type="user",
        target_id=user_id,
        details={"username": username},
    )


def log_verification_sent(db: Session, ctx: AuditContext, masked_email: str) -> AuditLog:
    return log_audit(
        db, AuditAction.VERIFICATION_SENT, ctx, target_type="email", target_id=masked_email
    )


def log_lockout_clear(
    db: Session, ctx: AuditContext, admin_user_id: str, identity: str
) -> AuditLog:
    """An admin cleared the lockout record for ``identity``."""
    return log_audit(
        db,
        AuditAction.LOCKOUT_CLEAR,
        ctx,
        actor_user_id=admin_user_id,
        target_type="account",
        target_id=identity,
    )


def log_lockout_cleanup(
    db: Session,
    ctx: AuditContext,
    admin_user_id: str,
    lockouts_cleared: int,
    attempts_reset: int,
) -> AuditLog:
    return log_audit(
        db,
        AuditAction.LOCKOUT_CLEANUP,
        ctx,
        actor_user_id=admin_user_id,
        target_type="account",
        details={"lockouts_cleared": lockouts_cleared, "attempts_reset": attempts_reset},
    )
