"""Database repositories for data access."""

from stageworks.db.repositories.audit import (
    AuditAction,
    AuditContext,
    log_account_locked,
    log_audit,
    log_lockout_cleanup,
    log_lockout_clear,
    log_login,
    log_login_failed,
    log_logout,
    log_register,
    log_verification_sent,
)
from stageworks.db.repositories.user import (
    create_user,
    email_exists,
    get_user_by_email,
    update_last_login,
    username_exists,
)
from stageworks.db.repositories.verification import (
    consume_verification_code,
    delete_verification_codes,
    generate_verification_code,
    issue_verification_code,
    purge_expired_codes,
)

__all__ = [
    # User
    "get_user_by_email",
    "create_user",
    "update_last_login",
    "username_exists",
    "email_exists",
    # Verification
    "generate_verification_code",
    "issue_verification_code",
    "delete_verification_codes",
    "consume_verification_code",
    "purge_expired_codes",
    # Audit
    "AuditAction",
    "AuditContext",
    "log_audit",
    "log_login",
    "log_login_failed",
    "log_account_locked",
    "log_logout",
    "log_register",
    "log_verification_sent",
    "log_lockout_clear",
    "log_lockout_cleanup",
]
