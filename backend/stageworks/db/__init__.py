"""Database models, engine, and session management."""

from stageworks.db.base import Base, TimestampMixin
from stageworks.db.engine import dispose_engine, get_engine, verify_database_connection
from stageworks.db.models import (
    AuditLog,
    LoginAttempt,
    User,
    UserSession,
    VerificationCode,
)
from stageworks.db.session import get_db, get_session_factory, reset_session_factory

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Engine
    "get_engine",
    "verify_database_connection",
    "dispose_engine",
    # Session
    "get_db",
    "get_session_factory",
    "reset_session_factory",
    # Models
    "AuditLog",
    "LoginAttempt",
    "User",
    "UserSession",
    "VerificationCode",
]
