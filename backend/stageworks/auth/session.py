"""
Server-side sessions.

Only a SHA-256 hash of the session token is stored. The plain token goes to
the client in an HttpOnly cookie.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from stageworks.auth.csrf import generate_csrf_token
from stageworks.config import get_settings
from stageworks.core.time import utcnow
from stageworks.db.models import User, UserSession


@dataclass
class SessionData:
    """Result of creating a session."""

    session_id: str
    user_id: str
    token: str  # plain token for the cookie
    csrf_token: str
    expires_at: datetime


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def create_session(
    db: Session,
    user: User,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SessionData:
    """Create a session for ``user`` and return its plain token."""
    settings = get_settings()
    token = secrets.token_urlsafe(32)
    expires_at = utcnow() + timedelta(seconds=settings.session_ttl_seconds)

    session = UserSession(
        user_id=user.id,
        token_hash=_hash_token(token),
        expires_at=expires_at,
        ip_address=ip_address,
        user_agent=user_agent[:512] if user_agent else None,
    )
    db.add(session)
    db.commit()

    return SessionData(
        session_id=session.id,
        user_id=user.id,
        token=token,
        csrf_token=generate_csrf_token(),
        expires_at=expires_at,
    )


def validate_session(db: Session, token: str) -> tuple[UserSession, User] | None:
    """Return the unexpired session and its user for a plain token."""
    stmt = (
        select(UserSession)
        .where(UserSession.token_hash == _hash_token(token))
        .where(UserSession.expires_at > utcnow())
    )
    session = db.execute(stmt).scalar_one_or_none()
    if not session:
        return None

    user = db.get(User, session.user_id)
    if not user:
        return None
    return session, user


def delete_session(db: Session, session_id: str) -> bool:
    result = db.execute(delete(UserSession).where(UserSession.id == session_id))
    db.commit()
    return result.rowcount > 0


def cleanup_expired_sessions(db: Session) -> int:
    """Delete expired sessions. Returns the number removed."""
    result = db.execute(delete(UserSession).where(UserSession.expires_at <= utcnow()))
    db.commit()
    return result.rowcount
