"""
User repository for database operations.
"""

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stageworks.core.time import utcnow
from stageworks.db.models import User


def get_user_by_email(db: Session, email: str) -> User | None:
    """Get user by email (case-insensitive)."""
    if not email:
        return None
    stmt = select(User).where(func.lower(User.email) == email.lower())
    return db.execute(stmt).scalar_one_or_none()


def create_user(
    db: Session,
    username: str,
    email: str,
    password_hash: str,
    role: str = "user",
    status: str = "active",
    email_verified: bool = False,
) -> User:
    """
    Create a new user.

    Args:
        db: Database session.
        username: Unique username.
        email: Unique email address, stored lower-cased.
        password_hash: Argon2id password hash.
        role: User role (default "user").
        status: User status (default "active").
        email_verified: Stamp ``email_verified_at`` with the current time.

    Returns:
        Created User object.
    """
    user = User(
        username=username,
        email=email.lower(),
        password_hash=password_hash,
        role=role,
        status=status,
        email_verified_at=utcnow() if email_verified else None,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def update_last_login(db: Session, user: User) -> None:
    user.last_login = utcnow()
    db.commit()


def username_exists(db: Session, username: str) -> bool:
    """Case-insensitive, so ``Alice`` and ``alice`` cannot both register."""
    stmt = select(User.id).where(func.lower(User.username) == username.lower())
    return db.execute(stmt).first() is not None


def email_exists(db: Session, email: str) -> bool:
    if not email:
        return False
    return get_user_by_email(db, email) is not None
