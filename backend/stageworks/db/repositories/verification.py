"""
Verification code repository.

One live code per email: issuing a new code deletes earlier ones, and a code
is single-use.
"""

import secrets
from datetime import timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from stageworks.core.time import utcnow
from stageworks.db.models import VerificationCode


def generate_verification_code() -> str:
    """Random six-digit numeric code."""
    return f"{secrets.randbelow(1_000_000):06d}"


def issue_verification_code(db: Session, email: str, ttl_seconds: int) -> VerificationCode:
    """Replace any codes for ``email`` with a fresh one."""
    email = email.lower()
    db.execute(delete(VerificationCode).where(VerificationCode.email == email))
    entry = VerificationCode(
        email=email,
        code=generate_verification_code(),
        expires_at=utcnow() + timedelta(seconds=ttl_seconds),
        used=False,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def delete_verification_codes(db: Session, email: str) -> int:
    result = db.execute(
        delete(VerificationCode).where(VerificationCode.email == email.lower())
    )
    db.commit()
    return result.rowcount


def consume_verification_code(db: Session, email: str, code: str) -> bool:
    """
    Mark a matching, unused, unexpired code as used.

    Returns:
        True if a code was consumed. The conditional UPDATE makes
        concurrent use of the same code succeed at most once.
    """
    now = utcnow()
    stmt = select(VerificationCode.id).where(
        VerificationCode.email == email.lower(),
        VerificationCode.code == code,
        VerificationCode.used.is_(False),
        VerificationCode.expires_at > now,
    )
    code_id = db.execute(stmt).scalars().first()
    if code_id is None:
        return False

    result = db.execute(
        update(VerificationCode)
        .where(VerificationCode.id == code_id, VerificationCode.used.is_(False))
        .values(used=True)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount > 0


def purge_expired_codes(db: Session) -> int:
    """Delete expired or used codes."""
    result = db.execute(
        delete(VerificationCode).where(
            (VerificationCode.expires_at <= utcnow()) | VerificationCode.used.is_(True)
        )
    )
    db.commit()
    return result.rowcount
