"""
Admin API endpoints.

Lockout inspection and clearing plus a metrics snapshot. Every route
requires an admin session and is throttled per client IP.
"""

from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from stageworks.auth import (
    Audit,
    LoginSecurity,
    RequireAdmin,
    ValidateCSRF,
    enforce_admin_rate_limit,
)
from stageworks.core import ValidationError
from stageworks.core.metrics import metrics
from stageworks.db import get_db
from stageworks.db.repositories import log_lockout_cleanup, log_lockout_clear
from stageworks.security import LoginAttemptRecord, normalize_identity

router = APIRouter(
    prefix="/admin", tags=["admin"], dependencies=[Depends(enforce_admin_rate_limit)]
)


class LockoutActionRequest(BaseModel):
    """Lockout management request. Only ``clear`` is supported."""

    action: str = Field(..., min_length=1, max_length=32)
    email: str = Field(..., min_length=1, max_length=320)
    ip_address: str | None = Field(default=None, max_length=45)


class LockoutRecordResponse(BaseModel):
    identity: str
    failed_attempts: int
    locked: bool
    lockout_until: str | None
    last_attempt_at: str
    ip_address: str | None


def _record_payload(record: LoginAttemptRecord, locked: bool) -> dict[str, Any]:
    return LockoutRecordResponse(
        identity=record.identity,
        failed_attempts=record.failed_attempts,
        locked=locked,
        lockout_until=record.lockout_until.isoformat() if record.lockout_until else None,
        last_attempt_at=record.last_attempt_at.isoformat(),
        ip_address=record.ip_address,
    ).model_dump()


@router.get("/lockouts")
async def list_lockouts(
    _admin: RequireAdmin,
    security: LoginSecurity,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict[str, Any]:
    """List failed-attempt records, most recent first."""
    now = security.clock()
    records = security.store.list_records(limit=limit, offset=offset)
    return {
        "records": [
            _record_payload(
                record,
                locked=record.lockout_until is not None and now < record.lockout_until,
            )
            for record in records
        ],
        "limit": limit,
        "offset": offset,
    }


@router.get("/lockouts/info")
async def lockout_info(
    _admin: RequireAdmin,
    security: LoginSecurity,
    email: Annotated[str, Query(min_length=1, max_length=320)],
    ip: Annotated[str | None, Query(max_length=45)] = None,
) -> dict[str, Any]:
    """Lockout details for one account."""
    return security.get_lockout_info(email, ip).to_dict()


@router.post("/lockouts")
async def manage_lockout(
    body: LockoutActionRequest,
    admin: RequireAdmin,
    _csrf: ValidateCSRF,
    audit: Audit,
    security: LoginSecurity,
    db: Annotated[Session, Depends(get_db)],
) -> dict[str, Any]:
    """Apply a lockout action. Unknown actions are rejected."""
    if body.action != "clear":
        raise ValidationError("Unsupported lockout action", {"action": body.action})

    identity = normalize_identity(body.email)
    user, _ = admin
    security.clear_lockout(identity, body.ip_address)
    log_lockout_clear(db, audit, user.id, identity)
    return {"status": "cleared", "email": identity}


@router.post("/lockouts/cleanup")
async def cleanup_lockouts(
    admin: RequireAdmin,
    _csrf: ValidateCSRF,
    audit: Audit,
    security: LoginSecurity,
    db: Annotated[Session, Depends(get_db)],
) -> dict[str, Any]:
    """Delete expired lockouts and stale attempt records."""
    user, _ = admin
    result = security.cleanup_expired_records()
    log_lockout_cleanup(db, audit, user.id, result.lockouts_cleared, result.attempts_reset)
    return {
        "lockouts_cleared": result.lockouts_cleared,
        "attempts_reset": result.attempts_reset,
        "total": result.total,
    }


@router.get("/metrics")
async def metrics_snapshot(
    _admin: RequireAdmin,
    kind: Literal["all", "counters", "gauges"] = "all",
) -> dict[str, Any]:
    """Snapshot of in-process counters and gauges."""
    snapshot = metrics.snapshot()
    if kind == "all":
        return snapshot
    return {kind: snapshot[kind]}
