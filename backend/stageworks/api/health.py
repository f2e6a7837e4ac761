"""
Health check endpoints.

Liveness and readiness probes for monitoring.
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from stageworks.config import get_settings
from stageworks.db import verify_database_connection

router = APIRouter(tags=["health"])


@router.get("/health")
@router.get("/healthz")
async def healthcheck() -> dict[str, Any]:
    """Liveness probe. Does not touch the database."""
    settings = get_settings()
    return {
        "status": "ok",
        "version": "0.1.0",
        "timestamp": datetime.now(UTC).isoformat(),
        "environment": settings.environment,
    }


@router.get("/readyz")
async def readiness() -> JSONResponse:
    """
    Readiness probe.

    Reports not ready (503) while the database is unreachable, since login
    refuses service without its lockout store.
    """
    checks = {"database": verify_database_connection()}
    all_ready = all(checks.values())
    return JSONResponse(
        status_code=status.HTTP_200_OK if all_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_ready else "not_ready",
            "timestamp": datetime.now(UTC).isoformat(),
            "checks": checks,
        },
    )
