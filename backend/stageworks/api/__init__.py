"""API routers."""

from stageworks.api.admin import router as admin_router
from stageworks.api.auth import router as auth_router
from stageworks.api.health import router as health_router

__all__ = ["admin_router", "auth_router", "health_router"]
