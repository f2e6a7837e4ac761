"""
Application middleware for security and observability.

Includes request ID injection, request size limits, per-IP throttling
and error handling.
"""

import time
import uuid
from collections.abc import Callable
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from stageworks.core.errors import AppError, ErrorCode, ErrorResponse
from stageworks.core.logging import get_logger, request_id_ctx, request_path_ctx, user_id_ctx
from stageworks.core.metrics import metrics

logger = get_logger(__name__)

_HTTP_ERROR_CODES = {
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.METHOD_NOT_ALLOWED,
    413: ErrorCode.REQUEST_TOO_LARGE,
    429: ErrorCode.RATE_LIMITED,
}


def get_client_ip(request: Request) -> str:
    """Client IP, preferring the first X-Forwarded-For hop."""
    forwarded_for = request.headers.get("x-forwarded-for", "")
    client_ip = forwarded_for.split(",")[0].strip() if forwarded_for else None
    if not client_ip:
        client_ip = request.headers.get("x-real-ip")
    if not client_ip and request.client:
        client_ip = request.client.host
    return client_ip or "unknown"


def error_json(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Render the error envelope, tagged with the current request ID."""
    request_id = request_id_ctx.get()
    body = ErrorResponse(code=code, message=message, request_id=request_id, details=details)
    response_headers = {"X-Request-ID": request_id} if request_id else {}
    response_headers.update(headers or {})
    return JSONResponse(status_code=status_code, content=body.to_dict(), headers=response_headers)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds the request ID, path and user to the logging context."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        tokens = (
            (request_id_ctx, request_id_ctx.set(request_id)),
            (request_path_ctx, request_path_ctx.set(request.url.path)),
            # filled in by require_auth
            (user_id_ctx, user_id_ctx.set(None)),
        )
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            logger.info(
                f"{request.method} {request.url.path} -> {response.status_code}",
                data={"duration_ms": round((time.perf_counter() - started) * 1000, 2)},
            )
            return response
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Rejects bodies whose declared Content-Length exceeds ``max_bytes``."""

    def __init__(self, app: FastAPI, max_bytes: int = 1048576):
        super().__init__(app)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > self.max_bytes:
            logger.warning(
                "Request body too large",
                data={"content_length": int(declared), "max_bytes": self.max_bytes},
            )
            return error_json(
                ErrorCode.REQUEST_TOO_LARGE,
                f"Request body exceeds {self.max_bytes} bytes",
                413,
            )
        return await call_next(request)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP request throttle backed by the app's fixed-window limiter.

    The limiter lives on ``app.state.rate_limiters`` and is created by the
    lifespan handler; requests arriving without it are passed through.
    """

    EXEMPT_PATHS = {"/health", "/healthz", "/readyz"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        registry = getattr(request.app.state, "rate_limiters", None)
        limiter = registry.requests if registry is not None else None
        if limiter is None or request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        client_ip = get_client_ip(request)
        if limiter.is_allowed(client_ip):
            return await call_next(request)

        metrics.increment("rate_limited_total")
        logger.warning(
            "Request rate limit exceeded",
            data={"ip": client_ip, "path": request.url.path},
        )
        retry_after = max(1, -(-limiter.get_time_until_reset(client_ip) // 1000))
        return error_json(
            ErrorCode.RATE_LIMITED,
            "Too many requests. Please try again later.",
            429,
            headers={"Retry-After": str(retry_after)},
        )


async def _validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return error_json(ErrorCode.VALIDATION_ERROR, "Validation error", 422, {"errors": errors})


async def _http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_json(
        _HTTP_ERROR_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR),
        str(exc.detail) if exc.detail else "HTTP error",
        exc.status_code,
    )


async def _app_error(_request: Request, exc: AppError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(f"Application error: {exc.message}", data={"code": exc.code.value, "details": exc.details})
    return error_json(exc.code, exc.message, exc.status_code, exc.details, exc.headers)


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    # Never leak internals to the client
    logger.error(
        "Unhandled exception",
        exc_info=exc,
        data={"path": request.url.path, "method": request.method},
    )
    return error_json(ErrorCode.INTERNAL_ERROR, "An unexpected error occurred", 500)


def setup_exception_handlers(app: FastAPI) -> None:
    """Map every exception type onto the JSON error envelope."""
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(AppError, _app_error)
    app.add_exception_handler(Exception, _unhandled_error)
