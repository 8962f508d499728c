"""Middleware for request ids, access logging, shutdown draining and security headers."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from pairbot.utils.logging import clear_correlation_id, sanitize_text, set_correlation_id

logger = logging.getLogger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id.

    The id comes from the X-Request-ID header or is a fresh UUID4. It is
    stored in request.state, echoed in the response header and used
    (first 16 chars) as the logging correlation id.
    """

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        set_correlation_id(request_id[:16])
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_correlation_id()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and duration of each request.

    Args:
        app: ASGI application
        log_bodies: Also log (sanitized) POST bodies; phone numbers are masked
        max_body_size: Bodies larger than this are logged as a size only
    """

    def __init__(self, app: ASGIApp, log_bodies: bool = False, max_body_size: int = 4 * 1024) -> None:
        super().__init__(app)
        self.log_bodies = log_bodies
        self.max_body_size = max_body_size

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        start = time.perf_counter()
        extra: dict[str, object] = {
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else "unknown",
        }

        if self.log_bodies and request.method == "POST":
            body = await request.body()
            if len(body) <= self.max_body_size:
                extra["request_body"] = sanitize_text(body.decode("utf-8", errors="replace"))
            else:
                extra["request_body"] = f"<truncated: {len(body)} bytes>"

        response = await call_next(request)

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms}ms)",
            extra={**extra, "status_code": response.status_code, "duration_ms": duration_ms},
        )
        return response


class GracefulShutdownMiddleware(BaseHTTPMiddleware):
    """Rejects new requests with 503 once shutdown has begun.

    Active requests are counted so the lifespan handler can let them
    finish before sessions are torn down.
    """

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        app_state = getattr(request.app.state, "app_state", None)
        if app_state is None:
            return await call_next(request)

        if app_state.shutting_down:
            if request.url.path == "/health":
                return JSONResponse(status_code=503, content={"status": "shutting_down"})
            logger.warning(f"Rejecting request during shutdown: {request.method} {request.url.path}")
            return JSONResponse(
                status_code=503,
                content={"ok": False, "error": "Server is shutting down. Please retry."},
                headers={"Retry-After": "10"},
            )

        app_state.active_connections += 1
        try:
            return await call_next(request)
        finally:
            app_state.active_connections -= 1


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds conservative security headers to every response."""

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "script-src 'self' 'unsafe-inline'; "
            "style-src 'self' 'unsafe-inline'; "
            "img-src 'self' data: https:; "
            "connect-src 'self'; "
            "frame-ancestors 'none';"
        )
        return response
