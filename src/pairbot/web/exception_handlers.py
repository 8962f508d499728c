"""Exception handlers mapping errors onto the ``{ok: false, error}`` contract."""

from __future__ import annotations

import logging
import traceback
from typing import TYPE_CHECKING

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pairbot.errors import PairbotError, SessionValidationError

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)


def _get_error_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def error_response(status_code: int, error: str, **extra: object) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": error, **extra})


async def session_validation_handler(request: Request, exc: Exception) -> JSONResponse:
    """Bad caller input (missing session id, malformed phone) -> 400."""
    logger.info(f"Rejected {request.method} {request.url.path}: {exc}")
    return error_response(status.HTTP_400_BAD_REQUEST, str(exc))


async def pairbot_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Failed control operation -> 500 with the failure message."""
    logger.warning(
        f"{request.method} {request.url.path} failed "
        f"(request_id={_get_error_id(request)}): {type(exc).__name__}: {exc}"
    )
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))


async def validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Malformed request body -> 400 with the first validation message."""
    if isinstance(exc, RequestValidationError) and exc.errors():
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request body"
    logger.info(f"Validation error on {request.url.path}: {message}")
    return error_response(status.HTTP_400_BAD_REQUEST, message)


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, StarletteHTTPException):
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unhandled exceptions -> 500; details only in debug mode."""
    error_id = _get_error_id(request)
    logger.exception(
        f"Unhandled exception in {request.method} {request.url.path} (request_id={error_id}): {exc}"
    )

    settings = getattr(request.app.state, "settings", None)
    if settings is not None and settings.debug:
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f"{type(exc).__name__}: {exc}",
            request_id=error_id,
            traceback=traceback.format_exc().split("\n"),
        )
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An internal error occurred. Please try again later.",
        request_id=error_id,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(SessionValidationError, session_validation_handler)
    app.add_exception_handler(PairbotError, pairbot_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
