"""FastAPI application factory."""

from __future__ import annotations

import asyncio
import logging
import platform
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from pairbot.config import Settings, get_settings
from pairbot.storage.file import cleanup_orphaned_temp_files
from pairbot.web.exception_handlers import register_exception_handlers
from pairbot.web.middleware import (
    GracefulShutdownMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from pairbot.web.routers.health import router as health_router
from pairbot.web.routers.pages import STATIC_DIR
from pairbot.web.routers.pages import router as pages_router
from pairbot.web.routers.sessions import router as sessions_router

if TYPE_CHECKING:
    from pairbot.session import SessionManager

logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_TIMEOUT = 10.0


class AppState:
    """Application state container for graceful shutdown."""

    def __init__(self) -> None:
        self.shutting_down = False
        self.active_connections = 0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler.

    Startup prepares the data directories and removes temp files left by
    a crash. Shutdown drains in-flight requests, then stops every session
    (without logging any of them out).
    """
    from pairbot import __version__
    from pairbot.web.dependencies import ensure_session_manager

    settings: Settings = app.state.settings
    app.state.app_state = AppState()

    logger.info(f"pairbot v{__version__} starting up")
    logger.info(f"Python: {platform.python_version()}, OS: {platform.system()} {platform.release()}")
    logger.info(f"Data directory: {settings.data_dir}")
    logger.info(f"Bridge: {settings.bridge_url}")
    if settings.debug:
        logger.warning("DEBUG MODE ENABLED - error responses include tracebacks")

    for error in settings.ensure_data_dirs():
        logger.error(error)
    removed = cleanup_orphaned_temp_files(settings.sessions_dir)
    if removed:
        logger.info(f"Removed {removed} orphaned temp files")

    manager = ensure_session_manager(app)
    logger.info(f"Session manager ready ({len(manager.list_ids())} stored sessions)")

    yield

    logger.info("Initiating graceful shutdown")
    app.state.app_state.shutting_down = True

    loop = asyncio.get_running_loop()
    deadline = loop.time() + SHUTDOWN_DRAIN_TIMEOUT
    while app.state.app_state.active_connections > 0 and loop.time() < deadline:
        await asyncio.sleep(0.2)
    if app.state.app_state.active_connections > 0:
        logger.warning(
            f"Forcing shutdown with {app.state.app_state.active_connections} active requests"
        )

    await manager.shutdown()
    logger.info("Graceful shutdown complete")


def create_app(
    *,
    debug: bool | None = None,
    settings: Settings | None = None,
    session_manager: SessionManager | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        debug: Enable debug mode (tracebacks in 500 responses). If None, uses settings.
        settings: Settings instance. If None, uses get_settings().
        session_manager: Pre-built manager (tests). If None, one is built from settings
            on first use.

    Returns:
        Configured FastAPI application instance

    Example:
        ```python
        app = create_app(settings=Settings(port=9000))
        # Run with: uvicorn pairbot.web.app:app
        ```
    """
    from pairbot import __version__

    if settings is None:
        settings = get_settings()
    effective_debug = debug if debug is not None else settings.debug

    app = FastAPI(
        title="pairbot",
        description="Multi-session chat bot control panel",
        version=__version__,
        debug=effective_debug,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.session_manager = session_manager

    register_exception_handlers(app)

    # First added = innermost; RequestID must wrap RequestLogging
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware, log_bodies=effective_debug)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(GracefulShutdownMiddleware)

    if STATIC_DIR.exists():
        app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    app.include_router(health_router)
    app.include_router(sessions_router)
    app.include_router(pages_router)

    return app


# Default app instance for uvicorn
app = create_app()
