"""Dependency injection helpers for FastAPI routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, FastAPI, Request

from pairbot.session import SessionManager


def ensure_session_manager(app: FastAPI) -> SessionManager:
    """Get or create the application's SessionManager.

    The manager lives on ``app.state`` so test apps can inject their own
    (wired with fake connections) through create_app(session_manager=...).
    """
    manager: SessionManager | None = getattr(app.state, "session_manager", None)
    if manager is None:
        manager = SessionManager.from_settings(app.state.settings)
        app.state.session_manager = manager
    return manager


def get_session_manager(request: Request) -> SessionManager:
    return ensure_session_manager(request.app)


Manager = Annotated[SessionManager, Depends(get_session_manager)]
