"""Health check endpoint router."""

from __future__ import annotations

import time
from typing import Literal

from fastapi import APIRouter
from pydantic import BaseModel, Field

from pairbot.session import SessionState
from pairbot.web.dependencies import Manager

router = APIRouter(tags=["health"])

_start_time = time.time()


class SessionCounts(BaseModel):
    total: int = Field(description="Sessions on disk or running")
    running: int = Field(description="Sessions with a live event task")
    connected: int = Field(description="Sessions currently connected")


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    version: str
    uptime_seconds: float
    sessions: SessionCounts


@router.get("/health", response_model=HealthResponse)
async def health_check(manager: Manager) -> HealthResponse:
    """Health check endpoint for monitoring.

    Status is ``degraded`` when sessions are running but none is connected.
    """
    from pairbot import __version__

    records = manager.registry.records()
    running = sum(1 for r in records if r.is_live)
    connected = sum(1 for r in records if r.state is SessionState.CONNECTED)

    return HealthResponse(
        status="degraded" if running and not connected else "ok",
        version=__version__,
        uptime_seconds=round(time.time() - _start_time, 2),
        sessions=SessionCounts(
            total=len(manager.list_ids()),
            running=running,
            connected=connected,
        ),
    )
