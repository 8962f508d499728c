"""Session control API.

    POST /api/pair      {phone, session_id?}  -> {ok, code, session_id}
    POST /api/start     {session_id}          -> {ok, session_id}
    POST /api/logout    {session_id}          -> {ok}
    GET  /api/sessions                        -> {ok, sessions: [{id, state}]}

``sessionId`` is accepted as an alias of ``session_id`` in request bodies.
Errors come back as ``{ok: false, error}``: 400 for bad input, 500 when
the operation itself fails (see exception_handlers).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from pairbot.errors import SessionValidationError
from pairbot.session.validation import require_session_id
from pairbot.web.dependencies import Manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["sessions"])


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True, extra="ignore")


class PairRequest(_Request):
    phone: str | None = None
    session_id: str | None = Field(default=None, alias="sessionId")


class SessionRequest(_Request):
    session_id: str | None = Field(default=None, alias="sessionId")


class PairResponse(BaseModel):
    ok: bool = True
    code: str
    session_id: str


class StartResponse(BaseModel):
    ok: bool = True
    session_id: str


class OkResponse(BaseModel):
    ok: bool = True


class SessionItem(BaseModel):
    id: str
    state: str


class SessionListResponse(BaseModel):
    ok: bool = True
    sessions: list[SessionItem]


@router.post("/pair", response_model=PairResponse)
async def pair(manager: Manager, body: PairRequest | None = None) -> PairResponse:
    """Request a pairing code for a phone number.

    The returned code is entered on the phone under "Linked devices".
    """
    body = body or PairRequest()
    if not body.phone or not body.phone.strip():
        raise SessionValidationError("Phone required")
    code, session_id = await manager.pair(body.phone, body.session_id)
    return PairResponse(code=code, session_id=session_id)


@router.post("/start", response_model=StartResponse)
async def start(manager: Manager, body: SessionRequest | None = None) -> StartResponse:
    body = body or SessionRequest()
    await manager.start(body.session_id)
    return StartResponse(session_id=require_session_id(body.session_id))


@router.post("/logout", response_model=OkResponse)
async def logout(manager: Manager, body: SessionRequest | None = None) -> OkResponse:
    """Log the session out and delete its stored credentials."""
    body = body or SessionRequest()
    await manager.logout(body.session_id)
    return OkResponse()


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(manager: Manager) -> SessionListResponse:
    return SessionListResponse(
        sessions=[SessionItem(**item) for item in manager.list_sessions()]
    )
