"""Dashboard page."""

from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse

router = APIRouter(tags=["pages"])

STATIC_DIR = Path(__file__).resolve().parent.parent.parent / "static"


@router.get("/", include_in_schema=False)
async def index() -> FileResponse:
    index_file = STATIC_DIR / "index.html"
    if not index_file.is_file():
        raise HTTPException(status_code=404, detail="Dashboard not installed")
    return FileResponse(index_file)
