"""Health check endpoint."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from themesync.api.deps import get_engine
from themesync.services.sync_service import AssetSyncEngine

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    watched_files: int
    watching: bool


@router.get("/health", response_model=HealthResponse)
async def health_check(
    request: Request,
    engine: Annotated[AssetSyncEngine, Depends(get_engine)],
) -> HealthResponse:
    """Health check endpoint for monitoring and load balancers."""
    watcher = getattr(request.app.state, "watcher", None)
    return HealthResponse(
        status="ok",
        version=request.app.version,
        watched_files=len(engine.watched_paths),
        watching=watcher is not None and watcher.is_running,
    )
