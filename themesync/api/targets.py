"""Remote target listing endpoint."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from themesync.api.deps import get_remote_client
from themesync.remote.base import RemoteAssetClient

router = APIRouter(tags=["targets"])


class TargetResponse(BaseModel):
    """A theme assets can be synced to."""

    id: str
    name: str
    role: str


@router.get("/targets", response_model=list[TargetResponse])
async def list_targets(
    client: Annotated[RemoteAssetClient, Depends(get_remote_client)],
) -> list[TargetResponse]:
    """List themes of the configured store.

    Remote failures propagate as ``SyncError`` and are rendered as 502 by the
    application's exception handlers.
    """
    targets = await client.list_targets()
    return [TargetResponse(id=t.id, name=t.name, role=t.role) for t in targets]
