"""Sync API endpoints: publish the watched bundle and upload ad-hoc asset batches."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from themesync.api.deps import get_engine, get_publisher
from themesync.services.publish_service import BatchFile, Publisher
from themesync.services.sync_service import AssetSyncEngine, UploadOutcome

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sync"])


def _coerce_target_id(value: Any) -> Any:
    """Accept numeric theme ids as sent by JavaScript clients."""
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return value


TargetId = Annotated[str, BeforeValidator(_coerce_target_id)]


# ── Schemas ──────────────────────────────────────────


class PublishRequest(BaseModel):
    """Request to publish the watched bundle to a theme."""

    model_config = ConfigDict(populate_by_name=True)

    target_id: TargetId = Field(alias="targetId", min_length=1)


class BatchFileIn(BaseModel):
    """Single named file in an upload batch."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    content_base64: str = Field(alias="contentBase64")


class UploadBatchRequest(BaseModel):
    """Request to upload named binary assets to a theme."""

    model_config = ConfigDict(populate_by_name=True)

    target_id: TargetId = Field(alias="targetId", min_length=1)
    files: list[BatchFileIn]


class FileResult(BaseModel):
    """Outcome of one file."""

    file: str
    key: str
    status: str
    success: bool
    error: str | None = None


class SyncResponse(BaseModel):
    """Per-file breakdown of a publish or batch upload."""

    model_config = ConfigDict(populate_by_name=True)

    target_id: str = Field(alias="targetId")
    succeeded: int
    failed: int
    results: list[FileResult]


class AssetStatus(BaseModel):
    """Last confirmed sync state of a watched file."""

    file: str
    key: str
    content_hash: str | None
    last_synced_at: datetime | None
    state: str


class StatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    target_id: str = Field(alias="targetId")
    assets: list[AssetStatus]


def _to_response(target_id: str, results: list[FileResult]) -> SyncResponse:
    failed = sum(1 for r in results if not r.success)
    return SyncResponse(
        target_id=target_id,
        succeeded=len(results) - failed,
        failed=failed,
        results=results,
    )


def _file_result(
    engine: AssetSyncEngine, outcome: UploadOutcome, name: str | None = None
) -> FileResult:
    if name is None:
        if outcome.local_path is not None:
            name = engine.display_name(outcome.local_path)
        else:
            name = outcome.remote_key
    return FileResult(
        file=name,
        key=outcome.remote_key,
        status=str(outcome.status),
        success=outcome.success,
        error=outcome.error,
    )


# ── Endpoints ────────────────────────────────────────


@router.post("/publish", response_model=SyncResponse)
async def publish(
    body: PublishRequest,
    publisher: Annotated[Publisher, Depends(get_publisher)],
    engine: Annotated[AssetSyncEngine, Depends(get_engine)],
) -> SyncResponse:
    """Upload every watched file whose content changed since the last successful sync.

    Always answers 200 with one result per watched file; partial failure is
    reported per file, never masked.
    """
    outcomes = await publisher.publish(body.target_id)
    return _to_response(body.target_id, [_file_result(engine, o) for o in outcomes])


@router.post("/upload-batch", response_model=SyncResponse)
async def upload_batch(
    body: UploadBatchRequest,
    publisher: Annotated[Publisher, Depends(get_publisher)],
    engine: Annotated[AssetSyncEngine, Depends(get_engine)],
) -> SyncResponse:
    """Decode and upload each file as an independent request."""
    files = [BatchFile(name=f.name, content_base64=f.content_base64) for f in body.files]
    outcomes = await publisher.upload_batch(body.target_id, files)
    results = [
        _file_result(engine, outcome, name=item.name)
        for item, outcome in zip(files, outcomes, strict=True)
    ]
    return _to_response(body.target_id, results)


@router.get("/status", response_model=StatusResponse)
async def sync_status(
    engine: Annotated[AssetSyncEngine, Depends(get_engine)],
    target_id: Annotated[str, Query(alias="targetId", min_length=1)],
) -> StatusResponse:
    """Report the last confirmed state of every watched file for a theme."""
    assets = [
        AssetStatus(
            file=engine.display_name(record.local_path),
            key=record.remote_key,
            content_hash=record.content_hash or None,
            last_synced_at=record.last_synced_at,
            state=str(engine.state(target_id, record.remote_key)),
        )
        for record in engine.records(target_id)
    ]
    return StatusResponse(target_id=target_id, assets=assets)
