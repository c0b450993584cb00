"""Publish and batch-upload orchestration shared by the HTTP API and background sync."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from themesync.services.sync_service import OutcomeStatus, UploadOutcome, batch_key_for

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Sequence
    from pathlib import Path

    from themesync.remote.base import RemoteAssetClient
    from themesync.services.sync_service import AssetSyncEngine, UploadRequest
    from themesync.services.watch_service import ChangeWatcher

logger = logging.getLogger(__name__)


@dataclass
class BatchFile:
    """One named, base64-encoded file submitted for upload."""

    name: str
    content_base64: str


class Publisher:
    """Runs engine deltas through a remote client with bounded concurrency."""

    def __init__(
        self,
        engine: AssetSyncEngine,
        client: RemoteAssetClient,
        *,
        max_concurrent_uploads: int = 4,
    ) -> None:
        self.engine = engine
        self.client = client
        self._semaphore = asyncio.Semaphore(max_concurrent_uploads)

    async def _write(self, target: str, remote_key: str, content: bytes) -> None:
        async with self._semaphore:
            await self.client.write_asset(target, remote_key, content)

    async def upload_requests(self, requests: Sequence[UploadRequest]) -> list[UploadOutcome]:
        # Different keys upload concurrently; the engine serializes same-key writes.
        return list(
            await asyncio.gather(*(self.engine.upload(req, self._write) for req in requests))
        )

    async def publish(
        self, target: str, paths: Iterable[Path] | None = None
    ) -> list[UploadOutcome]:
        """Sync watched files to ``target``, returning one outcome per file in watch order."""
        selected = list(paths) if paths is not None else self.engine.watched_paths
        outcomes: dict[Path, UploadOutcome] = {}
        contents: dict[Path, bytes] = {}

        for path in selected:
            key = self.engine.key_for_path(path) or path.name
            try:
                contents[path] = await asyncio.to_thread(path.read_bytes)
            except OSError as exc:
                logger.warning("Cannot read %s for publish: %s", path, exc)
                outcomes[path] = UploadOutcome(
                    remote_key=key,
                    status=OutcomeStatus.FAILED,
                    local_path=path,
                    error=f"ReadError: {exc.strerror or exc}",
                )

        requests = self.engine.compute_delta(target, contents)
        issued = {request.local_path for request in requests}
        # Content already being uploaded by another caller reports that upload's outcome.
        joined: dict[Path, Awaitable[UploadOutcome]] = {}
        for path, content in contents.items():
            if path in issued:
                continue
            waiting = self.engine.pending_outcome(target, path, content)
            if waiting is not None:
                joined[path] = waiting

        uploaded, shared = await asyncio.gather(
            self.upload_requests(requests), asyncio.gather(*joined.values())
        )
        for outcome in uploaded:
            if outcome.local_path is not None:
                outcomes[outcome.local_path] = outcome
        for path, outcome in zip(joined, shared, strict=True):
            outcomes[path] = outcome

        for path in contents:
            outcomes.setdefault(
                path,
                UploadOutcome(
                    remote_key=self.engine.key_for_path(path) or path.name,
                    status=OutcomeStatus.UNCHANGED,
                    local_path=path,
                ),
            )

        results = [outcomes[path] for path in selected]
        _log_summary(target, results)
        return results

    async def upload_batch(self, target: str, files: Sequence[BatchFile]) -> list[UploadOutcome]:
        """Decode and upload each file independently; one bad entry never aborts the batch."""
        results: list[UploadOutcome | None] = [None] * len(files)
        requests: list[tuple[int, UploadRequest]] = []

        for index, item in enumerate(files):
            try:
                key = batch_key_for(item.name, self.engine.default_key_prefix)
            except ValueError as exc:
                results[index] = UploadOutcome(
                    remote_key=item.name, status=OutcomeStatus.FAILED, error=f"InvalidName: {exc}"
                )
                continue
            try:
                content = base64.b64decode(item.content_base64, validate=True)
            except (binascii.Error, ValueError):
                results[index] = UploadOutcome(
                    remote_key=key,
                    status=OutcomeStatus.FAILED,
                    error="InvalidBase64: contentBase64 is not valid base64",
                )
                continue
            requests.append((index, self.engine.request_for(target, key, content)))

        uploaded = await self.upload_requests([req for _, req in requests])
        for (index, _), outcome in zip(requests, uploaded, strict=True):
            results[index] = outcome

        final = [outcome for outcome in results if outcome is not None]
        _log_summary(target, final)
        return final


def _log_summary(target: str, outcomes: Sequence[UploadOutcome]) -> None:
    failed = [o for o in outcomes if not o.success]
    uploaded = sum(1 for o in outcomes if o.status == OutcomeStatus.UPLOADED)
    logger.info(
        "Sync to %s: %d uploaded, %d failed, %d total",
        target,
        uploaded,
        len(failed),
        len(outcomes),
    )


async def _sync_changed_file(
    publisher: Publisher, target: str, requests: list[UploadRequest]
) -> None:
    for outcome in await publisher.upload_requests(requests):
        if outcome.status == OutcomeStatus.UPLOADED:
            logger.info("%s updated on theme %s", outcome.remote_key, target)
        elif outcome.status == OutcomeStatus.FAILED:
            logger.error(
                "Failed to update %s on theme %s: %s", outcome.remote_key, target, outcome.error
            )


async def run_background_sync(watcher: ChangeWatcher, publisher: Publisher, target: str) -> None:
    """Push each changed file to ``target`` until the watcher stops.

    Every event is handled in its own task so a newer change can supersede an
    upload still waiting on the same key.
    """
    tasks: set[asyncio.Task[None]] = set()
    try:
        async for event in watcher.events():
            requests = publisher.engine.compute_delta(target, {event.path: event.content})
            if not requests:
                logger.debug("%s changed but matches the last synced content", event.path)
                continue
            task = asyncio.create_task(_sync_changed_file(publisher, target, requests))
            tasks.add(task)
            task.add_done_callback(_finish_background_task(tasks))
    finally:
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


def _finish_background_task(
    tasks: set[asyncio.Task[None]],
) -> Callable[[asyncio.Task[None]], None]:
    def _done(task: asyncio.Task[None]) -> None:
        tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background sync task crashed", exc_info=task.exception())

    return _done
