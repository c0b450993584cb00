"""Sync engine: key mapping, change detection, and per-key upload ordering."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from themesync.exceptions import ConfigError, SyncError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Mapping

    from themesync.config import Settings

    WriteAsset = Callable[[str, str, bytes], Awaitable[None]]

logger = logging.getLogger(__name__)

# Top-level folders of a Shopify theme; batch names already rooted in one keep it.
THEME_FOLDERS = frozenset(
    {"assets", "blocks", "config", "layout", "locales", "sections", "snippets", "templates"}
)


class UploadState(StrEnum):
    """Lifecycle of the latest upload for one ``(target, remote_key)`` pair."""

    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class OutcomeStatus(StrEnum):
    """Per-file result reported to callers."""

    UPLOADED = "uploaded"
    UNCHANGED = "unchanged"
    SUPERSEDED = "superseded"
    FAILED = "failed"


@dataclass
class AssetRecord:
    """Last confirmed remote state of a watched file."""

    local_path: Path
    remote_key: str
    content_hash: str = ""
    last_synced_at: datetime | None = None


@dataclass(frozen=True)
class UploadRequest:
    """A single versioned write of ``content`` to ``remote_key`` on ``target``."""

    target: str
    remote_key: str
    content: bytes
    content_hash: str
    version: int
    local_path: Path | None = None


@dataclass
class UploadOutcome:
    """What happened to one file in a publish or batch operation."""

    remote_key: str
    status: OutcomeStatus
    local_path: Path | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status != OutcomeStatus.FAILED


@dataclass
class _Completion:
    """Settles once the upload of one request version has an outcome."""

    done: asyncio.Event = field(default_factory=asyncio.Event)
    outcome: UploadOutcome | None = None


def hash_content(content: bytes) -> str:
    """Compute SHA-256 hash of raw content."""
    return hashlib.sha256(content).hexdigest()


def remote_key_for(
    relative_name: str,
    *,
    key_prefixes: Mapping[str, str],
    default_prefix: str,
) -> str:
    """Map a watch-relative name to its remote key: a fixed prefix by suffix plus the name."""
    suffix = PurePosixPath(relative_name).suffix.lower()
    prefix = key_prefixes.get(suffix, default_prefix)
    return f"{prefix}{relative_name}"


def build_catalog(
    sync_root: Path,
    watch_paths: Iterable[str],
    *,
    key_prefixes: Mapping[str, str],
    default_prefix: str,
) -> dict[str, Path]:
    """Expand the watch allow-list into a ``remote_key -> local path`` catalog.

    File entries map by basename; directory entries contribute their direct,
    non-hidden child files as ``dirname/child``. Directories are never walked
    recursively.

    Raises:
        ConfigError: If an entry escapes ``sync_root`` or two distinct local
            files map to the same remote key.
    """
    root = sync_root.resolve()
    catalog: dict[str, Path] = {}

    for entry in watch_paths:
        candidate = Path(os.path.normpath(root / entry))
        if not candidate.is_relative_to(root) or candidate == root:
            msg = f"Watch path {entry!r} must point inside {root}"
            raise ConfigError(msg)

        if candidate.is_dir():
            children = sorted(
                child
                for child in candidate.iterdir()
                if child.is_file() and not child.name.startswith(".")
            )
            pairs = [(child, f"{candidate.name}/{child.name}") for child in children]
        else:
            if not candidate.exists():
                logger.warning("Watched file %s does not exist yet", candidate)
            pairs = [(candidate, candidate.name)]

        for local_path, relative_name in pairs:
            key = remote_key_for(
                relative_name, key_prefixes=key_prefixes, default_prefix=default_prefix
            )
            existing = catalog.get(key)
            if existing is not None and existing != local_path:
                msg = f"Remote key {key!r} is ambiguous: {existing} and {local_path}"
                raise ConfigError(msg)
            catalog[key] = local_path

    return catalog


def batch_key_for(name: str, default_prefix: str = "assets/") -> str:
    """Map an uploaded file name to a remote key.

    Raises:
        ValueError: If the name is empty, absolute, or contains ``.``/``..`` segments.
    """
    cleaned = name.strip().replace("\\", "/")
    if not cleaned or cleaned.startswith("/"):
        msg = f"Invalid file name: {name!r}"
        raise ValueError(msg)
    parts = [part for part in cleaned.split("/") if part]
    if any(part in (".", "..") for part in parts):
        msg = f"Invalid file name: {name!r}"
        raise ValueError(msg)
    if len(parts) > 1 and parts[0] in THEME_FOLDERS:
        return "/".join(parts)
    return default_prefix + "/".join(parts)


class AssetSyncEngine:
    """Owns the per-target ``remote_key -> AssetRecord`` map and decides what to upload.

    Concurrency: safe under asyncio's single-threaded model. Records are only
    mutated synchronously inside this class; uploads to one key are serialized
    by a per-key lock and completions of superseded versions are discarded.
    """

    def __init__(
        self,
        catalog: Mapping[str, Path],
        *,
        default_key_prefix: str = "assets/",
        root: Path | None = None,
    ) -> None:
        self._catalog = dict(catalog)
        self._keys_by_path = {path: key for key, path in self._catalog.items()}
        self.default_key_prefix = default_key_prefix
        self._root = root
        self._records: dict[str, dict[str, AssetRecord]] = {}
        self._versions: dict[tuple[str, str], int] = {}
        self._pending: dict[tuple[str, str], UploadRequest] = {}
        self._states: dict[tuple[str, str], UploadState] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._lock_users: dict[tuple[str, str], int] = {}
        self._completions: dict[tuple[str, str, int], _Completion] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> AssetSyncEngine:
        catalog = build_catalog(
            settings.sync_root,
            settings.watch_paths,
            key_prefixes=settings.key_prefixes,
            default_prefix=settings.default_key_prefix,
        )
        return cls(
            catalog,
            default_key_prefix=settings.default_key_prefix,
            root=settings.sync_root.resolve(),
        )

    @property
    def catalog(self) -> dict[str, Path]:
        return dict(self._catalog)

    @property
    def watched_paths(self) -> list[Path]:
        return list(self._catalog.values())

    def key_for_path(self, path: Path) -> str | None:
        return self._keys_by_path.get(path)

    def display_name(self, path: Path) -> str:
        """Path relative to the sync root, for responses and logs."""
        if self._root is not None and path.is_relative_to(self._root):
            return path.relative_to(self._root).as_posix()
        return path.name

    def records(self, target: str) -> list[AssetRecord]:
        """Records of ``target``. Unknown targets get fresh records that are not kept."""
        records = self._records.get(target)
        if records is None:
            return [
                AssetRecord(local_path=path, remote_key=key) for key, path in self._catalog.items()
            ]
        return list(records.values())

    def state(self, target: str, remote_key: str) -> UploadState:
        return self._states.get((target, remote_key), UploadState.IDLE)

    def _records_for(self, target: str) -> dict[str, AssetRecord]:
        records = self._records.get(target)
        if records is None:
            records = {
                key: AssetRecord(local_path=path, remote_key=key)
                for key, path in self._catalog.items()
            }
            self._records[target] = records
        return records

    def _issue(
        self,
        target: str,
        remote_key: str,
        content: bytes,
        content_hash: str,
        local_path: Path | None,
    ) -> UploadRequest:
        slot = (target, remote_key)
        version = self._versions.get(slot, 0) + 1
        self._versions[slot] = version
        request = UploadRequest(
            target=target,
            remote_key=remote_key,
            content=content,
            content_hash=content_hash,
            version=version,
            local_path=local_path,
        )
        self._pending[slot] = request
        self._completions[(target, remote_key, version)] = _Completion()
        return request

    def compute_delta(self, target: str, contents: Mapping[Path, bytes]) -> list[UploadRequest]:
        """Return upload requests for files whose content differs from the latest state.

        While an upload is outstanding for a file the comparison is against that
        upload's content, not the record, so reverting to the synced content still
        produces a request. Content is passed through unmodified.
        """
        records = self._records_for(target)
        requests: list[UploadRequest] = []
        for path, content in contents.items():
            key = self._keys_by_path.get(path)
            if key is None:
                msg = f"{path} is not in the watch set"
                raise ValueError(msg)
            content_hash = hash_content(content)
            pending = self._pending.get((target, key))
            latest = pending.content_hash if pending is not None else records[key].content_hash
            if content_hash == latest:
                continue
            requests.append(self._issue(target, key, content, content_hash, path))
        return requests

    def pending_outcome(
        self, target: str, path: Path, content: bytes
    ) -> Awaitable[UploadOutcome] | None:
        """Outcome of an outstanding upload of exactly ``content`` for ``path``, if any.

        Must be called before yielding to the loop after ``compute_delta`` so the
        outstanding upload cannot settle unobserved.
        """
        key = self._keys_by_path.get(path)
        if key is None:
            return None
        pending = self._pending.get((target, key))
        if pending is None or pending.content_hash != hash_content(content):
            return None
        completion = self._completions.get((target, key, pending.version))
        if completion is None:
            return None
        return _wait_for(completion)

    def request_for(self, target: str, remote_key: str, content: bytes) -> UploadRequest:
        """Wrap ad-hoc content (not read from the watch set) into a versioned request."""
        local_path = self._catalog.get(remote_key)
        return self._issue(target, remote_key, content, hash_content(content), local_path)

    def is_current(self, request: UploadRequest) -> bool:
        return self._versions.get((request.target, request.remote_key)) == request.version

    def apply_result(self, request: UploadRequest, success: bool) -> bool:
        """Record the outcome of an upload. Returns whether the record was touched.

        Stale completions (a newer version was issued meanwhile) are discarded.
        Failures leave the record unchanged so the next delta retries the file.
        """
        if not self.is_current(request):
            logger.debug(
                "Discarding stale result for %s v%d on %s",
                request.remote_key,
                request.version,
                request.target,
            )
            return False
        slot = (request.target, request.remote_key)
        self._pending.pop(slot, None)
        if not success:
            return False
        record = self._records_for(request.target).get(request.remote_key)
        if record is None:
            return False
        record.content_hash = request.content_hash
        record.last_synced_at = datetime.now(UTC)
        return True

    async def upload(self, request: UploadRequest, write: WriteAsset) -> UploadOutcome:
        """Write one request through ``write``, serialized per ``(target, remote_key)``.

        A request superseded while waiting for the key is skipped. Remote errors
        are reported in the outcome, never retried.
        """
        slot = (request.target, request.remote_key)
        lock = self._locks.setdefault(slot, asyncio.Lock())
        self._lock_users[slot] = self._lock_users.get(slot, 0) + 1
        try:
            async with lock:
                outcome = await self._upload_locked(request, write)
        except BaseException:
            if self.is_current(request):
                self._pending.pop(slot, None)
            self._settle(request, None)
            raise
        finally:
            self._lock_users[slot] -= 1
            if not self._lock_users[slot]:
                del self._lock_users[slot]
                del self._locks[slot]
        self._settle(request, outcome)
        return outcome

    async def _upload_locked(self, request: UploadRequest, write: WriteAsset) -> UploadOutcome:
        if not self.is_current(request):
            return UploadOutcome(
                remote_key=request.remote_key,
                status=OutcomeStatus.SUPERSEDED,
                local_path=request.local_path,
            )

        slot = (request.target, request.remote_key)
        self._states[slot] = UploadState.IN_FLIGHT
        success = False
        error: str | None = None
        try:
            await write(request.target, request.remote_key, request.content)
            success = True
        except SyncError as exc:
            error = exc.describe()
            logger.warning(
                "Upload of %s to %s failed: %s", request.remote_key, request.target, error
            )
        finally:
            self._states[slot] = UploadState.SUCCEEDED if success else UploadState.FAILED
            self.apply_result(request, success)

        return UploadOutcome(
            remote_key=request.remote_key,
            status=OutcomeStatus.UPLOADED if success else OutcomeStatus.FAILED,
            local_path=request.local_path,
            error=error,
        )

    def _settle(self, request: UploadRequest, outcome: UploadOutcome | None) -> None:
        completion = self._completions.pop(
            (request.target, request.remote_key, request.version), None
        )
        if completion is None:
            return
        if outcome is None:
            # Cancelled or crashed before an outcome; waiters must not report success.
            outcome = UploadOutcome(
                remote_key=request.remote_key,
                status=OutcomeStatus.FAILED,
                local_path=request.local_path,
                error="Interrupted: upload did not complete",
            )
        completion.outcome = outcome
        completion.done.set()


async def _wait_for(completion: _Completion) -> UploadOutcome:
    await completion.done.wait()
    if completion.outcome is None:
        msg = "Upload settled without an outcome"
        raise RuntimeError(msg)
    return completion.outcome
