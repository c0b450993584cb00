"""Base protocol and data classes for remote asset stores."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class SyncTarget:
    """A remote destination assets are synced to (a Shopify theme)."""

    id: str
    name: str = ""
    role: str = ""


@runtime_checkable
class RemoteAssetClient(Protocol):
    """Authenticated read/write access to a remote content API.

    Implementations raise ``AuthError``, ``TransportError``, ``RemoteError``
    or ``PayloadTooLargeError`` from ``themesync.exceptions``.
    """

    async def list_targets(self) -> list[SyncTarget]:
        """Return every target the credentials can see."""
        ...

    async def write_asset(self, target: str, remote_key: str, content: bytes) -> None:
        """Write ``content`` under ``remote_key``. Writing identical content twice is a no-op."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...
