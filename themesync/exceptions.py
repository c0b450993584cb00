"""Sync error taxonomy.

Convention:
- ``ConfigError`` is fatal and raised only during startup (missing credentials,
  ambiguous key mapping). It never reaches clients in detail.
- ``AuthError``, ``TransportError``, ``RemoteError`` and ``PayloadTooLargeError``
  describe the outcome of a single remote call. They are reported per file in
  batch operations and mapped to HTTP 502 on single-call endpoints.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every error raised by the sync service."""

    @property
    def tag(self) -> str:
        """Taxonomy tag exposed to clients, e.g. ``"AuthError"``."""
        return type(self).__name__

    def describe(self) -> str:
        return f"{self.tag}: {self}"


class ConfigError(SyncError):
    """Invalid or missing configuration detected at startup."""


class AuthError(SyncError):
    """The remote API rejected our credentials."""


class TransportError(SyncError):
    """Network failure or timeout talking to the remote API. Safe to retry on next sync."""


class RemoteError(SyncError):
    """Non-2xx response from the remote API."""

    def __init__(self, message: str, *, status_code: int, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PayloadTooLargeError(SyncError):
    """Content exceeds the remote size limit. Never retried as-is."""
