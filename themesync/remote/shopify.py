"""Shopify theme asset client using the Admin REST API."""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING, Any

import httpx

from themesync.exceptions import (
    AuthError,
    PayloadTooLargeError,
    RemoteError,
    TransportError,
)
from themesync.remote.base import SyncTarget

if TYPE_CHECKING:
    from types import TracebackType

    from themesync.config import Settings

logger = logging.getLogger(__name__)

_BODY_PREVIEW_CHARS = 500


class ShopifyAssetClient:
    """Issue theme listing and asset writes against one store.

    Args:
        base_url: ``https://<shop>/admin/api/<version>``.
        access_token: Admin API token with the ``write_themes`` scope.
        timeout: Per-request timeout in seconds.
        max_asset_bytes: Largest payload accepted before sending.
        transport: Optional httpx transport (tests inject ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        *,
        timeout: float = 10.0,
        max_asset_bytes: int = 20 * 1024 * 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._max_asset_bytes = max_asset_bytes
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "X-Shopify-Access-Token": access_token,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> ShopifyAssetClient:
        return cls(
            settings.admin_api_url,
            settings.shopify_access_token,
            timeout=settings.request_timeout_seconds,
            max_asset_bytes=settings.max_asset_bytes,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> ShopifyAssetClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def list_targets(self) -> list[SyncTarget]:
        data = await self._request("GET", "/themes.json")
        themes = data.get("themes")
        if not isinstance(themes, list):
            msg = "Theme list response is missing 'themes'"
            raise RemoteError(msg, status_code=200, body=str(data)[:_BODY_PREVIEW_CHARS])
        targets: list[SyncTarget] = []
        for theme in themes:
            if not isinstance(theme, dict) or theme.get("id") is None:
                continue
            targets.append(
                SyncTarget(
                    id=str(theme["id"]),
                    name=str(theme.get("name") or ""),
                    role=str(theme.get("role") or ""),
                )
            )
        return targets

    async def write_asset(self, target: str, remote_key: str, content: bytes) -> None:
        if len(content) > self._max_asset_bytes:
            msg = (
                f"{remote_key} is {len(content)} bytes, "
                f"exceeding the {self._max_asset_bytes} byte limit"
            )
            raise PayloadTooLargeError(msg)
        payload = {
            "asset": {
                "key": remote_key,
                "attachment": base64.b64encode(content).decode("ascii"),
            }
        }
        await self._request("PUT", f"/themes/{target}/assets.json", json=payload)

    async def _request(
        self, method: str, endpoint: str, *, json: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        try:
            resp = await self._client.request(method, endpoint, json=json)
        except httpx.TimeoutException as exc:
            msg = f"Timed out on {method} {endpoint}"
            raise TransportError(msg) from exc
        except httpx.TransportError as exc:
            msg = f"Network error on {method} {endpoint}: {exc}"
            raise TransportError(msg) from exc
        except httpx.HTTPError as exc:
            # Redirect loops, undecodable bodies and other protocol-level failures.
            msg = f"HTTP error on {method} {endpoint}: {type(exc).__name__}: {exc}"
            raise TransportError(msg) from exc

        if resp.status_code in (401, 403):
            msg = f"Shopify rejected credentials ({resp.status_code}) on {endpoint}"
            raise AuthError(msg)
        if resp.status_code == 413:
            msg = f"Shopify rejected payload as too large on {endpoint}"
            raise PayloadTooLargeError(msg)
        if not resp.is_success:
            body = resp.text[:_BODY_PREVIEW_CHARS]
            logger.warning(
                "Shopify API error %d on %s %s: %s", resp.status_code, method, endpoint, body
            )
            msg = f"Shopify API error {resp.status_code} on {endpoint}: {body}"
            raise RemoteError(msg, status_code=resp.status_code, body=body)

        try:
            data = resp.json()
        except ValueError as exc:
            msg = f"Invalid JSON from Shopify on {endpoint}"
            raise RemoteError(
                msg, status_code=resp.status_code, body=resp.text[:_BODY_PREVIEW_CHARS]
            ) from exc
        if not isinstance(data, dict):
            msg = f"Unexpected response shape from Shopify on {endpoint}"
            raise RemoteError(
                msg, status_code=resp.status_code, body=str(data)[:_BODY_PREVIEW_CHARS]
            )
        return data
