"""Shared test fixtures."""

from __future__ import annotations

import base64
import json
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from themesync.config import Settings
from themesync.main import create_app, wire_services
from themesync.remote.base import SyncTarget
from themesync.remote.shopify import ShopifyAssetClient

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from themesync.exceptions import SyncError

TEST_TOKEN = "shpat_test_token"
THEME_ID = "123456789"

SECTION_SOURCE = b"{% schema %}{\"name\": \"Product 3D scroll\"}{% endschema %}\n"
STYLE_SOURCE = b".product-3d-scroll { position: sticky; }\n"
SCRIPT_SOURCE = b"document.querySelectorAll('[data-3d-scroll]').forEach(init);\n"


class FakeShopify:
    """In-memory stand-in for the Shopify Admin REST API, served via ``httpx.MockTransport``."""

    def __init__(self, token: str = TEST_TOKEN) -> None:
        self.token = token
        self.themes = [
            {"id": int(THEME_ID), "name": "Dawn", "role": "main"},
            {"id": 987654321, "name": "Dawn (staging)", "role": "unpublished"},
        ]
        self.assets: dict[tuple[str, str], bytes] = {}
        self.writes: list[tuple[str, str]] = []
        self.fail_keys: dict[str, int] = {}

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        if request.headers.get("X-Shopify-Access-Token") != self.token:
            return httpx.Response(401, json={"errors": "[API] Invalid API key or access token"})

        path = request.url.path
        if request.method == "GET" and path.endswith("/themes.json"):
            return httpx.Response(200, json={"themes": self.themes})

        if request.method == "PUT" and path.endswith("/assets.json"):
            theme_id = path.rsplit("/", 2)[-2]
            asset = json.loads(request.content)["asset"]
            key = asset["key"]
            self.writes.append((theme_id, key))
            status = self.fail_keys.get(key)
            if status is not None:
                return httpx.Response(status, json={"errors": "simulated failure"})
            self.assets[(theme_id, key)] = base64.b64decode(asset["attachment"])
            return httpx.Response(200, json={"asset": {"key": key, "theme_id": int(theme_id)}})

        return httpx.Response(404, json={"errors": "Not Found"})


class RecordingClient:
    """Remote client double that records writes and raises configured errors per key."""

    def __init__(self, failures: dict[str, SyncError] | None = None) -> None:
        self.failures = failures or {}
        self.writes: list[tuple[str, str, bytes]] = []
        self.closed = False

    async def list_targets(self) -> list[SyncTarget]:
        return [SyncTarget(id=THEME_ID, name="Dawn", role="main")]

    async def write_asset(self, target: str, remote_key: str, content: bytes) -> None:
        self.writes.append((target, remote_key, content))
        error = self.failures.get(remote_key)
        if error is not None:
            raise error

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def sync_root(tmp_path: Path) -> Path:
    """A working directory holding the default watched bundle."""
    root = tmp_path.resolve() / "theme"
    root.mkdir()
    (root / "product-3d-scroll.liquid").write_bytes(SECTION_SOURCE)
    (root / "product-3d-scroll.css").write_bytes(STYLE_SOURCE)
    (root / "product-3d-scroll.js").write_bytes(SCRIPT_SOURCE)
    return root


@pytest.fixture
def test_settings(sync_root: Path) -> Settings:
    """Create test settings pointing at the temporary sync root."""
    return Settings(
        _env_file=None,
        shopify_store="test-store",
        shopify_access_token=TEST_TOKEN,
        sync_root=sync_root,
        debug=True,
    )


@pytest.fixture
def fake_shopify() -> FakeShopify:
    return FakeShopify()


@asynccontextmanager
async def create_test_client(
    settings: Settings, shopify: FakeShopify
) -> AsyncGenerator[AsyncClient]:
    """Create a test HTTP client with services wired against a fake Shopify."""
    app = create_app(settings)
    # ASGITransport does not run the lifespan, so wire the services manually.
    remote = ShopifyAssetClient.from_settings(settings, transport=shopify.transport())
    wire_services(app, settings, remote)
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        await remote.aclose()
