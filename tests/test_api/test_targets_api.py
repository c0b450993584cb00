"""Tests for target listing, health and error rendering."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from tests.conftest import RecordingClient, create_test_client
from themesync.exceptions import ConfigError, TransportError
from themesync.main import create_app, lifespan, wire_services
from themesync.remote.base import SyncTarget

if TYPE_CHECKING:
    from tests.conftest import FakeShopify
    from themesync.config import Settings


class TestTargets:
    @pytest.mark.asyncio
    async def test_lists_themes(self, test_settings: Settings, fake_shopify: FakeShopify) -> None:
        async with create_test_client(test_settings, fake_shopify) as client:
            resp = await client.get("/targets")

        assert resp.status_code == 200
        assert resp.json() == [
            {"id": "123456789", "name": "Dawn", "role": "main"},
            {"id": "987654321", "name": "Dawn (staging)", "role": "unpublished"},
        ]

    @pytest.mark.asyncio
    async def test_rejected_credentials_are_502(
        self, test_settings: Settings, fake_shopify: FakeShopify
    ) -> None:
        fake_shopify.token = "rotated"
        async with create_test_client(test_settings, fake_shopify) as client:
            resp = await client.get("/targets")

        assert resp.status_code == 502
        assert resp.json() == {
            "error": "AuthError: Shopify rejected credentials (401) on /themes.json"
        }

    @pytest.mark.asyncio
    async def test_unreachable_store_is_502(self, test_settings: Settings) -> None:
        class Unreachable(RecordingClient):
            async def list_targets(self) -> list[SyncTarget]:
                raise TransportError("Timed out on GET /themes.json")

        app = create_app(test_settings)
        wire_services(app, test_settings, Unreachable())
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/targets")

        assert resp.status_code == 502
        assert resp.json()["error"] == "TransportError: Timed out on GET /themes.json"


class TestHealth:
    @pytest.mark.asyncio
    async def test_reports_watch_state(
        self, test_settings: Settings, fake_shopify: FakeShopify
    ) -> None:
        async with create_test_client(test_settings, fake_shopify) as client:
            resp = await client.get("/health")

        assert resp.status_code == 200
        assert resp.json() == {
            "status": "ok",
            "version": "0.1.0",
            "watched_files": 3,
            "watching": False,
        }

    @pytest.mark.asyncio
    async def test_unknown_route_uses_error_body(
        self, test_settings: Settings, fake_shopify: FakeShopify
    ) -> None:
        async with create_test_client(test_settings, fake_shopify) as client:
            resp = await client.get("/nope")

        assert resp.status_code == 404
        assert resp.json() == {"error": "Not Found"}


class TestLifespan:
    @pytest.mark.asyncio
    async def test_missing_credentials_refuse_to_start(self, test_settings: Settings) -> None:
        settings = test_settings.model_copy(update={"shopify_access_token": ""})
        app = create_app(settings)

        with pytest.raises(ConfigError, match="SHOPIFY_ACCESS_TOKEN"):
            async with lifespan(app):
                pass

    @pytest.mark.asyncio
    async def test_starts_and_stops_background_sync(self, test_settings: Settings) -> None:
        settings = test_settings.model_copy(update={"watch_files": True, "theme_id": "42"})
        app = create_app(settings)

        async with lifespan(app):
            assert app.state.watcher is not None
            assert app.state.watcher.is_running
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                resp = await client.get("/health")
            assert resp.json()["watching"] is True

        assert not app.state.watcher.is_running

    @pytest.mark.asyncio
    async def test_closes_remote_client_on_shutdown(self, test_settings: Settings) -> None:
        app = create_app(test_settings)

        async with lifespan(app):
            remote = app.state.remote_client
            assert isinstance(remote._client, httpx.AsyncClient)

        assert remote._client.is_closed
