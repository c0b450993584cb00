"""Shared API dependencies: settings, sync engine, remote client."""

from __future__ import annotations

from fastapi import Request

from themesync.config import Settings
from themesync.remote.base import RemoteAssetClient
from themesync.services.publish_service import Publisher
from themesync.services.sync_service import AssetSyncEngine


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_engine(request: Request) -> AssetSyncEngine:
    """Get the process-wide sync engine from app state."""
    engine: AssetSyncEngine = request.app.state.engine
    return engine


def get_remote_client(request: Request) -> RemoteAssetClient:
    """Get the remote asset client from app state."""
    client: RemoteAssetClient = request.app.state.remote_client
    return client


def get_publisher(request: Request) -> Publisher:
    """Get the publisher wired to the engine and remote client."""
    publisher: Publisher = request.app.state.publisher
    return publisher
