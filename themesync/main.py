"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from themesync.api.health import router as health_router
from themesync.api.sync import router as sync_router
from themesync.api.targets import router as targets_router
from themesync.config import Settings
from themesync.exceptions import ConfigError, SyncError
from themesync.remote.base import RemoteAssetClient
from themesync.remote.shopify import ShopifyAssetClient
from themesync.services.publish_service import Publisher, run_background_sync
from themesync.services.sync_service import AssetSyncEngine
from themesync.services.watch_service import ChangeWatcher

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("watchdog").setLevel(logging.WARNING)


def wire_services(
    app: FastAPI, settings: Settings, client: RemoteAssetClient | None = None
) -> Publisher:
    """Build the engine, remote client and publisher and attach them to app state."""
    engine = AssetSyncEngine.from_settings(settings)
    if client is None:
        client = ShopifyAssetClient.from_settings(settings)
    publisher = Publisher(
        engine, client, max_concurrent_uploads=settings.max_concurrent_uploads
    )
    app.state.engine = engine
    app.state.remote_client = client
    app.state.publisher = publisher
    app.state.watcher = None
    return publisher


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    _configure_logging(settings.debug)
    try:
        settings.validate_runtime()
        publisher = wire_services(app, settings)
    except ConfigError as exc:
        logger.critical("Refusing to start: %s", exc)
        raise
    logger.info(
        "Starting theme sync for %s (%d watched file(s))",
        settings.shop_domain,
        len(publisher.engine.watched_paths),
    )

    watcher: ChangeWatcher | None = None
    background: asyncio.Task[None] | None = None
    if settings.watch_files and settings.theme_id:
        watcher = ChangeWatcher(
            publisher.engine.watched_paths,
            debounce_seconds=settings.watch_debounce_seconds,
        )
        watcher.start()
        app.state.watcher = watcher
        background = asyncio.create_task(
            run_background_sync(watcher, publisher, settings.theme_id)
        )
        logger.info("Changes will sync to theme %s", settings.theme_id)

    yield

    if watcher is not None:
        watcher.stop()
    if background is not None:
        try:
            await asyncio.wait_for(background, timeout=settings.request_timeout_seconds)
        except TimeoutError:
            logger.warning("Background sync did not finish before shutdown; cancelling")
            background.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await background
        except Exception as exc:
            logger.error("Background sync failed during shutdown: %s", exc, exc_info=True)

    try:
        await publisher.client.aclose()
    except Exception as exc:
        logger.error("Error closing remote client: %s", exc, exc_info=True)

    logger.info("Theme sync stopped")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="Theme Sync",
        description="Mirror local Shopify theme files to a remote theme",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings

    app.include_router(health_router)
    app.include_router(targets_router)
    app.include_router(sync_router)

    # Every error body is {"error": str}

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        messages = []
        for err in exc.errors():
            loc = [str(part) for part in err.get("loc", ()) if part != "body"]
            field = ".".join(loc) or "body"
            messages.append(f"{field}: {err.get('msg', 'Invalid value')}")
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            messages,
        )
        return _error(400, "; ".join(messages))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(ConfigError)
    async def config_error_handler(request: Request, exc: ConfigError) -> JSONResponse:
        logger.error(
            "ConfigError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return _error(500, "ConfigError: server is misconfigured")

    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
        logger.error("%s in %s %s: %s", exc.tag, request.method, request.url.path, exc)
        return _error(502, exc.describe())

    @app.exception_handler(OSError)
    async def os_error_handler(request: Request, exc: OSError) -> JSONResponse:
        logger.error("OSError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return _error(500, "Storage operation failed")

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "themesync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
