"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from themesync.exceptions import ConfigError

_MYSHOPIFY_SUFFIX = ".myshopify.com"


class Settings(BaseSettings):
    """Theme sync service settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Shopify
    shopify_store: str = ""
    shopify_access_token: str = ""
    api_version: str = "2024-04"
    request_timeout_seconds: float = 10.0
    max_asset_bytes: int = Field(default=20 * 1024 * 1024, ge=1)

    # Background sync
    theme_id: str | None = None
    watch_files: bool = False
    watch_debounce_seconds: float = Field(default=0.1, ge=0)

    # Watched bundle
    sync_root: Path = Path(".")
    watch_paths: list[str] = Field(
        default_factory=lambda: [
            "product-3d-scroll.liquid",
            "product-3d-scroll.css",
            "product-3d-scroll.js",
        ]
    )
    key_prefixes: dict[str, str] = Field(default_factory=lambda: {".liquid": "sections/"})
    default_key_prefix: str = "assets/"
    max_concurrent_uploads: int = Field(default=4, ge=1)

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1, le=65535)
    debug: bool = False

    @property
    def shop_domain(self) -> str:
        """Full ``*.myshopify.com`` host for the configured store."""
        store = self.shopify_store.strip().lower()
        store = store.removeprefix("https://").removeprefix("http://").rstrip("/")
        if "." not in store:
            store = f"{store}{_MYSHOPIFY_SUFFIX}"
        return store

    @property
    def admin_api_url(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self.api_version}"

    def validate_runtime(self) -> None:
        """Fail fast on configuration the service cannot run with."""
        violations: list[str] = []
        if not self.shopify_store.strip():
            violations.append("SHOPIFY_STORE must be set")
        if not self.shopify_access_token.strip():
            violations.append("SHOPIFY_ACCESS_TOKEN must be set")
        if not self.api_version.strip():
            violations.append("API_VERSION must not be empty")
        if self.request_timeout_seconds <= 0:
            violations.append("REQUEST_TIMEOUT_SECONDS must be positive")
        if self.watch_files and not (self.theme_id and self.theme_id.strip()):
            violations.append("THEME_ID is required when WATCH_FILES=true")

        if violations:
            joined = "; ".join(violations)
            msg = f"Invalid configuration: {joined}"
            raise ConfigError(msg)
