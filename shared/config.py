"""
Shared configuration management for the Offline Cache Gateway.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_STATIC_ASSETS = [
    "/",
    "/index.html",
    "/offline.html",
    "/icons/icon-192x192.png",
    "/icons/icon-512x512.png",
    "/manifest.json",
]


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="CACHE_GW_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Cache storage
    redis_url: str = Field(default="redis://localhost:6379/0")
    cache_backend: str = Field(default="redis")
    cache_key_prefix: str = Field(default="cache_gw")

    # Upstream web app
    upstream_url: str = Field(default="http://localhost:5000")
    upstream_timeout: Optional[float] = Field(default=None)

    # Cache policy
    cache_version: str = Field(default="morouna-v1.0.1")
    api_cache_max_entries: int = Field(default=50)
    dynamic_cache_max_entries: int = Field(default=100)
    static_assets: List[str] = Field(default_factory=lambda: list(DEFAULT_STATIC_ASSETS))
    offline_page: str = Field(default="/offline.html")
    api_path_prefix: str = Field(default="/api/")
    icons_path_prefix: str = Field(default="/icons/")
    manifest_path: str = Field(default="/manifest.json")

    # Lifecycle
    skip_waiting_on_install: bool = Field(default=True)
    background_sync_enabled: bool = Field(default=True)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
