"""
FastAPI Dependency Injection Providers.

Dependencies:
    1. get_settings() - Loads and caches application configuration
    2. get_gateway_service() - Creates/returns the singleton GatewayService

Both are singletons: the backend registry, the cache engine and its
singleflight claim table must be shared by every request for
deduplication to work.

Usage in Route Handlers:
    from fastapi import Depends
    from tts_gateway.api.dependencies import get_gateway_service

    @router.get("/modes")
    def modes(service: GatewayService = Depends(get_gateway_service)):
        return service.list_modes()

Tests override get_gateway_service through app.dependency_overrides.
"""
from __future__ import annotations

import os
from functools import lru_cache

from tts_gateway.core.config import Settings, apply_env_overrides, load_settings
from tts_gateway.services.gateway_service import GatewayService, get_service

DEFAULT_SETTINGS_PATH = "config/settings.yaml"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and cache application settings.

    The path comes from TTS_GW_SETTINGS, falling back to
    config/settings.yaml. A missing file yields built-in defaults (every
    optional collaborator off).
    """
    path = os.getenv("TTS_GW_SETTINGS", DEFAULT_SETTINGS_PATH)
    try:
        return load_settings(path)
    except FileNotFoundError:
        if path != DEFAULT_SETTINGS_PATH:
            raise
        return Settings(raw=apply_env_overrides({}))


def get_gateway_service() -> GatewayService:
    """Get the singleton GatewayService instance."""
    return get_service(get_settings())
