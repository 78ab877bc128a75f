"""
Runtime configuration loaded from environment variables.
"""
from __future__ import annotations

import os
from dataclasses import dataclass


CACHE_EXPIRATION_SECONDS = 60 * 60  # 1 hour
DEFAULT_THUMB_WIDTH = 200


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, read once at startup."""
    store_backend: str = "redis"
    store_url: str = "redis://localhost:6379"
    ttl_seconds: int = CACHE_EXPIRATION_SECONDS
    default_width: int = DEFAULT_THUMB_WIDTH
    memory_max_items: int = 1000
    source_backend: str = "local"
    source_root: str = ""
    single_flight: bool = False
    jpeg_quality: int = 85


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    store_url = (
        os.environ.get("VALKEY_URL")
        or os.environ.get("REDIS_URL")
        or "redis://localhost:6379"
    )
    return Settings(
        store_backend=os.environ.get("THUMBCACHE_STORE", "redis").lower(),
        store_url=store_url,
        ttl_seconds=_env_int("THUMBCACHE_TTL_SECONDS", CACHE_EXPIRATION_SECONDS),
        default_width=_env_int("THUMBCACHE_DEFAULT_WIDTH", DEFAULT_THUMB_WIDTH),
        memory_max_items=_env_int("THUMBCACHE_MEMORY_MAX_ITEMS", 1000),
        source_backend=os.environ.get("THUMBCACHE_SOURCE", "local").lower(),
        source_root=os.environ.get("THUMBCACHE_SOURCE_ROOT", ""),
        single_flight=_env_bool("THUMBCACHE_SINGLE_FLIGHT"),
        jpeg_quality=_env_int("THUMBCACHE_JPEG_QUALITY", 85),
    )
