"""Configuration management using pydantic-settings."""
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings


MEBIBYTE = 1024 * 1024


class Settings(BaseSettings):
    """Data-access layer settings loaded from environment variables."""

    # Upstream dashboard API
    api_base_url: str = "http://localhost:3001/api"
    request_timeout_seconds: float = 30.0
    transport_retry_attempts: int = 3

    # Cache sizing (bytes, as estimated by the size estimator)
    memory_cache_max_bytes: int = 50 * MEBIBYTE
    persistent_cache_max_bytes: int = 100 * MEBIBYTE

    # Cache lifetimes (seconds)
    default_ttl_seconds: float = 5 * 60
    persistent_ttl_seconds: float = 24 * 60 * 60
    promotion_ttl_seconds: float = 5 * 60
    stale_ratio: float = 0.8
    sweep_interval_seconds: float = 10 * 60

    # Share of persistent entries dropped when the backing store is full
    quota_eviction_ratio: float = 0.5

    # Backing key-value store
    storage_backend: Literal["sqlite", "memory"] = "sqlite"
    storage_path: Path = Path("./data/teampulse.db")
    storage_quota_bytes: int = 10 * MEBIBYTE
    cache_namespace: str = "teampulse_cache"
    offline_queue_key: str = "teampulse_offline_queue"

    # Background work (revalidation, queue drains, syncs)
    background_workers: int = 4

    log_level: str = "INFO"

    class Config:
        env_prefix = "TEAMPULSE_"
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
