# config.py

"""Application configuration utilities.

Values are primarily loaded from ``config.json`` and may be overridden by
environment variables. The :func:`get_settings` helper merges the two sources
and caches the result.
"""

from __future__ import annotations

import json
import os
from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LiveUpdatesBackend(str, Enum):
    """Select where live order updates are broadcast.

    ``MEMORY`` keeps subscribers in-process, which is what tests and single
    worker deployments use. ``REDIS`` publishes to Redis channels so that every
    worker's socket server sees the event.
    """

    MEMORY = "memory"
    REDIS = "redis"


class Settings(BaseSettings):
    """Application settings merged from JSON and environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./wawa.db"
    redis_url: str = "redis://localhost:6379/0"
    live_updates_backend: LiveUpdatesBackend = LiveUpdatesBackend.MEMORY
    monnify_secret_key: str = ""
    paystack_secret_key: str = ""
    points_conversion_rate: int = Field(default=100, ge=1, le=1000)
    stock_floor: int = 0
    reward_code_attempts: int = Field(default=5, ge=1)
    reward_code_prefix: str = "RWD"
    order_number_prefix: str = "WG"
    payment_reference_prefix: str = "WAWA"
    transition_retries: int = Field(default=3, ge=1)
    log_level: str = "INFO"
    audit_retention_days: int = 90


# Cached singleton to avoid repeated file reads
@lru_cache
def get_settings() -> Settings:
    """Return merged settings with environment variable precedence.

    The configuration is read from ``config.json`` located alongside this file
    and fed into :class:`Settings`. Environment variables override any values
    from the JSON file. A missing file simply means every key falls back to its
    default.
    """

    config_path = Path(__file__).with_name("config.json")
    data = json.loads(config_path.read_text()) if config_path.exists() else {}
    env_override = {
        k.lower(): v
        for k, v in os.environ.items()
        if k.lower() in Settings.model_fields
    }
    merged = {**data, **env_override}
    # Environment variables override values from the JSON file.
    return Settings(**merged)
