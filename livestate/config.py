from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import STATE_KEY

DEFAULT_REDIS_URL = "redis://localhost:6379"


class LiveStateSettings(BaseSettings):
    """Service configuration read from the environment (and an optional .env file)."""

    model_config = SettingsConfigDict(
        env_prefix="LIVESTATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    redis_url: str = Field(default=DEFAULT_REDIS_URL, validation_alias="REDIS_URL")
    backend: Literal["redis", "memory"] = "redis"
    state_key: str = STATE_KEY
    keepalive_interval: float = Field(default=30.0, gt=0)
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"
