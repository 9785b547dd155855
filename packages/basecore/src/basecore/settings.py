"""
Runtime settings for basecore consumers.

Values come from the environment (or a local .env file) and are cached after
the first read so modules can call get_settings() freely.
"""

import functools
import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

STORE_BACKENDS = ("memory", "redis")


class Settings(BaseSettings):
    """Environment-driven configuration."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Storage
    STORE_BACKEND: str = Field("memory", description="Data store backend: memory or redis")
    STORE_KEY_PREFIX: str = Field("interventions", description="Prefix for every Redis key")
    REDIS_URL: str = "redis://localhost:6379/0"

    # Change feeds (Redis backend)
    CHANGE_STREAM_MAX_LEN: int = Field(10000, gt=0, description="Approximate cap per change stream")
    CHANGE_FEED_BLOCK_MS: int = Field(1000, gt=0, description="XREAD block timeout per poll")

    # Result recording
    RESULT_PERSISTENCE_ENABLED: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Worker: comma separated modules that register tasks/rules on import
    HANDLER_MODULES: str = ""

    @field_validator("STORE_BACKEND")
    @classmethod
    def validate_store_backend(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in STORE_BACKENDS:
            raise ValueError(f"STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}")
        return value

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        value = value.strip().upper()
        if value not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown LOG_LEVEL: {value}")
        return value

    @property
    def handler_modules(self) -> list[str]:
        return [name.strip() for name in self.HANDLER_MODULES.split(",") if name.strip()]


@functools.lru_cache()
def get_settings() -> Settings:
    """Get settings (cached)."""
    return Settings()
