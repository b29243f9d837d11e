"""Application configuration settings."""
from __future__ import annotations

import os
from functools import lru_cache

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "staging" | "prod"
ENV = os.getenv("PAYSYNC_ENV", "dev").lower()

# Background sweeps of stale pending keys (optional)
SCHEDULER_ENABLED = os.getenv("PAYSYNC_SCHEDULER_ENABLED", "0") in {
    "1",
    "true",
    "yes",
    "True",
    "YES",
}


class Settings(BaseSettings):
    """Environment configuration for the payment sync service."""

    app_env: str = ENV
    database_url: str = "sqlite:///paysync.db"
    ALLOW_DB_CREATE_ALL: bool = False

    # --- Platform backend ------------------------------------------------
    BACKEND_API_BASE_URL: str = "http://localhost:3001"
    BACKEND_API_TOKEN: str | None = None
    BACKEND_TIMEOUT_SECONDS: float = 15.0
    BACKEND_RECONCILE_PATH: str = "/admin/oversight/reconcile-safe"

    # --- Payment polling -------------------------------------------------
    POLL_MAX_TRIES: int = 200
    POLL_INTERVAL_SECONDS: float = 3.0
    RECONCILE_SETTLE_SECONDS: float = 1.0
    PENDING_MAX_AGE_SECONDS: float = 300.0
    PENDING_SWEEP_INTERVAL_SECONDS: int = 60
    BID_CACHE_TTL_SECONDS: float = 3.0
    SAFE_MARKER_SNIFF_ENABLED: bool = True
    SAFE_TX_CHECK_ENABLED: bool = True
    RESUME_PENDING_ON_STARTUP: bool = True
    SCHEDULER_ENABLED: bool = SCHEDULER_ENABLED
    LOG_LEVEL: str = "INFO"

    # --- HTTP surface ----------------------------------------------------
    ADMIN_API_KEY: str | None = Field(
        default=None,
        validation_alias=AliasChoices("ADMIN_API_KEY", "API_KEY"),
    )
    CORS_ALLOW_ORIGINS: list[str] = [
        "http://localhost:3000",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("BACKEND_API_BASE_URL")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("BACKEND_API_TOKEN", "ADMIN_API_KEY")
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        """Normalise empty secrets to ``None`` for easier validation."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("POLL_MAX_TRIES", "PENDING_SWEEP_INTERVAL_SECONDS")
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator(
        "POLL_INTERVAL_SECONDS",
        "RECONCILE_SETTLE_SECONDS",
        "PENDING_MAX_AGE_SECONDS",
        "BID_CACHE_TTL_SECONDS",
        "BACKEND_TIMEOUT_SECONDS",
    )
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must be >= 0")
        return value


class AppInfo(BaseModel):
    name: str = "paysync"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "SCHEDULER_ENABLED",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
