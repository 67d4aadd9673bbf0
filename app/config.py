"""
Frinder Ledger — Application Configuration

Loads all configuration from environment variables (and an optional .env file)
using Pydantic Settings.  A cached ``get_settings()`` helper is provided so that
FastAPI dependency-injection (and any other call-site) always receives the same
validated instance without re-parsing the environment on every request.

``RATE_LIMITS`` can be tuned without a code change by exporting a JSON object.
Overrides are merged onto ``DEFAULT_RATE_LIMITS`` per action and per key, so
the example below only raises the swipe ceiling; every other action (and the
swipe window) keeps its default::

    RATE_LIMITS='{"swipe": {"max_count": 50}}'
"""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, Dict

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_MINUTE_MS = 60 * 1000
_HOUR_MS = 60 * _MINUTE_MS

DEFAULT_RATE_LIMITS: Dict[str, Dict[str, int]] = {
    "swipe": {"window_ms": _MINUTE_MS, "max_count": 100},
    "superlike": {"window_ms": _HOUR_MS, "max_count": 10},
    "message": {"window_ms": _MINUTE_MS, "max_count": 60},
    "profileUpdate": {"window_ms": _MINUTE_MS, "max_count": 10},
    "imageUpload": {"window_ms": _MINUTE_MS, "max_count": 20},
    "matchRequest": {"window_ms": _MINUTE_MS, "max_count": 50},
    "groupCreate": {"window_ms": _HOUR_MS, "max_count": 5},
    "api": {"window_ms": _MINUTE_MS, "max_count": 200},
    "passwordReset": {"window_ms": _HOUR_MS, "max_count": 3},
    "passwordChange": {"window_ms": _HOUR_MS, "max_count": 3},
    "report": {"window_ms": _HOUR_MS, "max_count": 10},
}


class Settings(BaseSettings):
    """Central configuration for the Frinder interaction ledger."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Database
    # ------------------------------------------------------------------ #
    DATABASE_URL: str = "sqlite+aiosqlite:///./frinder_ledger.db"

    # ------------------------------------------------------------------ #
    # Redis – shared rate-limit store (empty = process-local counters)
    # ------------------------------------------------------------------ #
    REDIS_URL: str = ""

    # ------------------------------------------------------------------ #
    # Rate limiting: action -> {window_ms, max_count}
    # ------------------------------------------------------------------ #
    RATE_LIMITS: Dict[str, Dict[str, int]] = {
        action: dict(rule) for action, rule in DEFAULT_RATE_LIMITS.items()
    }

    # ------------------------------------------------------------------ #
    # Discovery
    # ------------------------------------------------------------------ #
    FEED_FETCH_LIMIT: int = 100  # rows pulled before ranking

    # ------------------------------------------------------------------ #
    # Credits & subscriptions
    # ------------------------------------------------------------------ #
    FREE_SUPER_LIKE_INTERVAL_HOURS: int = 24
    PRO_SUPER_LIKES_PER_MONTH: int = 15
    PRO_SUPER_LIKE_RESET_DAYS: int = 30
    SWIPES_PER_AD: int = 20
    SWIPE_COUNT_RESET_HOURS: int = 24
    SUPERLIKE_REQUIRES_CREDIT: bool = False

    # ------------------------------------------------------------------ #
    # External collaborators
    # ------------------------------------------------------------------ #
    NOTIFICATION_WEBHOOK_URL: str = ""
    NOTIFICATION_TIMEOUT_SECONDS: float = 5.0
    BILLING_WEBHOOK_SECRET: str = ""

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ------------------------------------------------------------------ #
    # CORS
    # ------------------------------------------------------------------ #
    ALLOWED_ORIGINS: str = "*"

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def allowed_origins_list(self) -> list[str]:
        """Return ALLOWED_ORIGINS as a list split on commas."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @field_validator("RATE_LIMITS", mode="before")
    @classmethod
    def _merge_onto_defaults(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = json.loads(v)
        if not isinstance(v, dict):
            return v
        merged = {action: dict(rule) for action, rule in DEFAULT_RATE_LIMITS.items()}
        for action, cfg in v.items():
            if isinstance(cfg, dict):
                merged[action] = {**merged.get(action, {}), **cfg}
            else:
                merged[action] = cfg
        return merged

    @field_validator("RATE_LIMITS")
    @classmethod
    def _limits_must_be_positive(
        cls, v: Dict[str, Dict[str, int]]
    ) -> Dict[str, Dict[str, int]]:
        for action, cfg in v.items():
            missing = {"window_ms", "max_count"} - set(cfg)
            if missing:
                raise ValueError(
                    f"Rate limit {action!r} is missing {sorted(missing)}"
                )
            if cfg["window_ms"] <= 0 or cfg["max_count"] <= 0:
                raise ValueError(
                    f"Rate limit {action!r} must have positive window_ms and max_count"
                )
        return v

    @field_validator(
        "FEED_FETCH_LIMIT",
        "FREE_SUPER_LIKE_INTERVAL_HOURS",
        "PRO_SUPER_LIKE_RESET_DAYS",
        "SWIPES_PER_AD",
        "SWIPE_COUNT_RESET_HOURS",
    )
    @classmethod
    def _must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Value must be positive, got {v}")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached, validated ``Settings`` instance.

    Using ``@lru_cache`` guarantees the .env file is read and validated
    exactly once per process lifetime.  Import this function anywhere you
    need access to configuration::

        from app.config import get_settings
        settings = get_settings()
    """
    return Settings()
