"""
Centralized settings for the replyflow engine.

All fields can be set via ``REPLYFLOW_*`` environment variables (e.g.
``REPLYFLOW_REDIS_URL=redis://localhost:6379/0``) or a ``.env`` file.
Platform quota ceilings and recommended safety limits are *not* settings;
they are version-controlled constants in
:mod:`replyflow.orchestration.safety`.

Tags:
    configuration, settings, pydantic, replyflow

Doc-Types:
    api-reference
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ReplyflowSettings(BaseSettings):
    """Engine configuration.

    Fields
    ──────
    database_url              : SQLAlchemy URL for the durable store
    database_echo             : Log all SQL (development only)
    redis_url                 : Ephemeral store; empty → in-process store
    graph_api_base_url        : External messaging API root
    graph_api_timeout_seconds : Per-request timeout for the adapter
    ephemeral_ttl_seconds     : Expiry of the daily ephemeral counters
    burst_window_minutes      : Default window for burst detection
    log_level / log_json      : structlog configuration
    """

    model_config = SettingsConfigDict(
        env_prefix="REPLYFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Durable store ────────────────────────────────────────────
    database_url: str = Field(default="sqlite:///replyflow.db")
    database_echo: bool = False

    # ── Ephemeral store ──────────────────────────────────────────
    redis_url: str = Field(default="", description="Empty string selects the in-memory store")
    ephemeral_ttl_seconds: int = Field(default=2 * 24 * 60 * 60, gt=0)
    burst_window_minutes: int = Field(default=5, gt=0)

    # ── External API ─────────────────────────────────────────────
    graph_api_base_url: str = "https://graph.instagram.com"
    graph_api_timeout_seconds: float = Field(default=15.0, gt=0)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value}")
        return level

    @property
    def uses_redis(self) -> bool:
        """True when the ephemeral store should be Redis."""
        return bool(self.redis_url)


@lru_cache(maxsize=1)
def get_settings() -> ReplyflowSettings:
    """Return the process-wide settings (cached)."""
    return ReplyflowSettings()
