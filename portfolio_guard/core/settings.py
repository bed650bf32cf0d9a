# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Application Settings

Configuration management using pydantic-settings.
Supports environment variables and .env files.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Sentinel daily limit for the UNLIMITED tier; keeps limit arithmetic total.
UNLIMITED_DAILY_LIMIT = 999_999

INSECURE_ADMIN_TOKENS = {
    "change_me_in_production",
    "changeme",
    "admin",
    "secret",
    "password",
}


class StoreSettings(BaseSettings):
    """Usage store backend selection."""

    model_config = SettingsConfigDict(env_prefix="STORE_")

    backend: str = Field(default="memory", description="memory or redis")
    key_prefix: str = Field(default="pguard:")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in {"memory", "redis"}:
            raise ValueError(f"Unknown store backend '{v}' (expected memory or redis)")
        return v


class RedisSettings(BaseSettings):
    """Redis configuration."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    max_connections: int = Field(default=50, ge=1, le=500)


class RateLimitSettings(BaseSettings):
    """Fixed-window rate limiting."""

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_")

    window_seconds: int = Field(default=24 * 60 * 60, ge=1)
    default_daily_limit: int = Field(default=50, ge=1)
    log_retention_days: int = Field(default=30, ge=1)
    cleanup_interval_seconds: int = Field(default=60 * 60, ge=10)


class SecuritySettings(BaseSettings):
    """Abuse detection, blacklist and admin access."""

    model_config = SettingsConfigDict(env_prefix="SECURITY_")

    max_violations_before_block: int = Field(default=2, ge=1)
    auto_reinstate_after_days: int = Field(default=30, ge=1)
    blacklist_retention_days: int = Field(default=365, ge=1)

    # Content analysis
    spam_threshold: int = Field(default=3, ge=1)
    inappropriate_threshold: int = Field(default=2, ge=1)
    max_content_length: int = Field(default=10_000, ge=1)
    enable_pattern_matching: bool = Field(default=True)

    # Request-shape heuristic
    # No single signal blocks on its own
    request_shape_block_threshold: int = Field(default=2, ge=2)
    max_query_length: int = Field(default=1000, ge=1)

    # Admin surface
    admin_token: str = Field(
        default="change_me_in_production", description="Shared secret for admin endpoints"
    )
    cors_origins: list[str] = Field(default=["http://localhost:3000"])
    trusted_proxies: list[str] = Field(
        default_factory=list, description="Peers whose X-Forwarded-For is honoured"
    )


class NotificationSettings(BaseSettings):
    """Security notifications."""

    model_config = SettingsConfigDict(env_prefix="NOTIFY_")

    threshold: str = Field(default="medium", description="all, medium or high")
    batch_notifications: bool = Field(default=True)
    batch_interval_minutes: int = Field(default=15, ge=1)
    max_notifications_per_hour: int = Field(default=10, ge=1)
    history_size: int = Field(default=200, ge=1)

    webhook_url: str | None = Field(default=None)
    webhook_headers: dict[str, str] = Field(default_factory=dict)
    webhook_timeout: float = Field(default=10.0, gt=0)

    @field_validator("threshold")
    @classmethod
    def validate_threshold(cls, v: str) -> str:
        v = v.lower()
        if v not in {"all", "medium", "high"}:
            raise ValueError("Notification threshold must be one of: all, medium, high")
        return v


class ContextSettings(BaseSettings):
    """Context assembly and content sources."""

    model_config = SettingsConfigDict(env_prefix="CONTEXT_")

    max_tokens: int = Field(default=4000, ge=0)
    cache_ttl_seconds: int = Field(default=15 * 60, ge=1)
    min_relevance_score: float = Field(default=0.1, ge=0.0, le=1.0)
    max_results: int = Field(default=50, ge=1)
    source_timeout_seconds: float = Field(default=5.0, gt=0)
    auto_enable_new_sources: bool = Field(
        default=True, description="Newly registered sources start enabled (opt-out)"
    )
    default_source_priority: int = Field(default=50, ge=0, le=100)

    portfolio_file: str | None = Field(
        default=None, description="JSON document with about/experience/projects/resume"
    )
    projects_api_url: str | None = Field(
        default=None, description="Base URL of the site API serving project search"
    )


class ObservabilitySettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO")
    format: str = Field(default="json")  # json or human


class Settings(BaseSettings):
    """
    Main application settings.

    Usage:
        settings = get_settings()
        print(settings.rate_limit.default_daily_limit)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Portfolio Guard")
    app_version: str = Field(default="1.0.0")
    environment: str = Field(default="development")  # development, staging, production

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Sub-settings
    store: StoreSettings = Field(default_factory=StoreSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    context: ContextSettings = Field(default_factory=ContextSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.is_production:
            token = self.security.admin_token.lower().replace("-", "_")
            if token in INSECURE_ADMIN_TOKENS or len(token) < 32:
                raise ValueError(
                    "SECURITY_ADMIN_TOKEN must be set to a random value of at least "
                    "32 characters in production"
                )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for the application lifetime.
    """
    return Settings()


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "UNLIMITED_DAILY_LIMIT",
    "Settings",
    "StoreSettings",
    "RedisSettings",
    "RateLimitSettings",
    "SecuritySettings",
    "NotificationSettings",
    "ContextSettings",
    "ObservabilitySettings",
    "get_settings",
]
