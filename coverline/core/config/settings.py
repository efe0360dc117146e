#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the
cover-letter API core. All configuration is centralized here to ensure
consistency across modules.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Quota strings are parsed at load time, so a typo in
  RATE_LIMIT_FREE_SAVE stops the process instead of a request
- Easy testing with override mechanisms

Units: every TTL, timeout and interval below is in SECONDS (floats allowed).

Author: Platform Team
Date: 2025-12-05
"""

from typing import Literal

from limits import parse as parse_limit
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from coverline.core.config.constants import (
    METRICS_MAX_ACTIVITY_EVENTS,
    METRICS_MAX_AI_EVENTS,
    METRICS_MAX_CACHE_OPERATIONS,
    METRICS_MAX_SAMPLES,
    RouteClass,
    UserTier,
)


def _validate_limit_string(value: str) -> str:
    """Reject quota strings the `limits` parser cannot read."""
    try:
        parse_limit(value)
    except ValueError as e:
        raise ValueError(f"Invalid rate limit string '{value}': {e}") from e
    return value


class RedisSettings(BaseSettings):
    """
    Redis configuration for the remote cache tier.

    STAGE-0.1: Redis connection configuration

    Architectural Decision: Connection pooling for performance
    - Max connections: 50 (plenty for cache reads/writes)
    - Health checks: Every 30s
    - Connect retries with exponential backoff at startup
    """

    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: str | None = Field(default=None, description="Redis password (if required)")
    REDIS_MAX_CONNECTIONS: int = Field(default=50, description="Maximum total connections")
    REDIS_SOCKET_TIMEOUT: float = Field(default=2.0, description="Socket timeout in seconds")
    REDIS_SOCKET_CONNECT_TIMEOUT: float = Field(default=2.0, description="Connection timeout in seconds")
    REDIS_HEALTH_CHECK_INTERVAL: int = Field(default=30, description="Health check interval in seconds")
    REDIS_CONNECT_RETRIES: int = Field(default=3, description="Connection attempts at startup")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CacheSettings(BaseSettings):
    """
    Multi-level cache configuration.

    STAGE-C: Cache sizing and TTLs

    The memory tier is a faster, shorter-lived copy of the remote tier, so
    its default TTL must never exceed the remote default.
    """

    CACHE_ENABLED: bool = Field(default=True, description="Enable the multi-level cache")
    CACHE_REMOTE_BACKEND: Literal["redis", "memory"] = Field(
        default="redis", description="Remote tier implementation"
    )
    CACHE_MEMORY_MAX_SIZE: int = Field(default=5000, gt=0, description="Memory tier max entries")
    CACHE_MEMORY_SHARDS: int = Field(default=16, gt=0, description="Independent memory tier shards")
    CACHE_MEMORY_MAX_TTL: float = Field(
        default=300.0, gt=0, description="Upper bound on any memory tier TTL (also caps backfills)"
    )
    CACHE_DEFAULT_MEMORY_TTL: float = Field(default=300.0, ge=0, description="Default memory TTL (5 min)")
    CACHE_DEFAULT_REMOTE_TTL: float = Field(default=900.0, ge=0, description="Default remote TTL (15 min)")
    CACHE_REMOTE_TIMEOUT: float = Field(default=0.25, gt=0, description="Per-call remote tier budget")
    CACHE_KEY_PREFIX: str = Field(default="coverline:cache", description="Remote key namespace")

    @model_validator(mode="after")
    def check_ttl_order(self):
        """Memory tier must never outlive the remote tier."""
        if self.CACHE_DEFAULT_MEMORY_TTL > self.CACHE_DEFAULT_REMOTE_TTL:
            raise ValueError("CACHE_DEFAULT_MEMORY_TTL must be <= CACHE_DEFAULT_REMOTE_TTL")
        return self

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class RateLimitSettings(BaseSettings):
    """
    Rate limiting configuration.

    STAGE-3: Rate limiting thresholds

    Architectural Decision: one quota per user tier × route class, written
    in the `limits` notation ("100/15 minutes", "20/day") that slowapi
    uses for its decorators.
    """

    RATE_LIMIT_ENABLED: bool = Field(default=True, description="Enforce rate limits")
    RATE_LIMIT_SWEEP_INTERVAL: float = Field(default=60.0, gt=0, description="Idle window sweep period")

    RATE_LIMIT_FREE_GENERAL: str = Field(default="100/15 minutes")
    RATE_LIMIT_PRO_GENERAL: str = Field(default="500/15 minutes")
    RATE_LIMIT_ENTERPRISE_GENERAL: str = Field(default="2000/15 minutes")

    RATE_LIMIT_FREE_GENERATE: str = Field(default="10/hour")
    RATE_LIMIT_PRO_GENERATE: str = Field(default="100/hour")
    RATE_LIMIT_ENTERPRISE_GENERATE: str = Field(default="1000/hour")

    RATE_LIMIT_FREE_SAVE: str = Field(default="20/day")
    RATE_LIMIT_PRO_SAVE: str = Field(default="200/day")
    RATE_LIMIT_ENTERPRISE_SAVE: str = Field(default="2000/day")

    @field_validator(
        "RATE_LIMIT_FREE_GENERAL",
        "RATE_LIMIT_PRO_GENERAL",
        "RATE_LIMIT_ENTERPRISE_GENERAL",
        "RATE_LIMIT_FREE_GENERATE",
        "RATE_LIMIT_PRO_GENERATE",
        "RATE_LIMIT_ENTERPRISE_GENERATE",
        "RATE_LIMIT_FREE_SAVE",
        "RATE_LIMIT_PRO_SAVE",
        "RATE_LIMIT_ENTERPRISE_SAVE",
    )
    @classmethod
    def validate_limit(cls, v):
        """Validate quota notation."""
        return _validate_limit_string(v)

    def quota_for(self, tier: UserTier, route_class: RouteClass) -> str:
        """Return the configured quota string for a tier and route class."""
        return getattr(self, f"RATE_LIMIT_{tier.name}_{route_class.name}")

    def quota_table(self) -> dict[tuple[UserTier, RouteClass], str]:
        """Every tier × route class pair with its quota string."""
        return {
            (tier, route_class): self.quota_for(tier, route_class)
            for tier in UserTier
            for route_class in RouteClass
        }

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class MetricsSettings(BaseSettings):
    """
    Metrics recorder configuration.

    STAGE-M: Rolling buffer bounds

    Request samples, user-activity events, AI generations and cache
    operations each have their own capacity.
    """

    METRICS_MAX_SAMPLES: int = Field(default=METRICS_MAX_SAMPLES, gt=0)
    METRICS_RETENTION_SECONDS: float = Field(default=3600.0, gt=0)
    METRICS_MAX_ACTIVITY_EVENTS: int = Field(default=METRICS_MAX_ACTIVITY_EVENTS, gt=0)
    METRICS_ACTIVITY_RETENTION_SECONDS: float = Field(default=86400.0, gt=0)
    METRICS_DEFAULT_RANGE_SECONDS: float = Field(default=3600.0, gt=0)
    METRICS_SUMMARY_INTERVAL: float = Field(default=60.0, gt=0, description="Summary log period")
    METRICS_MAX_AI_EVENTS: int = Field(default=METRICS_MAX_AI_EVENTS, gt=0)
    METRICS_MAX_CACHE_OPERATIONS: int = Field(default=METRICS_MAX_CACHE_OPERATIONS, gt=0)
    METRICS_SYSTEM_HEALTH_INTERVAL: float = Field(default=30.0, gt=0, description="System snapshot period")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class AuthSettings(BaseSettings):
    """
    Authentication configuration.

    STAGE-2: Identity resolution
    """

    AUTH_MODE: Literal["session", "header"] = Field(
        default="session", description="session: bearer tokens; header: trusted X-User-* headers"
    )
    AUTH_SESSION_TTL: float = Field(default=1800.0, gt=0, description="Resolved session cache TTL")
    AUTH_ADMIN_TIER: UserTier = Field(default=UserTier.ENTERPRISE, description="Tier allowed on admin routes")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration

    Architectural Decision: structlog for production-grade logging
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class ApplicationSettings(BaseSettings):
    """
    General application settings.

    STAGE-0: Application initialization
    """

    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Application environment"
    )
    DEBUG: bool = Field(default=False, description="Debug mode")
    APP_NAME: str = Field(default="Coverline API", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=8000, description="API port")
    CORS_ORIGINS: list[str] = Field(default=["*"], description="Allowed CORS origins")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    STAGE-0: Centralized configuration initialization

    Usage:
        from coverline.core.config.settings import get_settings

        settings = get_settings()
        redis_host = settings.redis.REDIS_HOST
        quota = settings.rate_limit.quota_for(UserTier.FREE, RouteClass.SAVE)

    Fields live flat on this class (one env var each); the grouped views
    (`settings.cache`, `settings.rate_limit`, ...) are rebuilt from them.
    """

    # Redis settings
    REDIS_HOST: str = Field(default="localhost")
    REDIS_PORT: int = Field(default=6379)
    REDIS_DB: int = Field(default=0)
    REDIS_PASSWORD: str | None = Field(default=None)
    REDIS_MAX_CONNECTIONS: int = Field(default=50)
    REDIS_SOCKET_TIMEOUT: float = Field(default=2.0)
    REDIS_SOCKET_CONNECT_TIMEOUT: float = Field(default=2.0)
    REDIS_HEALTH_CHECK_INTERVAL: int = Field(default=30)
    REDIS_CONNECT_RETRIES: int = Field(default=3)

    # Cache settings
    CACHE_ENABLED: bool = Field(default=True)
    CACHE_REMOTE_BACKEND: Literal["redis", "memory"] = Field(default="redis")
    CACHE_MEMORY_MAX_SIZE: int = Field(default=5000)
    CACHE_MEMORY_SHARDS: int = Field(default=16)
    CACHE_MEMORY_MAX_TTL: float = Field(default=300.0)
    CACHE_DEFAULT_MEMORY_TTL: float = Field(default=300.0)
    CACHE_DEFAULT_REMOTE_TTL: float = Field(default=900.0)
    CACHE_REMOTE_TIMEOUT: float = Field(default=0.25)
    CACHE_KEY_PREFIX: str = Field(default="coverline:cache")

    # Rate Limiting settings
    RATE_LIMIT_ENABLED: bool = Field(default=True)
    RATE_LIMIT_SWEEP_INTERVAL: float = Field(default=60.0)
    RATE_LIMIT_FREE_GENERAL: str = Field(default="100/15 minutes")
    RATE_LIMIT_PRO_GENERAL: str = Field(default="500/15 minutes")
    RATE_LIMIT_ENTERPRISE_GENERAL: str = Field(default="2000/15 minutes")
    RATE_LIMIT_FREE_GENERATE: str = Field(default="10/hour")
    RATE_LIMIT_PRO_GENERATE: str = Field(default="100/hour")
    RATE_LIMIT_ENTERPRISE_GENERATE: str = Field(default="1000/hour")
    RATE_LIMIT_FREE_SAVE: str = Field(default="20/day")
    RATE_LIMIT_PRO_SAVE: str = Field(default="200/day")
    RATE_LIMIT_ENTERPRISE_SAVE: str = Field(default="2000/day")

    # Metrics settings
    METRICS_MAX_SAMPLES: int = Field(default=METRICS_MAX_SAMPLES)
    METRICS_RETENTION_SECONDS: float = Field(default=3600.0)
    METRICS_MAX_ACTIVITY_EVENTS: int = Field(default=METRICS_MAX_ACTIVITY_EVENTS)
    METRICS_ACTIVITY_RETENTION_SECONDS: float = Field(default=86400.0)
    METRICS_DEFAULT_RANGE_SECONDS: float = Field(default=3600.0)
    METRICS_SUMMARY_INTERVAL: float = Field(default=60.0)
    METRICS_MAX_AI_EVENTS: int = Field(default=METRICS_MAX_AI_EVENTS)
    METRICS_MAX_CACHE_OPERATIONS: int = Field(default=METRICS_MAX_CACHE_OPERATIONS)
    METRICS_SYSTEM_HEALTH_INTERVAL: float = Field(default=30.0)

    # Auth settings
    AUTH_MODE: Literal["session", "header"] = Field(default="session")
    AUTH_SESSION_TTL: float = Field(default=1800.0)
    AUTH_ADMIN_TIER: UserTier = Field(default=UserTier.ENTERPRISE)

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json")

    # Application settings
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(default="development")
    DEBUG: bool = Field(default=False)
    APP_NAME: str = Field(default="Coverline API")
    APP_VERSION: str = Field(default="1.0.0")
    API_HOST: str = Field(default="0.0.0.0")
    API_PORT: int = Field(default=8000)
    CORS_ORIGINS: list[str] = Field(default=["*"])

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_sections(self):
        """Build every grouped view once so their validators run at startup."""
        _ = self.cache
        _ = self.rate_limit
        return self

    # Grouped configuration views
    @property
    def redis(self) -> RedisSettings:
        """Get Redis settings."""
        return RedisSettings(
            REDIS_HOST=self.REDIS_HOST,
            REDIS_PORT=self.REDIS_PORT,
            REDIS_DB=self.REDIS_DB,
            REDIS_PASSWORD=self.REDIS_PASSWORD,
            REDIS_MAX_CONNECTIONS=self.REDIS_MAX_CONNECTIONS,
            REDIS_SOCKET_TIMEOUT=self.REDIS_SOCKET_TIMEOUT,
            REDIS_SOCKET_CONNECT_TIMEOUT=self.REDIS_SOCKET_CONNECT_TIMEOUT,
            REDIS_HEALTH_CHECK_INTERVAL=self.REDIS_HEALTH_CHECK_INTERVAL,
            REDIS_CONNECT_RETRIES=self.REDIS_CONNECT_RETRIES,
        )

    @property
    def cache(self) -> CacheSettings:
        """Get cache settings."""
        return CacheSettings(
            CACHE_ENABLED=self.CACHE_ENABLED,
            CACHE_REMOTE_BACKEND=self.CACHE_REMOTE_BACKEND,
            CACHE_MEMORY_MAX_SIZE=self.CACHE_MEMORY_MAX_SIZE,
            CACHE_MEMORY_SHARDS=self.CACHE_MEMORY_SHARDS,
            CACHE_MEMORY_MAX_TTL=self.CACHE_MEMORY_MAX_TTL,
            CACHE_DEFAULT_MEMORY_TTL=self.CACHE_DEFAULT_MEMORY_TTL,
            CACHE_DEFAULT_REMOTE_TTL=self.CACHE_DEFAULT_REMOTE_TTL,
            CACHE_REMOTE_TIMEOUT=self.CACHE_REMOTE_TIMEOUT,
            CACHE_KEY_PREFIX=self.CACHE_KEY_PREFIX,
        )

    @property
    def rate_limit(self) -> RateLimitSettings:
        """Get rate limit settings."""
        return RateLimitSettings(
            RATE_LIMIT_ENABLED=self.RATE_LIMIT_ENABLED,
            RATE_LIMIT_SWEEP_INTERVAL=self.RATE_LIMIT_SWEEP_INTERVAL,
            RATE_LIMIT_FREE_GENERAL=self.RATE_LIMIT_FREE_GENERAL,
            RATE_LIMIT_PRO_GENERAL=self.RATE_LIMIT_PRO_GENERAL,
            RATE_LIMIT_ENTERPRISE_GENERAL=self.RATE_LIMIT_ENTERPRISE_GENERAL,
            RATE_LIMIT_FREE_GENERATE=self.RATE_LIMIT_FREE_GENERATE,
            RATE_LIMIT_PRO_GENERATE=self.RATE_LIMIT_PRO_GENERATE,
            RATE_LIMIT_ENTERPRISE_GENERATE=self.RATE_LIMIT_ENTERPRISE_GENERATE,
            RATE_LIMIT_FREE_SAVE=self.RATE_LIMIT_FREE_SAVE,
            RATE_LIMIT_PRO_SAVE=self.RATE_LIMIT_PRO_SAVE,
            RATE_LIMIT_ENTERPRISE_SAVE=self.RATE_LIMIT_ENTERPRISE_SAVE,
        )

    @property
    def metrics(self) -> MetricsSettings:
        """Get metrics recorder settings."""
        return MetricsSettings(
            METRICS_MAX_SAMPLES=self.METRICS_MAX_SAMPLES,
            METRICS_RETENTION_SECONDS=self.METRICS_RETENTION_SECONDS,
            METRICS_MAX_ACTIVITY_EVENTS=self.METRICS_MAX_ACTIVITY_EVENTS,
            METRICS_ACTIVITY_RETENTION_SECONDS=self.METRICS_ACTIVITY_RETENTION_SECONDS,
            METRICS_DEFAULT_RANGE_SECONDS=self.METRICS_DEFAULT_RANGE_SECONDS,
            METRICS_SUMMARY_INTERVAL=self.METRICS_SUMMARY_INTERVAL,
            METRICS_MAX_AI_EVENTS=self.METRICS_MAX_AI_EVENTS,
            METRICS_MAX_CACHE_OPERATIONS=self.METRICS_MAX_CACHE_OPERATIONS,
            METRICS_SYSTEM_HEALTH_INTERVAL=self.METRICS_SYSTEM_HEALTH_INTERVAL,
        )

    @property
    def auth(self) -> AuthSettings:
        """Get authentication settings."""
        return AuthSettings(
            AUTH_MODE=self.AUTH_MODE,
            AUTH_SESSION_TTL=self.AUTH_SESSION_TTL,
            AUTH_ADMIN_TIER=self.AUTH_ADMIN_TIER,
        )

    @property
    def logging(self) -> LoggingSettings:
        """Get logging settings."""
        return LoggingSettings(LOG_LEVEL=self.LOG_LEVEL, LOG_FORMAT=self.LOG_FORMAT)

    @property
    def app(self) -> ApplicationSettings:
        """Get application settings."""
        return ApplicationSettings(
            ENVIRONMENT=self.ENVIRONMENT,
            DEBUG=self.DEBUG,
            APP_NAME=self.APP_NAME,
            APP_VERSION=self.APP_VERSION,
            API_HOST=self.API_HOST,
            API_PORT=self.API_PORT,
            CORS_ORIGINS=self.CORS_ORIGINS,
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    STAGE-0.3: Settings initialization

    Returns:
        Settings: Global settings instance
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings
