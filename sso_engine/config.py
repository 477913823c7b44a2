"""
Centralized configuration management for the SSO engine.

This module provides a Pydantic Settings-based configuration system that:
- Validates environment variables at startup
- Provides type coercion (strings to ints, floats, bools)
- Groups related settings for better organization
- Supports .env file loading

The timing constants used by the engine (clock skew, JWKS cache lifetime,
pending authorization lifetime) are implementation choices rather than
protocol requirements, so they all live here.

Usage:
    from sso_engine.config import get_settings

    settings = get_settings()
    timeout = settings.sso.http_timeout_seconds
"""

from datetime import timedelta
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# SSO Engine Settings
# =============================================================================


class SSOSettings(BaseSettings):
    """Timeouts, cache lifetimes and polling cadence for SSO flows."""

    model_config = SettingsConfigDict(
        env_prefix="SSO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    http_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Timeout applied to every request made to an identity provider",
    )
    jwks_cache_ttl_seconds: int = Field(
        default=3600,
        ge=1,
        description="Lifetime of a provider's cached signing key set",
    )
    clock_skew_seconds: int = Field(
        default=300,
        ge=0,
        le=3600,
        description="Tolerance for ID tokens issued slightly in the future",
    )
    pending_auth_ttl_seconds: int = Field(
        default=600,
        ge=1,
        description="Lifetime of an unredeemed authorization state",
    )
    device_poll_default_interval: int = Field(
        default=5,
        ge=1,
        description="Poll interval used when the IdP does not send one",
    )
    device_slow_down_factor: float = Field(
        default=1.5,
        gt=1.0,
        description="Multiplier applied to the poll interval on slow_down",
    )
    config_store_path: Optional[str] = Field(
        default=None,
        description="JSON file holding provider configurations",
    )

    @property
    def jwks_cache_ttl(self) -> timedelta:
        return timedelta(seconds=self.jwks_cache_ttl_seconds)

    @property
    def clock_skew(self) -> timedelta:
        return timedelta(seconds=self.clock_skew_seconds)

    @property
    def pending_auth_ttl(self) -> timedelta:
        return timedelta(seconds=self.pending_auth_ttl_seconds)


# =============================================================================
# Logging Settings
# =============================================================================


class LoggingSettings(BaseSettings):
    """Configuration for logging output."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level",
    )
    log_format_json: bool = Field(
        default=False,
        description="Force JSON log output",
    )
    environment: str = Field(
        default="development",
        description="Deployment environment name",
    )
    service_name: str = Field(
        default="sso-engine",
        description="Service name attached to structured log lines",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")

    @property
    def use_json(self) -> bool:
        return self.log_format_json or self.is_production


# =============================================================================
# Aggregate Settings
# =============================================================================


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration groups.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    sso: SSOSettings = Field(default_factory=SSOSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def get_config_summary(self) -> dict:
        """
        Get a summary of configuration status for logging.

        Contains no secrets; provider credentials never live in Settings.
        """
        return {
            "environment": self.logging.environment,
            "log_level": self.logging.log_level,
            "http_timeout_seconds": self.sso.http_timeout_seconds,
            "jwks_cache_ttl_seconds": self.sso.jwks_cache_ttl_seconds,
            "clock_skew_seconds": self.sso.clock_skew_seconds,
            "pending_auth_ttl_seconds": self.sso.pending_auth_ttl_seconds,
            "config_store": "file" if self.sso.config_store_path else "memory",
        }


# =============================================================================
# Settings Singleton
# =============================================================================


@lru_cache()
def get_settings() -> Settings:
    """
    Get the application settings.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload settings.
    """
    return Settings()


def reload_settings() -> Settings:
    """
    Reload settings from environment.

    Useful for testing or after environment changes.
    """
    get_settings.cache_clear()
    return get_settings()
