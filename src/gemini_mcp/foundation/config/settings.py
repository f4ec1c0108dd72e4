"""Environment-based configuration using pydantic-settings.

Provides type-safe, validated configuration from environment variables
with sensible defaults. Supports .env files and nested configuration.

Example:
    >>> from gemini_mcp.foundation.config import get_settings
    >>> settings = get_settings()
    >>> print(settings.cache.ttl)
    3600.0
    >>> print(settings.retry.max_attempts)
    3

    # Or with environment variables:
    # GEMINI_API_KEY=...
    # GEMINI_MCP_CACHE_TTL=600
    # GEMINI_MCP_LOG_LEVEL=DEBUG
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import (
    AliasChoices,
    Field,
    NonNegativeFloat,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    computed_field,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_PRO_MODEL = "gemini-3-pro-preview"
DEFAULT_FLASH_MODEL = "gemini-3-flash-preview"


class UpstreamSettings(BaseSettings):
    """Gemini API connection configuration.

    The key and model ids keep the bare ``GEMINI_`` names used by existing
    deployments; everything else lives under ``GEMINI_MCP_UPSTREAM_``.
    """

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_MCP_UPSTREAM_",
        populate_by_name=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("GEMINI_API_KEY", "GEMINI_MCP_UPSTREAM_API_KEY"),
    )
    pro_model: str = Field(
        default=DEFAULT_PRO_MODEL,
        validation_alias=AliasChoices("GEMINI_PRO_MODEL", "GEMINI_MCP_UPSTREAM_PRO_MODEL"),
    )
    flash_model: str = Field(
        default=DEFAULT_FLASH_MODEL,
        validation_alias=AliasChoices("GEMINI_FLASH_MODEL", "GEMINI_MCP_UPSTREAM_FLASH_MODEL"),
    )
    base_url: str = DEFAULT_BASE_URL
    timeout: PositiveFloat = Field(default=60.0, description="Per-attempt request timeout in seconds")
    verify_on_start: bool = True
    max_connections: PositiveInt = 10

    @field_validator("api_key", mode="before")
    @classmethod
    def _blank_key_is_missing(cls, v: object) -> object:
        return None if isinstance(v, str) and not v.strip() else v

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @computed_field
    @property
    def has_api_key(self) -> bool:
        return self.api_key is not None


class RetrySettings(BaseSettings):
    """Retry/backoff configuration for upstream calls."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_MCP_RETRY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    max_attempts: Annotated[int, Field(ge=1, le=10)] = 3
    base_delay: NonNegativeFloat = Field(default=1.0, description="Delay before the first retry")
    max_delay: PositiveFloat = Field(default=30.0, description="Cap on any single delay")
    multiplier: Annotated[float, Field(ge=1.0)] = 2.0
    jitter: Annotated[float, Field(ge=0.0, le=1.0)] = 0.25


class CacheSettings(BaseSettings):
    """Result cache configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_MCP_CACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = True
    ttl: PositiveFloat = Field(default=3600.0, description="Entry lifetime in seconds")
    max_entries: PositiveInt = Field(default=256, description="Max cache entries")


class ServerSettings(BaseSettings):
    """Stdio dispatcher configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_MCP_SERVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    request_timeout: PositiveFloat = Field(default=300.0, description="Bound on one tools/call")
    drain_timeout: NonNegativeFloat = Field(default=10.0, description="Grace period after EOF")
    max_line_bytes: PositiveInt = Field(default=4 * 1024 * 1024)
    strict_arguments: bool = Field(default=False, description="Reject unknown argument fields")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_MCP_LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json"] = "console"

    @field_validator("level", mode="before")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v


class GeminiMcpSettings(BaseSettings):
    """Root settings for the gemini-mcp server.

    Each section reads its own prefixed variables, e.g.:
        GEMINI_API_KEY=...
        GEMINI_MCP_RETRY_MAX_ATTEMPTS=5
        GEMINI_MCP_CACHE_ENABLED=false
        GEMINI_MCP_SERVER_STRICT_ARGUMENTS=true
    """

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_MCP_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def get_settings() -> GeminiMcpSettings:
    """Get the process-wide settings instance (cached)."""
    return GeminiMcpSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing).

    After calling this, the next get_settings() call will
    reload configuration from environment.
    """
    get_settings.cache_clear()
