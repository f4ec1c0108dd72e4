"""Configuration management using pydantic-settings.

Provides environment-based configuration with type safety and validation.
"""

from .settings import (
    CacheSettings,
    GeminiMcpSettings,
    LoggingSettings,
    RetrySettings,
    ServerSettings,
    UpstreamSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "CacheSettings",
    "GeminiMcpSettings",
    "LoggingSettings",
    "RetrySettings",
    "ServerSettings",
    "UpstreamSettings",
    "clear_settings_cache",
    "get_settings",
]
