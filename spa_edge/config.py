"""Application configuration utilities."""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration for the edge server."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    host: str = Field("0.0.0.0", validation_alias=AliasChoices("HOST", "host"))
    port: int = Field(5100, validation_alias=AliasChoices("PORT", "port"))
    log_level: str = Field("info", validation_alias=AliasChoices("LOG_LEVEL", "log_level"))
    dist_dir: str = Field("dist", validation_alias=AliasChoices("DIST_DIR", "dist_dir"))

    enable_telemetry: bool = Field(True, validation_alias=AliasChoices("ENABLE_TELEMETRY", "enable_telemetry"))
    telemetry_rate_limit: int = Field(10, validation_alias=AliasChoices("TELEMETRY_RATE_LIMIT", "telemetry_rate_limit"))
    telemetry_window_seconds: float = Field(
        60.0, validation_alias=AliasChoices("TELEMETRY_WINDOW_SECONDS", "telemetry_window_seconds")
    )
    telemetry_max_body_bytes: int = Field(
        100 * 1024, validation_alias=AliasChoices("TELEMETRY_MAX_BODY_BYTES", "telemetry_max_body_bytes")
    )
    telemetry_log_file: str = Field(
        "telemetry.log", validation_alias=AliasChoices("TELEMETRY_LOG_FILE", "telemetry_log_file")
    )
    telemetry_log_dir: str = Field("logs", validation_alias=AliasChoices("TELEMETRY_LOG_DIR", "telemetry_log_dir"))
    telemetry_retention_days: int = Field(
        60, validation_alias=AliasChoices("TELEMETRY_RETENTION_DAYS", "telemetry_retention_days")
    )
    telemetry_console: bool = Field(True, validation_alias=AliasChoices("TELEMETRY_CONSOLE", "telemetry_console"))

    # Empty bodies (204 telemetry acks) stay below the threshold and pass through.
    compression_minimum_size: int = Field(
        1, validation_alias=AliasChoices("COMPRESSION_MINIMUM_SIZE", "compression_minimum_size")
    )
    content_security_policy: Optional[str] = Field(
        None, validation_alias=AliasChoices("CONTENT_SECURITY_POLICY", "content_security_policy")
    )


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
