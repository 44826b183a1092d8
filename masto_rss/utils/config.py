"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root, so the .env file is found regardless of the working directory
_PROJECT_ROOT = Path(__file__).parent.parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Bluesky (only required for the /bluesky route)
    bluesky_identifier: str = Field(default="", description="Bluesky handle or email")
    bluesky_password: str = Field(default="", description="Bluesky app password")
    bluesky_service_url: str = Field(
        default="https://bsky.social", description="Bluesky PDS / entryway URL"
    )

    # HTTP server
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=6060, description="Bind port")

    # Timeline fetching
    timeline_limit: int = Field(default=40, ge=1, le=100, description="Posts per upstream page")
    max_pages: int = Field(default=1, ge=1, description="Upstream pages fetched per feed")
    include_reshares: bool = Field(default=True, description="Include boosts / reposts")

    # Upstream timeouts and retries
    request_timeout_seconds: float = Field(default=10.0, gt=0, description="Per-call timeout")
    pipeline_deadline_seconds: float = Field(
        default=20.0, gt=0, description="Deadline for building one feed"
    )
    max_retries: int = Field(default=3, ge=0, description="Retries for transient failures")
    retry_base_delay: float = Field(default=0.2, ge=0, description="First backoff delay")
    retry_max_delay: float = Field(default=5.0, ge=0, description="Backoff delay cap")

    # Response cache
    cache_ttl_seconds: float = Field(default=60.0, description="Rendered feed TTL (0 disables)")
    cache_max_entries: int = Field(default=1024, ge=1, description="Cached feeds kept in memory")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    log_format: Literal["console", "json"] = Field(default="console", description="Log renderer")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
