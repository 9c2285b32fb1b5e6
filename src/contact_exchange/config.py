"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    environment: str = _ENVIRONMENT
    session_ttl_seconds: int = 300
    pending_auth_ttl_seconds: int = 300
    coincidence_window_ms: int = 1500
    min_hit_magnitude: float = 5.0
    hit_retention_seconds: int = 30
    max_clock_skew_ms: int = 10_000
    hit_rate_limit: int = 60
    hit_rate_window_seconds: int = 60
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )
