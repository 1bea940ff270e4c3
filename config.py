"""
Configuration for the MTR service.

GOVERNANCE:
- Clinical thresholds are tunable, but every automated finding still
  requires pharmacist review
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # API settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Logging
    log_level: str = "INFO"

    # Auto-save (seconds between ticks)
    autosave_enabled: bool = True
    autosave_interval_seconds: float = 30.0

    # Adherence scoring (0-10 scale)
    default_adherence_score: int = 8
    adherence_threshold: int = 7
    poor_adherence_threshold: int = 4

    model_config = {"env_prefix": "MTR_"}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
