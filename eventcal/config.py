"""
Library configuration using Pydantic Settings.
Values come from ``EVENTCAL_*`` environment variables or a local .env file.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Tunables for occurrence expansion and the write path."""

    # ── Expansion ────────────────────────────────────────
    MAX_OCCURRENCES: int = Field(default=1000, gt=0)  # per master per window

    # ── Writes ───────────────────────────────────────────
    REJECT_DUPLICATE_EXCEPTIONS: bool = True  # False = last write wins

    model_config = SettingsConfigDict(
        env_prefix="EVENTCAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance (singleton)."""
    return Settings()
