"""Application settings, read from CIVIC_* environment variables or a .env file."""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from ..lifecycle import DEFAULT_SLA_HOURS
from ..models import IssuePriority


class Settings(BaseSettings):
    """Runtime configuration for the Civic Core API."""

    model_config = SettingsConfigDict(env_prefix="CIVIC_", env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./civic_core.db"
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Sessions never expire when unset
    session_ttl_hours: Optional[int] = 24 * 7

    upload_dir: str = "./uploads"
    upload_base_url: str = "/uploads"

    # Resolution target per priority, in hours
    sla_hours: dict[IssuePriority, int] = dict(DEFAULT_SLA_HOURS)

    # Create tables at startup instead of running alembic (development only)
    auto_create_schema: bool = False

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
