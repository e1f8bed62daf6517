"""
Configuration and settings for the Conduit backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service.

    Every field reads ``CONDUIT_<FIELD>``; the database URL also accepts the
    conventional ``DATABASE_URL``.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONDUIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_prefix: str = Field(default="/api")

    # Document store (any SQLAlchemy URL; Postgres expected)
    database_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "DATABASE_URL", "CONDUIT_DATABASE_URL", "database_url"
        ),
    )
    query_timeout_seconds: float = Field(default=75.0, gt=0)

    # Collection names
    users_collection: str = Field(default="users")
    tags_collection: str = Field(default="tags")

    # Password hashing cost
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)
    log_level: str = Field(default="INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
