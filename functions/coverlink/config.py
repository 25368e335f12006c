"""
Configuration and settings for the cover-linking service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service and worker."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # EDI inter-service client (EDI_BASE_URL, EDI_API_TOKEN, ...)
    edi_base_url: str = Field(default="http://localhost:8080")
    edi_api_token: Optional[str] = Field(default=None)
    edi_timeout_seconds: float = Field(default=30.0)

    # Time allowed for one link attempt, from lookup to the last write
    link_deadline_seconds: float = Field(default=60.0)

    # Database (Postgres expected when set)
    database_url: Optional[str] = Field(default=None)

    # Firestore, used when a project id is configured
    firestore_project_id: Optional[str] = Field(default=None)

    # Collection/topic suffixing, e.g. user_profiles_onboarding_staging
    service_name: Optional[str] = Field(default=None)
    environment: Optional[str] = Field(default=None)
    pubsub_namespace: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "COVERLINK_USE_IN_MEMORY_BACKENDS", "use_in_memory_backends"
        ),
    )

    # Queue (Redis)
    redis_url: Optional[str] = Field(default=None)
    redis_queue_key: str = Field(default="coverlink:messages")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
