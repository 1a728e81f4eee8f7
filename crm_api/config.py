"""
Configuration and settings for the CRM data-access layer.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_API_BASE_URL = "https://crm-service.speccon.co.za"


class Settings(BaseSettings):
    """Environment-backed settings, read once per process."""

    model_config = SettingsConfigDict(
        env_prefix="CRM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # REST API
    api_base_url: str = Field(default=DEFAULT_API_BASE_URL)
    request_timeout: Optional[float] = Field(default=30.0)

    # Backend selection. Read by the factory only, never per call.
    use_firestore: bool = Field(default=False)
    firestore_project: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("CRM_FIRESTORE_PROJECT", "GOOGLE_CLOUD_PROJECT"),
    )
    firestore_database: Optional[str] = Field(default=None)

    # Token storage
    token_file_path: str = Field(
        default="~/.crm_api/tokens.json",
        validation_alias=AliasChoices("CRM_TOKEN_FILE", "CRM_TOKEN_FILE_PATH"),
    )
    redis_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("CRM_REDIS_URL", "REDIS_URL")
    )
    redis_token_prefix: str = Field(default="crm:tokens")

    # Development toggles
    use_in_memory_token_storage: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "CRM_USE_IN_MEMORY_TOKENS", "CRM_USE_IN_MEMORY_TOKEN_STORAGE"
        ),
    )

    # List/aggregate reads return their fallback instead of raising.
    degrade_list_failures: bool = Field(default=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
