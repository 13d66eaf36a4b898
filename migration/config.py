"""
Configuration and settings for the migration layer.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the read API and the batch scripts."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Target store (Postgres expected)
    database_url: Optional[str] = Field(default=None)

    # Legacy store (Firestore)
    firestore_project_id: Optional[str] = Field(default=None)
    google_application_credentials: Optional[str] = Field(default=None)
    firestore_emulator_host: Optional[str] = Field(default=None)

    # Environment guard for the batch scripts
    app_env: str = Field(default="development")
    guarded_environments: list[str] = Field(default_factory=lambda: ["production"])

    # Read routing
    legacy_fallback_enabled: Optional[bool] = Field(default=None)
    runtime_parity_check: bool = Field(default=False)
    read_timeout_seconds: Optional[float] = Field(default=2.0)

    # Parity validation tolerances
    recency_tolerance_seconds: float = Field(default=5.0)
    field_time_tolerance_seconds: float = Field(default=2.0)

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() == "development"

    @property
    def is_guarded_environment(self) -> bool:
        guarded = {env.lower() for env in self.guarded_environments}
        return self.app_env.lower() in guarded

    @property
    def fallback_enabled(self) -> bool:
        """Legacy fallback defaults to on in development only."""
        if self.legacy_fallback_enabled is None:
            return self.is_development
        return self.legacy_fallback_enabled

    @property
    def legacy_store_configured(self) -> bool:
        return bool(self.firestore_project_id or self.firestore_emulator_host)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
