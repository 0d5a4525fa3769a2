import logging
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


PROJECT_ROOT = Path(__file__).resolve().parents[2]
ROOT_ENV = PROJECT_ROOT / ".env"
ROOT_ENV_LOCAL = PROJECT_ROOT / ".env.local"


class Settings(BaseSettings):
    """
    curriculum-sync - Global Configuration Registry
    Centralizes all environment variables using Pydantic Settings.
    """

    model_config = SettingsConfigDict(
        env_file=(str(ROOT_ENV), str(ROOT_ENV_LOCAL)),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Infrastructure
    SUPABASE_URL: Optional[str] = Field(
        None, validation_alias=AliasChoices("SUPABASE_URL", "VITE_SUPABASE_URL")
    )
    SUPABASE_KEY: Optional[str] = Field(
        None,
        validation_alias=AliasChoices(
            "SUPABASE_KEY",
            "SUPABASE_ANON_KEY",
            "VITE_SUPABASE_ANON_KEY",
            "SUPABASE_SERVICE_ROLE_KEY",
        ),
    )
    REALTIME_CHANNEL_PREFIX: str = "curriculum-sync"

    # Observability
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Sync engine
    MUTATION_MAX_ATTEMPTS: int = 5
    REMOTE_TRANSPORT_MAX_RETRIES: int = 2
    REMOTE_TRANSPORT_BASE_DELAY_SECONDS: float = 0.4
    RECONCILE_ON_CHANGE: bool = True
    SERIALIZE_SIBLING_REORDERS: bool = True
    AGGREGATE_SAVE_RPC: str = "save_project_with_tasks"

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str | None) -> str:
        return str(value or "INFO").strip().upper()

    @field_validator("MUTATION_MAX_ATTEMPTS", mode="before")
    @classmethod
    def _clamp_attempts(cls, value: int | str | None) -> int:
        return max(1, int(value or 5))

    @field_validator("REMOTE_TRANSPORT_MAX_RETRIES", mode="before")
    @classmethod
    def _clamp_transport_retries(cls, value: int | str | None) -> int:
        return max(0, int(value or 0))

    @field_validator("SUPABASE_URL", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return str(value).strip().rstrip("/") or None


settings = Settings()
