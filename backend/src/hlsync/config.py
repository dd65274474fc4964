"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env relative to the project root
_PROJECT_ROOT = Path(__file__).resolve().parents[3]
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Supabase (the frontend's VITE_* names are accepted too) ---
    supabase_url: str = Field(
        validation_alias=AliasChoices("SUPABASE_URL", "VITE_SUPABASE_URL"),
    )
    supabase_key: str = Field(
        validation_alias=AliasChoices(
            "SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_ANON_KEY", "VITE_SUPABASE_ANON_KEY",
        ),
    )
    supabase_schema: str = "public"

    # --- Highlightly API ---
    highlightly_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("HIGHLIGHTLY_API_KEY", "VITE_HIGHLIGHTLY_API_KEY"),
    )
    # Local proxy alternative: http://localhost:3001/api/highlightly
    highlightly_base_url: str = "https://soccer.highlightly.net"

    # --- Rate limiting / retries ---
    max_calls_per_minute: int = 30
    min_call_interval_s: float = 1.2
    rate_limit_backoff_s: float = 60.0
    max_retries: int = 3
    request_timeout_s: float = 30.0

    # --- Sync ---
    page_size: int = 100
    max_pages: int = 100

    # --- App ---
    log_level: str = "INFO"


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore[call-arg]
    return _settings
