"""
Beesides - Configuration and settings.

Settings are read from the environment / .env file via pydantic-settings.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class BeesidesSettings(BaseSettings):
    """
    Application settings.

    Supabase credentials are only required by the Supabase adapters and the
    web app; the session manager and onboarding flow take their collaborators
    as constructor arguments and never read settings directly.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Supabase
    supabase_url: str = ""
    supabase_anon_key: str = ""
    profiles_table: str = "profiles"

    # Application
    beesides_env: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Durable local key-value store (CLI session flags, renewable credential)
    state_dir: Path = Path(".beesides")

    # Ordered onboarding step ids; order is configuration, not code
    onboarding_steps: list[str] = ["genres", "artists", "importLegacyRatings"]

    # Where password recovery emails send the user back to
    recovery_redirect_url: str = "http://localhost:5173/reset-password"

    @property
    def is_development(self) -> bool:
        return self.beesides_env == "development"


@lru_cache
def get_settings() -> BeesidesSettings:
    """Get cached settings instance."""
    return BeesidesSettings()


class _SettingsProxy:
    """Lazy proxy for settings to avoid loading .env at import time."""

    _instance: BeesidesSettings | None = None

    def __getattr__(self, name: str):
        if self._instance is None:
            self._instance = get_settings()
        return getattr(self._instance, name)


settings = _SettingsProxy()
