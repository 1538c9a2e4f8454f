from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Appointment Booking"

    # Remote API. Leave api_base_url empty to run against the in-memory client.
    api_base_url: str = ""
    api_token: str = ""
    api_timeout_seconds: float = 120.0

    # Booking rules
    doctors_page_size: int = 20
    fallback_slot_time: str = "12:00"  # used when a slot carries no usable time

    log_level: str = "INFO"

    @property
    def api_enabled(self) -> bool:
        return bool(self.api_base_url.strip())


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
