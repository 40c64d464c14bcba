# app/config.py
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    ENV: str = "dev"
    APP_NAME: str = "Tutoring Scheduling Engine"

    # DB URL – for now SQLite local
    DATABASE_URL: str = "sqlite:///./app.db"

    LOG_LEVEL: str = "INFO"

    # The service models exactly one provider (the tutor)
    PROVIDER_ID: str = "default"

    # Slot grid used when offering bookable start times
    SLOT_STEP_MINUTES: int = 30

    # Participant-initiated cancel/reschedule inside this window costs credits
    LATE_ACTION_WINDOW_HOURS: float = 4.0
    LATE_ACTION_PENALTY_CREDITS: int = 1

    # Upper bound on anchor -> series_end_date for a single expansion
    MAX_SERIES_SPAN_DAYS: int = 730

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

_settings: Optional[Settings] = None

def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
