from __future__ import annotations

import os
from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")
    """Application runtime configuration."""

    app_name: str = "ChronoFlow"
    environment: str = "development"
    host: str = os.getenv("CF_HOST", "127.0.0.1")
    port: int = int(os.getenv("CF_PORT", "8080"))
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            origin.strip()
            for origin in os.getenv("CF_CORS_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173").split(",")
            if origin.strip()
        ]
    )

    sqlite_path: Path = Path(os.getenv("CF_SQLITE_PATH", "./data/chronoflow.db"))
    export_dir: Path = Path(os.getenv("CF_EXPORT_DIR", "./data/exports"))

    timezone: str = os.getenv("TZ", "Europe/Berlin")

    block_minutes: int = int(os.getenv("CF_BLOCK_MINUTES", "6"))
    minimum_gap_minutes: int = int(os.getenv("CF_MINIMUM_GAP_MINUTES", "5"))
    gap_buffer_seconds: int = int(os.getenv("CF_GAP_BUFFER_SECONDS", "1"))
    day_start_hour: int = int(os.getenv("CF_DAY_START_HOUR", "6"))
    day_end_hour: int = int(os.getenv("CF_DAY_END_HOUR", "18"))

    reminder_lead_minutes: int = int(os.getenv("CF_REMINDER_LEAD_MINUTES", "5"))
    reminder_scan_seconds: int = int(os.getenv("CF_REMINDER_SCAN_SECONDS", "30"))
    daily_goal_hours: float = float(os.getenv("CF_DAILY_GOAL_HOURS", "7.6"))
    plan_log_tolerance_ms: int = int(os.getenv("CF_PLAN_LOG_TOLERANCE_MS", "1000"))

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return value
        if not value:
            return []
        return [origin.strip() for origin in value.split(",") if origin.strip()]

    @field_validator("block_minutes", "minimum_gap_minutes")
    @classmethod
    def _positive_minutes(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least one minute")
        return value


settings = Settings()

# Ensure essential directories exist
settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
settings.export_dir.mkdir(parents=True, exist_ok=True)
