"""Configuration management for clinic-os."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./clinic_os.db",
        description="Async SQLAlchemy DSN for the clinic database",
    )

    # API Settings
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8080)
    api_key: str = Field(
        default="",
        description="API key for authenticating machine clients",
    )

    # Auth
    jwt_secret: str = Field(
        default="change-me",
        description="Secret used to sign access tokens",
    )
    jwt_algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=60)

    # CORS
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    # Debug
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode (exposes error details in responses)",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_dir: Path = Field(
        default=Path("data/logs"),
        description="Directory for JSON Lines scheduling telemetry",
    )
    observability_enabled: bool = Field(default=True)

    # Scheduling
    clinic_timezone: str = Field(
        default="America/Sao_Paulo",
        description="Clinic-local timezone; only used to decide what 'today' is",
    )
    scheduling_window_days: int = Field(default=7, ge=1, le=90)
    clinic_open_hour: int = Field(default=8, ge=0, le=23)
    clinic_close_hour: int = Field(default=18, ge=1, le=24)
    slot_minutes: int = Field(default=60, ge=5, le=240)
    honor_working_hours: bool = Field(
        default=False,
        description=(
            "Restrict generated slots to each provider's working_hours. "
            "Off by default: slots use the fixed clinic hours for every provider."
        ),
    )

    @model_validator(mode="after")
    def _check_hours(self) -> "Settings":
        if self.clinic_close_hour <= self.clinic_open_hour:
            raise ValueError("clinic_close_hour must be after clinic_open_hour")
        return self

    @property
    def is_sqlite(self) -> bool:
        """Check if the configured database is SQLite."""
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
