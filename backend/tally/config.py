"""
Application configuration using Pydantic settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # App
    app_name: str = "Tally"
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./data/db.sqlite"

    # Money
    currency_precision: int = 2  # Decimal places kept on amounts

    # Locking
    lock_timeout_seconds: float = 5.0

    # Recurrence processing
    processor_max_workers: int = 1  # One worker per dashboard when > 1
    processor_conflict_retries: int = 3
    scheduler_enabled: bool = False
    scheduler_interval_minutes: int = 360

    # Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    frontend_url: str = "http://localhost:5173"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False
    )


# Global settings instance
settings = Settings()
