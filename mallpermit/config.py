"""Application settings, read from the environment or a local .env file."""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # App
    app_name: str = "Mall Work Permits"
    environment: str = "development"
    log_level: str = "INFO"

    # Database (SQLite locally, PostgreSQL in production)
    database_url: str = "sqlite:///./permits.db"

    # Listing
    default_page_size: int = 10
    max_page_size: int = 100

    # Read-only expiry queries
    expiring_window_days: int = 3

    # Notification delivery pool
    notification_workers: int = 2

    # Retries on permit number collision at insert
    permit_number_attempts: int = 5


settings = Settings()
