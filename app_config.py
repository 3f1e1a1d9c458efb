"""
Application configuration using Pydantic BaseSettings.
Values come from environment variables or a local .env file.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    PROJECT_NAME: str = "Bitespeed Contact Reconciliation API"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/user"

    # SQLite database file
    DB_NAME: str = "contacts.db"
    STORE_BUSY_TIMEOUT: float = 5.0
    STORE_MAX_RETRIES: int = 3
    STORE_RETRY_BACKOFF: float = 0.05

    LOG_LEVEL: str = "INFO"

    HOST: str = "0.0.0.0"
    PORT: int = 8000

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
