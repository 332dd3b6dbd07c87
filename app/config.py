"""Application configuration settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "pharmalink"

    # JWT - tokens are issued by the auth service, we only verify them
    JWT_SECRET_KEY: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # Application
    APP_NAME: str = "PharmaLink Notifications"
    API_V1_PREFIX: str = "/api/v1"
    PORT: int = 8000

    # CORS
    BACKEND_CORS_ORIGINS: str = '["http://localhost:3000", "http://localhost:5173"]'

    # Reminder scheduler
    REMINDER_SCHEDULER_ENABLED: bool = True
    REMINDER_SWEEP_INTERVAL_SECONDS: int = 60
    REMINDER_WINDOW_MINUTES: int = 15
    REMINDER_LEDGER_RETENTION_MINUTES: int = 60
    DEFAULT_SNOOZE_MINUTES: int = 15

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def cors_origins(self) -> List[str]:
        """Parse CORS origins from JSON string."""
        try:
            return json.loads(self.BACKEND_CORS_ORIGINS)
        except ValueError:
            return ["http://localhost:3000"]


settings = Settings()
