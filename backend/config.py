"""
Configuration management using Pydantic settings.
Loads environment variables and provides type-safe configuration.
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type safety.
    """

    # Application Configuration
    APP_ENV: str = "local"  # local, development, staging, production
    LOG_LEVEL: str = "INFO"
    FRONTEND_URL: str = "http://localhost:5173"

    # Database Configuration
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/cleany.db"

    # Language model (optional - classification degrades when unset)
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: Optional[str] = None
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_REQUEST_TIMEOUT: float = 30.0

    # Gmail REST API
    GMAIL_API_BASE_URL: str = "https://gmail.googleapis.com/gmail/v1/users/me"
    GMAIL_REQUEST_TIMEOUT: float = 20.0
    GMAIL_MAX_RETRIES: int = 3

    # Bulk sender operations
    BULK_PAGE_SIZE: int = 100
    BULK_SAFETY_CAP: int = 500
    BULK_PAGE_DELAY_SECONDS: float = 0.2
    BULK_DELETE_PACING_EVERY: int = 20
    KEEP_LATEST_DEFAULT: int = 5

    # Unsubscribe link handling
    LINK_VALIDATION_TIMEOUT: float = 10.0
    UNSUBSCRIBE_REQUEST_DELAY_SECONDS: float = 0.5

    # Learned preferences
    PREFERENCE_MIN_CONFIDENCE: float = 0.7
    PREFERENCE_WRITE_RETRIES: int = 3

    # Inbox snapshot cache
    INBOX_CACHE_TTL_SECONDS: int = 600

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.APP_ENV == "production"


# Global settings instance
settings = Settings()
