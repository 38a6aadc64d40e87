from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - required from .env
    DATABASE_URL: str

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Bulk text ingestion (OpenAI-compatible chat completions endpoint)
    LLM_API_URL: str = "https://ai.gateway.lovable.dev/v1/chat/completions"
    LLM_API_KEY: Optional[str] = None
    LLM_MODEL: str = "google/gemini-2.5-flash"
    LLM_TIMEOUT_SECONDS: float = 60.0

    # Match notification dispatch; unset URL disables delivery
    NOTIFICATION_WEBHOOK_URL: Optional[str] = None
    NOTIFICATION_SECRET: str = ""
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
