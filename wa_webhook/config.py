from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Environment variables take precedence over the .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - required from .env
    DATABASE_URL: str

    # Connect/busy timeout passed to the database driver, in seconds
    DB_TIMEOUT_SECONDS: float = 5.0

    # Logging Configuration - required from .env
    LOG_LEVEL: str

    # Webhook Security - required from .env
    WEBHOOK_SECRET: str
    SIGNATURE_HEADER: str = "X-Hub-Signature-256"

    # Account used when the payload does not identify one (single-tenant)
    WHATSAPP_ACCOUNT_NUMBER: str = "UNKNOWN"
    WHATSAPP_ACCOUNT_NAME: str = "UNKNOWN"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
