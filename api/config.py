"""
API configuration settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class APIConfig(BaseSettings):
    """API configuration settings."""

    # API Settings
    api_title: str = "Stundenplan Monitor API"
    api_version: str = "1.0.0"

    # Server Settings
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # CORS Settings
    cors_origins: list = ["*"]
    cors_allow_methods: list = ["GET", "POST", "OPTIONS"]
    cors_allow_headers: list = ["*"]

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="API_",
        env_file=".env",
        extra="ignore",  # Ignore extra fields from .env
    )


# Global config instance
config = APIConfig()
