"""Application configuration using Pydantic Settings"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=Path(__file__).parent.parent / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Twitch OAuth (empty values surface as ProviderConfigError on use)
    client_id: str = Field(default="", description="Twitch OAuth Client ID")
    client_secret: str = Field(default="", description="Twitch OAuth Client Secret")

    # JWT Configuration
    jwt_secret_key: str = Field(..., description="Secret key for JWT token signing")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_expire_days: int = Field(default=7, description="JWT token expiration in days")
    jwt_issuer: str = Field(default="chatvibes-auth", description="JWT issuer claim")
    jwt_audience: str = Field(default="chatvibes-api", description="JWT audience claim")

    # Database
    database_url: str = Field(..., description="PostgreSQL database URL")
    secret_encryption_key: str = Field(
        ..., description="Fernet key used to encrypt secret payloads at rest"
    )

    # Server URLs
    frontend_url: str = Field(default="http://localhost:5173", description="Frontend URL")
    callback_url: str = Field(
        default="http://localhost:8000/auth/twitch/callback",
        description="OAuth redirect URI registered with Twitch",
    )
    obs_browser_base_url: str = Field(
        default="http://localhost:5173/obs", description="Base URL of the OBS browser source"
    )

    # Bot
    bot_username: str = Field(default="chatvibestts", description="Bot account login")
    allowed_channels: str = Field(
        default="", description="Comma-separated channel allow-list; empty allows all"
    )

    # Environment
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    @property
    def allowed_channel_list(self) -> list[str]:
        return [c.strip().lower() for c in self.allowed_channels.split(",") if c.strip()]

    @property
    def cors_origins(self) -> list[str]:
        return [self.frontend_url]

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()  # type: ignore[call-arg]
