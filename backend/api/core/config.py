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

    # MemeLab identity provider
    memelab_api_url: str = Field(
        default="https://memelab.ru/api", description="MemeLab API base URL"
    )
    identity_timeout: float = Field(default=10.0, description="Profile lookup timeout (seconds)")

    # Request authentication
    jwt_cookie_name: str = Field(default="token", description="Cookie carrying the MemeLab JWT")
    session_secret: str = Field(default="", description="Key for credential digests")
    auth_cache_prefix: str = Field(default="auth:profile:", description="Profile cache key prefix")
    auth_cache_ttl: int = Field(default=300, description="Profile cache TTL in seconds")
    auth_cache_maxsize: int = Field(default=1024, description="Max cached profiles")

    # Webhooks
    webhook_secret: str = Field(default="", description="Shared secret for MemeLab webhooks")

    # Database / queue
    database_url: str = Field(default="", description="PostgreSQL database URL")
    queue_url: str = Field(default="", description="PostgreSQL URL for the job queue")
    run_migrations: bool = Field(default=True, description="Apply SQL migrations on startup")
    queue_concurrency: int = Field(default=3, description="Concurrent announcement jobs")
    queue_max_attempts: int = Field(default=5, description="Attempts before a job is dead")
    queue_backoff_seconds: float = Field(default=3.0, description="Base exponential backoff")
    queue_poll_interval: float = Field(default=1.0, description="Idle worker poll interval")
    job_timeout: float = Field(default=30.0, description="Per-job processing timeout")
    job_lease_margin: float = Field(
        default=30.0, description="Seconds past job_timeout before a claimed job is requeued"
    )
    queue_sweep_interval: float = Field(default=60.0, description="Expired-lease sweep interval")
    run_worker: bool = Field(default=True, description="Process announcement jobs in this process")

    # Telegram delivery
    telegram_bot_token: str = Field(default="", description="Global Telegram bot token")
    telegram_timeout: float = Field(default=15.0, description="Telegram API timeout (seconds)")
    bot_token_encryption_key: str = Field(
        default="", description="64-char hex key for custom bot tokens"
    )

    # Server URLs
    frontend_url: str = Field(default="http://localhost:5173", description="Frontend URL for CORS")
    memelab_site_url: str = Field(default="https://memelab.ru", description="Public MemeLab URL")

    # Environment
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3000, description="Server port")

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

    @field_validator("memelab_api_url", "memelab_site_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS allowed origins"""
        return [self.frontend_url]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment"""
        return self.environment.lower() == "development"

    @property
    def effective_queue_url(self) -> str:
        """Queue store URL; falls back to the main database"""
        return self.queue_url or self.database_url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
