"""
Configuration Utility - Environment Variables Management

Centralized configuration loading from .env files using pydantic-settings.
Type-safe access to all environment variables with validation.

Usage:
    from utils.config import settings

    redis_url = settings.REDIS_URL
    ttl = settings.ETL_RESULT_TTL
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://redis:6379/0")
    REDIS_MAX_CONNECTIONS: int = Field(default=10)
    REDIS_CONNECT_RETRIES: int = Field(default=3)
    REDIS_CHANNEL_EVENTS: str = Field(default="portal.jobs.events")

    # Queue Configuration
    QUEUE_PREFIX: str = Field(default="portal:queue")
    QUEUE_BACKEND: str = Field(default="auto")  # auto | redis | memory | inline
    QUEUE_POLL_INTERVAL: float = Field(default=0.5)
    WORKER_SHUTDOWN_TIMEOUT: float = Field(default=30.0)

    # Result Cache Configuration
    CACHE_PREFIX: str = Field(default="portal:cache")
    ETL_RESULT_TTL: int = Field(default=21600)

    # File System Paths
    UPLOAD_DIR: str = Field(default="/app/data/uploads")

    # Compliance Rules
    RAM_MIN_GB: int = Field(default=16)
    DISK_REQUIRED_TYPE: str = Field(default="SSD")
    DISK_MIN_GB: int = Field(default=500)
    OS_ALLOWED: list[str] = Field(default=["Windows 11"])
    HO_MIN_DOWNLOAD_MBPS: int = Field(default=15)
    HO_MIN_UPLOAD_MBPS: int = Field(default=6)
    HO_ENFORCE_UPLOAD: bool = Field(default=False)
    PENALTY_RAM: int = Field(default=20)
    PENALTY_DISK: int = Field(default=15)
    PENALTY_OS: int = Field(default=10)
    PENALTY_HO_BANDWIDTH: int = Field(default=10)
    COMPLETENESS_WEIGHT: float = Field(default=50.0)

    # Maintenance Schedule
    CLEAN_SCHEDULE_CRON: str = Field(default="0 2 * * *")
    STATS_REPORT_CRON: str = Field(default="0 9 * * 1")
    CLEAN_GRACE_MS: int = Field(default=86_400_000)
    CLEAN_LIMIT: int = Field(default=1000)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")

    # Application Metadata
    ENVIRONMENT: str = Field(default="production")
    APP_NAME: str = Field(default="audit-jobs-backend")
    APP_VERSION: str = Field(default="0.1.0")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Singleton Settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()
