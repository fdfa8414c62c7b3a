"""
embedsearch Configuration Management

Uses Pydantic Settings for type-safe configuration from environment variables.
"""

from functools import lru_cache
from typing import Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # =========================================================================
    # APPLICATION
    # =========================================================================
    APP_NAME: str = "embedsearch"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "info"
    VERSION: str = "0.1.0"

    # =========================================================================
    # DATA DIRECTORIES
    # =========================================================================
    # Instances without an explicit data directory live under DATA_ROOT/<name>
    DATA_ROOT: str = "data/embedsearch"

    # =========================================================================
    # EMBEDDED ENGINE (Meilisearch)
    # =========================================================================
    ENGINE_BINARY_PATH: Optional[str] = None
    ENGINE_HOST: str = "127.0.0.1"
    ENGINE_PORT: int = 0  # 0 picks a free loopback port per instance
    ENGINE_ENV: str = "development"
    ENGINE_NO_ANALYTICS: bool = True
    MASTER_KEY: Optional[SecretStr] = None

    # =========================================================================
    # TIMEOUTS
    # =========================================================================
    READINESS_TIMEOUT_SEC: float = 30.0
    SHUTDOWN_TIMEOUT_SEC: float = 10.0
    REQUEST_TIMEOUT_SEC: float = 10.0
    TASK_WAIT_TIMEOUT_SEC: float = 5.0
    TASK_POLL_INTERVAL_SEC: float = 0.05

    # =========================================================================
    # HEALTH SERVER
    # =========================================================================
    HEALTH_PORT: int = 8090

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Singleton instance for easy import
settings = get_settings()
