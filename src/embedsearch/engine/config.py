"""
Per-instance engine configuration.
"""

import secrets
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from embedsearch.platform.config import settings

DB_DIRNAME = "data.ms"
LOCK_FILENAME = "engine.lock"
LOG_FILENAME = "engine.log"


class InstanceConfig(BaseModel):
    """Configuration recognized when an instance is created."""

    model_config = ConfigDict(extra="forbid")

    data_directory: Path
    master_key: Optional[SecretStr] = None
    engine_binary_path: Optional[str] = None
    readiness_timeout: float = Field(30.0, gt=0)
    shutdown_timeout: float = Field(10.0, gt=0)
    request_timeout: float = Field(10.0, gt=0)
    host: str = "127.0.0.1"
    port: int = Field(0, ge=0, le=65535)
    engine_env: str = "development"
    no_analytics: bool = True

    @classmethod
    def from_settings(cls, data_directory: Path | str, **overrides: Any) -> "InstanceConfig":
        """Build a config from application settings, with explicit overrides winning."""
        values: dict[str, Any] = {
            "data_directory": Path(data_directory),
            "master_key": settings.MASTER_KEY,
            "engine_binary_path": settings.ENGINE_BINARY_PATH,
            "readiness_timeout": settings.READINESS_TIMEOUT_SEC,
            "shutdown_timeout": settings.SHUTDOWN_TIMEOUT_SEC,
            "request_timeout": settings.REQUEST_TIMEOUT_SEC,
            "host": settings.ENGINE_HOST,
            "port": settings.ENGINE_PORT,
            "engine_env": settings.ENGINE_ENV,
            "no_analytics": settings.ENGINE_NO_ANALYTICS,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        config = cls(**values)
        # Production engines refuse to start without a master key
        if config.master_key is None and config.engine_env == "production":
            config = config.model_copy(update={"master_key": SecretStr(secrets.token_urlsafe(24))})
        return config

    @property
    def db_path(self) -> Path:
        return self.data_directory / DB_DIRNAME

    @property
    def lock_path(self) -> Path:
        return self.data_directory / LOCK_FILENAME

    @property
    def log_path(self) -> Path:
        return self.data_directory / LOG_FILENAME

    @property
    def api_key(self) -> Optional[str]:
        return self.master_key.get_secret_value() if self.master_key else None
