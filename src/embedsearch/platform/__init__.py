"""Cross-cutting concerns: configuration and structured logging."""

from .config import Settings, get_settings, settings
from .logging import bind_instance, configure_logging, get_logger

__all__ = ["Settings", "get_settings", "settings", "bind_instance", "configure_logging", "get_logger"]
