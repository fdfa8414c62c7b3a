"""Health endpoint and serve entry point."""

from .health import create_health_app, start_health_server

__all__ = ["create_health_app", "start_health_server"]
