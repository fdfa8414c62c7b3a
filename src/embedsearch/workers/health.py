"""
Health check server for supervised search instances.
"""

from typing import Any, Dict

from fastapi import FastAPI
from uvicorn import Config, Server

from embedsearch.instances.manager import InstanceManager
from embedsearch.platform.config import settings
from embedsearch.platform.logging import get_logger

logger = get_logger(__name__)


def create_health_app(manager: InstanceManager) -> FastAPI:
    """Create FastAPI application for health checks."""
    app = FastAPI(title="embedsearch Health", version=settings.VERSION)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        """Report the engine health of every registered instance."""
        checks: Dict[str, Any] = {}
        is_healthy = True

        for name in sorted(manager.list_instances()):
            instance = manager.get_instance(name)
            if instance is None:
                # Destroyed while we were iterating
                continue
            try:
                healthy = await instance.health_check()
                checks[name] = {
                    "status": "healthy" if healthy else "unhealthy",
                    "state": instance.supervisor.state.value,
                    "pid": instance.supervisor.pid,
                    "url": instance.url,
                    "data_directory": str(instance.data_directory),
                }
                if not healthy:
                    is_healthy = False
            except Exception as e:
                checks[name] = {"status": f"error: {str(e)}"}
                is_healthy = False

        return {
            "status": "alive" if is_healthy else "degraded",
            "version": settings.VERSION,
            "instances": checks,
        }

    return app


async def start_health_server(manager: InstanceManager, port: int | None = None) -> None:
    """
    Start a lightweight HTTP server for health checks.

    Args:
        manager: The InstanceManager whose instances are reported.
        port: Port to listen on (defaults to settings.HEALTH_PORT).
    """
    app = create_health_app(manager)

    listen_port = port or settings.HEALTH_PORT
    logger.info("health_server_starting", port=listen_port)

    config = Config(
        app=app,
        host="127.0.0.1",
        port=listen_port,
        log_level="error",  # structlog covers our own logging
        loop="asyncio",
    )
    server = Server(config)

    await server.serve()
