"""
embedsearch Serve Entry Point

Starts one supervised search instance and keeps it running with a health
endpoint until interrupted.
Usage:
    python -m embedsearch.workers.main [--name NAME] [--data-dir DIR] [--health-port PORT]
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

from embedsearch.instances.manager import DEFAULT_INSTANCE, InstanceManager
from embedsearch.platform.config import settings
from embedsearch.platform.logging import bind_instance, configure_logging, get_logger
from embedsearch.workers.health import start_health_server

logger = get_logger(__name__)


class ServeManager:
    """Manages the lifecycle of a served instance."""

    def __init__(self, manager: Optional[InstanceManager] = None):
        self.manager = manager or InstanceManager()
        self._shutdown_event = asyncio.Event()
        self._health_task: Optional[asyncio.Task] = None

    async def start(self, name: str, data_directory: Optional[str], health_port: int) -> None:
        """Start the instance and the health server, then wait for shutdown."""
        bind_instance(name)
        logger.info("serve_starting", data_directory=data_directory)

        instance = await self.manager.get_or_create_instance(name, data_directory)
        logger.info("serve_ready", url=instance.url, pid=instance.supervisor.pid)

        self._health_task = asyncio.create_task(
            start_health_server(self.manager, health_port), name="health-check-server"
        )

        # Keep running until shutdown
        await self._shutdown_event.wait()

    async def shutdown(self) -> None:
        """Stop the health server and destroy every instance."""
        logger.info("serve_shutting_down")

        if self._health_task is not None:
            self._health_task.cancel()

        try:
            await self.manager.shutdown()
        except Exception as e:
            logger.error("serve_shutdown_failed", error=str(e))

        self._shutdown_event.set()
        logger.info("serve_shutdown_complete")


def parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="embedsearch", description="Run a supervised search engine instance")
    parser.add_argument("--name", default=DEFAULT_INSTANCE, help="instance name")
    parser.add_argument("--data-dir", default=None, help="engine data directory (default DATA_ROOT/<name>)")
    parser.add_argument("--health-port", type=int, default=settings.HEALTH_PORT, help="health endpoint port")
    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    configure_logging()
    args = parse_args(sys.argv[1:] if argv is None else argv)

    serve = ServeManager()

    # Setup signal handlers
    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(serve.shutdown()))

    try:
        await serve.start(args.name, args.data_dir, args.health_port)
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.error("serve_failed", error=str(e), exc_info=True)
        await serve.shutdown()
        sys.exit(1)


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
