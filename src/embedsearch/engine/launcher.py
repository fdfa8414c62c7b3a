"""
Engine launch strategies.

The supervisor only needs something that behaves like
``asyncio.subprocess.Process`` (``pid``, ``returncode``, ``terminate()``,
``kill()``, ``await wait()``); how the engine gets started is up to the
launcher.
"""

import asyncio
import os
import shutil
from abc import ABC, abstractmethod
from typing import List

import structlog

from embedsearch.engine.config import InstanceConfig
from embedsearch.errors import InstanceStartupError

logger = structlog.get_logger()

DEFAULT_BINARY = "meilisearch"


class EngineLauncher(ABC):
    """Starts one engine process for an instance."""

    @abstractmethod
    async def launch(self, config: InstanceConfig, http_addr: str) -> asyncio.subprocess.Process:
        """
        Start the engine.

        Args:
            config: Instance configuration (data directory, key, binary)
            http_addr: ``host:port`` the engine must listen on

        Raises:
            InstanceStartupError: If the engine cannot be started
        """
        ...


class MeilisearchLauncher(EngineLauncher):
    """Runs the Meilisearch binary as a child process."""

    def resolve_binary(self, config: InstanceConfig) -> str:
        directory = str(config.data_directory)
        if config.engine_binary_path:
            path = config.engine_binary_path
            if os.path.isfile(path) and os.access(path, os.X_OK):
                return path
            raise InstanceStartupError(
                InstanceStartupError.BINARY_NOT_FOUND,
                f"Engine binary {path} does not exist or is not executable",
                directory,
            )
        found = shutil.which(DEFAULT_BINARY)
        if not found:
            raise InstanceStartupError(
                InstanceStartupError.BINARY_NOT_FOUND,
                f"'{DEFAULT_BINARY}' not found on PATH; set ENGINE_BINARY_PATH",
                directory,
            )
        return found

    def build_command(self, binary: str, config: InstanceConfig, http_addr: str) -> List[str]:
        cmd = [
            binary,
            "--db-path",
            str(config.db_path),
            "--http-addr",
            http_addr,
            "--env",
            config.engine_env,
        ]
        if config.no_analytics:
            cmd.append("--no-analytics")
        return cmd

    async def launch(self, config: InstanceConfig, http_addr: str) -> asyncio.subprocess.Process:
        binary = self.resolve_binary(config)
        cmd = self.build_command(binary, config, http_addr)

        env = dict(os.environ)
        # Passed through the environment so the key never shows up in process listings
        if config.api_key:
            env["MEILI_MASTER_KEY"] = config.api_key
        else:
            env.pop("MEILI_MASTER_KEY", None)

        try:
            with open(config.log_path, "ab") as log:
                process = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=log,
                    stderr=log,
                    env=env,
                    start_new_session=True,
                )
        except OSError as e:
            raise InstanceStartupError(
                InstanceStartupError.LAUNCH_FAILED,
                f"Failed to launch {binary}: {e}",
                str(config.data_directory),
            ) from e

        logger.info("engine_process_launched", pid=process.pid, http_addr=http_addr, binary=binary)
        return process
