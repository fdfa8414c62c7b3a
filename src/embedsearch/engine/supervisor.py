"""
Engine process supervision.

Binds exactly one running engine to one data directory for an instance's
lifetime::

    NOT_STARTED -> STARTING -> READY -> STOPPING -> STOPPED
                   STARTING -> FAILED
"""

import asyncio
import contextlib
import socket
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import httpx
import structlog

from embedsearch.engine.config import InstanceConfig
from embedsearch.engine.launcher import EngineLauncher, MeilisearchLauncher
from embedsearch.engine.lock import DataDirectoryLock
from embedsearch.errors import InstanceStartupError, StartupTimeoutError

logger = structlog.get_logger()

# Readiness probe backoff bounds (seconds)
INITIAL_BACKOFF = 0.05
MAX_BACKOFF = 1.0
LOG_TAIL_BYTES = 2048


class EngineState(str, Enum):
    NOT_STARTED = "not_started"
    STARTING = "starting"
    READY = "ready"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class EngineHandle:
    """Everything the protocol client needs to reach a running engine."""

    url: str
    pid: int
    data_directory: Path
    api_key: Optional[str] = None


def find_free_port(host: str) -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


def read_log_tail(path: Path, size: int = LOG_TAIL_BYTES) -> str:
    try:
        with open(path, "rb") as f:
            f.seek(0, 2)
            f.seek(max(0, f.tell() - size))
            return f.read().decode(errors="replace").strip()
    except OSError:
        return ""


class EngineSupervisor:
    """Owns the lifecycle of one engine process."""

    def __init__(
        self,
        config: InstanceConfig,
        name: str = "default",
        launcher: Optional[EngineLauncher] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            config: Instance configuration
            name: Owning instance name, recorded in the directory lock
            launcher: Launch strategy (defaults to the Meilisearch binary)
            transport: httpx transport for readiness probes (tests inject one)
        """
        self.config = config
        self.name = name
        self._launcher = launcher or MeilisearchLauncher()
        self._transport = transport
        self._lock = DataDirectoryLock(config.lock_path, owner=name)
        self._process: Optional[asyncio.subprocess.Process] = None
        self._handle: Optional[EngineHandle] = None
        self._state = EngineState.NOT_STARTED

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def handle(self) -> Optional[EngineHandle]:
        return self._handle

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    def _set_state(self, state: EngineState) -> None:
        logger.debug("engine_state_changed", instance=self.name, old=self._state.value, new=state.value)
        self._state = state

    def is_alive(self) -> bool:
        return (
            self._state == EngineState.READY
            and self._process is not None
            and self._process.returncode is None
        )

    async def start(self) -> EngineHandle:
        """
        Launch the engine and wait until it accepts requests.

        Raises:
            InstanceStartupError: binary missing, directory locked or
                unwritable, engine exited during startup, or readiness timeout
        """
        if self._state == EngineState.READY and self._handle:
            return self._handle
        if self._state != EngineState.NOT_STARTED:
            raise RuntimeError(f"Supervisor for '{self.name}' cannot start from state {self._state.value}")

        self._set_state(EngineState.STARTING)
        started = time.monotonic()
        try:
            self._lock.acquire()
            port = self.config.port or find_free_port(self.config.host)
            http_addr = f"{self.config.host}:{port}"
            url = f"http://{http_addr}"

            self._process = await self._launcher.launch(self.config, http_addr)
            await self._wait_until_ready(url)
        except BaseException as e:
            # Includes cancellation of the caller's wait: never leak a process or lock
            await self._teardown()
            self._set_state(EngineState.FAILED)
            if isinstance(e, InstanceStartupError):
                logger.error("engine_start_failed", instance=self.name, **e.to_dict())
            raise

        self._handle = EngineHandle(
            url=url,
            pid=self._process.pid,
            data_directory=self.config.data_directory,
            api_key=self.config.api_key,
        )
        self._set_state(EngineState.READY)
        logger.info(
            "engine_ready",
            instance=self.name,
            url=url,
            pid=self._process.pid,
            startup_sec=round(time.monotonic() - started, 3),
        )
        return self._handle

    async def _wait_until_ready(self, url: str) -> None:
        """Poll /health with backoff; transport errors are retried until the deadline."""
        timeout = self.config.readiness_timeout
        deadline = time.monotonic() + timeout
        backoff = INITIAL_BACKOFF
        headers = {"Authorization": f"Bearer {self.config.api_key}"} if self.config.api_key else None

        async with httpx.AsyncClient(
            base_url=url, headers=headers, timeout=min(timeout, 5.0), transport=self._transport
        ) as client:
            while True:
                returncode = self._process.returncode if self._process else None
                if returncode is not None:
                    raise InstanceStartupError(
                        InstanceStartupError.BIND_FAILED,
                        f"Engine exited with code {returncode} during startup: "
                        f"{read_log_tail(self.config.log_path) or 'no output'}",
                        str(self.config.data_directory),
                    )

                try:
                    resp = await client.get("/health")
                    if resp.status_code == 200 and resp.json().get("status") == "available":
                        return
                except (httpx.TransportError, ValueError):
                    pass

                if time.monotonic() >= deadline:
                    raise StartupTimeoutError(
                        f"Engine at {url} not ready within {timeout}s",
                        timeout=timeout,
                        data_directory=str(self.config.data_directory),
                    )

                await asyncio.sleep(backoff)
                backoff = min(backoff * 1.5, MAX_BACKOFF)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self.config.shutdown_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "engine_stop_timeout",
                instance=self.name,
                pid=process.pid,
                message=f"Engine did not exit within {self.config.shutdown_timeout}s, killing",
            )
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()

    async def _teardown(self) -> None:
        try:
            if self._process is not None:
                await self._terminate(self._process)
        finally:
            self._lock.release()

    async def stop(self) -> None:
        """Stop the engine gracefully, force-killing if needed. Always releases the lock."""
        if self._state in (EngineState.STOPPED, EngineState.FAILED, EngineState.NOT_STARTED):
            self._lock.release()
            return

        self._set_state(EngineState.STOPPING)
        try:
            await self._teardown()
        finally:
            self._handle = None
            self._set_state(EngineState.STOPPED)
            logger.info("engine_stopped", instance=self.name)
