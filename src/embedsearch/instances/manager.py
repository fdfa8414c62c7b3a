"""
Instance Manager - process-wide registry of supervised search engines.

Maps a logical instance name to its running engine and protocol client.
Instances are created lazily on first lookup and destroyed explicitly.
"""

import asyncio
import contextlib
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional, Set

import httpx
import structlog

from embedsearch.engine.config import InstanceConfig
from embedsearch.engine.launcher import EngineLauncher
from embedsearch.engine.supervisor import EngineSupervisor
from embedsearch.errors import InstanceNotFoundError, InstanceStartupError
from embedsearch.instances.index import IndexHandle
from embedsearch.platform.config import settings
from embedsearch.protocol.meilisearch import MeiliSearchClient

logger = structlog.get_logger()

DEFAULT_INSTANCE = "default"


class Instance:
    """A named, supervised engine bound to one data directory."""

    def __init__(
        self,
        name: str,
        config: InstanceConfig,
        supervisor: EngineSupervisor,
        client: MeiliSearchClient,
        manager: "InstanceManager",
    ):
        self.name = name
        self.config = config
        self.supervisor = supervisor
        self.client = client
        self._manager = manager
        self._destroyed = False

    @property
    def data_directory(self) -> Path:
        return self.config.data_directory

    @property
    def url(self) -> str:
        return self.client.url

    @property
    def is_live(self) -> bool:
        return not self._destroyed and self.supervisor.is_alive()

    def index(self, uid: str) -> IndexHandle:
        """Get a handle to an index of this instance."""
        return IndexHandle(self._manager, self.name, uid)

    async def health_check(self) -> bool:
        return self.is_live and await self.client.health_check()

    async def _shutdown(self) -> None:
        self._destroyed = True
        try:
            await self.client.close()
        finally:
            await self.supervisor.stop()

    def __repr__(self) -> str:
        return f"Instance(name={self.name!r}, data_directory={str(self.data_directory)!r}, live={self.is_live})"


class InstanceManager:
    """
    Registry of live instances keyed by name.

    Creation and destruction are serialized per name; concurrent creations
    of the same name share one engine startup. Dispatch on a live instance
    takes no lock.
    """

    def __init__(
        self,
        launcher: Optional[EngineLauncher] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        data_root: Optional[Path | str] = None,
    ):
        """
        Args:
            launcher: Engine launch strategy shared by all instances
            transport: httpx transport for readiness probes and clients
            data_root: Parent of default data directories (DATA_ROOT)
        """
        self._launcher = launcher
        self._transport = transport
        self._data_root = Path(data_root or settings.DATA_ROOT)
        self._instances: Dict[str, Instance] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def _serialized(self, name: str) -> AsyncIterator[None]:
        """Hold the per-name lock; the entry is dropped once nobody holds or awaits it."""
        lock = self._locks.setdefault(name, asyncio.Lock())
        self._lock_users[name] = self._lock_users.get(name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[name] -= 1
            if not self._lock_users[name]:
                del self._lock_users[name]
                del self._locks[name]

    @staticmethod
    def _check_same_directory(instance: Instance, data_directory: Optional[Path | str]) -> None:
        if data_directory is None:
            return
        if Path(data_directory).resolve() != instance.data_directory.resolve():
            raise InstanceStartupError(
                InstanceStartupError.NAME_CONFLICT,
                f"Instance '{instance.name}' is already running on {instance.data_directory}",
                str(data_directory),
            )

    async def get_or_create_instance(
        self,
        name: str = DEFAULT_INSTANCE,
        data_directory: Optional[Path | str] = None,
        **options: Any,
    ) -> Instance:
        """
        Return the live instance called ``name``, starting it if needed.

        Args:
            name: Instance name
            data_directory: Engine data directory (default DATA_ROOT/<name>)
            **options: InstanceConfig overrides (master_key, engine_binary_path,
                readiness_timeout, ...)

        Raises:
            InstanceStartupError: If the engine cannot be started
        """
        instance = self._instances.get(name)
        if instance is not None and instance.is_live:
            self._check_same_directory(instance, data_directory)
            return instance

        async with self._serialized(name):
            instance = self._instances.get(name)
            if instance is not None:
                if instance.is_live:
                    self._check_same_directory(instance, data_directory)
                    return instance
                logger.warning("instance_engine_not_alive", instance=name, state=instance.supervisor.state.value)
                self._instances.pop(name, None)
                await instance._shutdown()

            directory = Path(data_directory) if data_directory is not None else self._data_root / name
            config = InstanceConfig.from_settings(directory, **options)
            supervisor = EngineSupervisor(
                config, name=name, launcher=self._launcher, transport=self._transport
            )
            handle = await supervisor.start()

            client = MeiliSearchClient(
                handle.url,
                api_key=handle.api_key,
                timeout=config.request_timeout,
                transport=self._transport,
            )
            await client.connect()

            instance = Instance(name, config, supervisor, client, self)
            self._instances[name] = instance
            logger.info("instance_created", instance=name, data_directory=str(directory), url=handle.url)
            return instance

    async def default_instance(self) -> Instance:
        return await self.get_or_create_instance(DEFAULT_INSTANCE)

    def get_instance(self, name: str) -> Optional[Instance]:
        """Pure lookup; never starts an engine."""
        return self._instances.get(name)

    def require_instance(self, name: str) -> Instance:
        instance = self._instances.get(name)
        if instance is None:
            raise InstanceNotFoundError(name)
        return instance

    def get_index(self, uid: str, instance_name: str = DEFAULT_INSTANCE) -> IndexHandle:
        return IndexHandle(self, instance_name, uid)

    def list_instances(self) -> Set[str]:
        return set(self._instances)

    async def destroy_instance(self, name: str) -> None:
        """Stop the engine and release its directory. No-op for unknown names."""
        async with self._serialized(name):
            instance = self._instances.pop(name, None)
            if instance is None:
                return
            await instance._shutdown()
            logger.info("instance_destroyed", instance=name)

    async def shutdown(self) -> None:
        """Destroy every instance."""
        errors = []
        for name in list(self._instances):
            try:
                await self.destroy_instance(name)
            except Exception as e:
                logger.error("instance_shutdown_failed", instance=name, error=str(e))
                errors.append(e)
        if errors:
            raise errors[0]


# =============================================================================
# PROCESS-WIDE REGISTRY
# =============================================================================

_manager: Optional[InstanceManager] = None


def get_instance_manager() -> InstanceManager:
    """Get the process-wide manager, creating an empty one on first use."""
    global _manager
    if _manager is None:
        _manager = InstanceManager()
    return _manager


async def shutdown_all() -> None:
    """Destroy every instance and reset the process-wide registry."""
    global _manager
    if _manager is not None:
        manager, _manager = _manager, None
        await manager.shutdown()


async def default_instance() -> Instance:
    return await get_instance_manager().default_instance()


async def get_or_create_instance(
    name: str = DEFAULT_INSTANCE, data_directory: Optional[Path | str] = None, **options: Any
) -> Instance:
    return await get_instance_manager().get_or_create_instance(name, data_directory, **options)


def get_instance(name: str) -> Optional[Instance]:
    return get_instance_manager().get_instance(name)


async def destroy_instance(name: str) -> None:
    await get_instance_manager().destroy_instance(name)


def list_instances() -> Set[str]:
    return get_instance_manager().list_instances()


def get_index(uid: str, instance_name: str = DEFAULT_INSTANCE) -> IndexHandle:
    return get_instance_manager().get_index(uid, instance_name)
