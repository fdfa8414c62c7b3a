"""Engine process supervision: launch, readiness, directory locking, shutdown."""

from .config import InstanceConfig
from .launcher import EngineLauncher, MeilisearchLauncher
from .lock import DataDirectoryLock
from .supervisor import EngineHandle, EngineState, EngineSupervisor

__all__ = [
    "InstanceConfig",
    "EngineLauncher",
    "MeilisearchLauncher",
    "DataDirectoryLock",
    "EngineHandle",
    "EngineState",
    "EngineSupervisor",
]
