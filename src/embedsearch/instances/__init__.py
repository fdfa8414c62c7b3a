"""Instance registry and index handles."""

from .index import IndexHandle, build_query
from .manager import (
    DEFAULT_INSTANCE,
    Instance,
    InstanceManager,
    default_instance,
    destroy_instance,
    get_index,
    get_instance,
    get_instance_manager,
    get_or_create_instance,
    list_instances,
    shutdown_all,
)

__all__ = [
    "DEFAULT_INSTANCE",
    "IndexHandle",
    "Instance",
    "InstanceManager",
    "build_query",
    "default_instance",
    "destroy_instance",
    "get_index",
    "get_instance",
    "get_instance_manager",
    "get_or_create_instance",
    "list_instances",
    "shutdown_all",
]
