"""
embedsearch - Embedded full-text search engine bridge

This package runs a Meilisearch engine as a supervised local subprocess and
exposes typed handles to its indexes:
- instances: named engine registry and index handles
- engine: process supervision, readiness and data-directory locking
- protocol: wire models, document codec, filters and the HTTP client
- workers: health endpoint and long-running serve entry point
- platform: cross-cutting concerns (configuration, logging)

Typical use::

    instance = await embedsearch.default_instance()
    movies = instance.index("movies")
    task = await movies.add_documents([{"id": 1, "title": "Jurassic Park"}])
    await movies.wait_for_task(task)
    result = await movies.search("jurassic")
"""

from .errors import (
    EmbedSearchError,
    EncodingError,
    EngineError,
    EngineStartupError,
    EngineTimeoutError,
    InstanceNotFoundError,
    InstanceStartupError,
    StartupTimeoutError,
    TransportError,
)
from .instances import (
    IndexHandle,
    Instance,
    InstanceManager,
    default_instance,
    destroy_instance,
    get_index,
    get_instance,
    get_or_create_instance,
    list_instances,
    shutdown_all,
)
from .protocol import IndexSettings, Query, SearchResult, SortBy, Task, TaskStatus

__version__ = "0.1.0"

__all__ = [
    # Registry
    "default_instance",
    "destroy_instance",
    "get_index",
    "get_instance",
    "get_or_create_instance",
    "list_instances",
    "shutdown_all",
    "Instance",
    "InstanceManager",
    "IndexHandle",
    # Models
    "IndexSettings",
    "Query",
    "SearchResult",
    "SortBy",
    "Task",
    "TaskStatus",
    # Errors
    "EmbedSearchError",
    "EncodingError",
    "EngineError",
    "EngineStartupError",
    "EngineTimeoutError",
    "InstanceNotFoundError",
    "InstanceStartupError",
    "StartupTimeoutError",
    "TransportError",
]
