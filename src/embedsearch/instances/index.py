"""
Index Handle - lightweight, shareable facade over one index of one instance.

A handle stores only names. Every call re-resolves the instance through the
manager, so a handle never talks to a destroyed engine: it raises
InstanceNotFoundError instead.
"""

import secrets
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Union

import structlog
from pydantic import ValidationError

from embedsearch.errors import EmbedSearchError, EncodingError, EngineError
from embedsearch.protocol import codec
from embedsearch.protocol.base import DocumentId, SearchClient
from embedsearch.protocol.models import (
    DocumentsPage,
    IndexDump,
    IndexInfo,
    IndexSettings,
    IndexStats,
    Query,
    SearchResult,
    Task,
)

if TYPE_CHECKING:
    from embedsearch.instances.manager import InstanceManager

logger = structlog.get_logger()

# Page size used when walking every document of an index
EXPORT_BATCH_SIZE = 1000

# Staging indexes are named <uid><suffix><random hex> while a replacement loads
STAGING_SUFFIX = "__staging_"


def build_query(query: Union[Query, str, None] = None, **options: Any) -> Query:
    """Build a Query from text, an existing Query, and keyword overrides."""
    try:
        if isinstance(query, Query):
            if not options:
                return query
            # Copy attribute values so Filter and SortBy objects survive unchanged
            data = {name: getattr(query, name) for name in query.model_fields_set}
            data.update(options)
            return Query(**data)
        return Query(q=query, **options)
    except ValidationError as e:
        raise EncodingError("query", str(e)) from e


class IndexHandle:
    """Document and search operations on one index."""

    def __init__(self, manager: "InstanceManager", instance_name: str, uid: str):
        self._manager = manager
        self._instance_name = instance_name
        self._uid = uid

    @property
    def uid(self) -> str:
        return self._uid

    @property
    def instance_name(self) -> str:
        return self._instance_name

    def _client(self) -> SearchClient:
        return self._manager.require_instance(self._instance_name).client

    def __repr__(self) -> str:
        return f"IndexHandle(instance={self._instance_name!r}, uid={self._uid!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IndexHandle):
            return NotImplemented
        return (
            self._manager is other._manager
            and self._instance_name == other._instance_name
            and self._uid == other._uid
        )

    def __hash__(self) -> int:
        return hash((id(self._manager), self._instance_name, self._uid))

    # =========================================================================
    # INDEX LIFECYCLE
    # =========================================================================

    async def create(self, primary_key: Optional[str] = None) -> Task:
        return await self._client().create_index(self._uid, primary_key)

    async def delete(self) -> Task:
        return await self._client().delete_index(self._uid)

    async def info(self) -> IndexInfo:
        return await self._client().get_index(self._uid)

    async def update_primary_key(self, primary_key: str) -> Task:
        """Set the primary key. The engine refuses once the index holds documents."""
        return await self._client().update_index(self._uid, primary_key)

    async def stats(self) -> IndexStats:
        return await self._client().get_stats(self._uid)

    # =========================================================================
    # DOCUMENTS
    # =========================================================================

    async def add_documents(
        self, documents: Sequence[Dict[str, Any]], primary_key: Optional[str] = None
    ) -> Task:
        """Add documents, replacing existing ones with the same id. Creates the index if needed."""
        return await self._client().add_or_replace_documents(self._uid, documents, primary_key)

    async def update_documents(
        self, documents: Sequence[Dict[str, Any]], primary_key: Optional[str] = None
    ) -> Task:
        """Add documents, merging into existing ones with the same id."""
        return await self._client().add_or_update_documents(self._uid, documents, primary_key)

    async def set_documents(
        self,
        documents: Sequence[Dict[str, Any]],
        primary_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Task:
        """
        Replace every document in the index, keeping its settings.

        The new documents are loaded into a staging index that is then swapped
        in, so readers see either the old set or the new one. If the load
        fails the index is left untouched and the task error is raised.
        Returns the completed swap task.
        """
        return await self._replace_contents(documents, primary_key, None, timeout)

    async def delete_documents(self, document_ids: Sequence[DocumentId]) -> Task:
        return await self._client().delete_documents(self._uid, document_ids)

    async def delete_document(self, document_id: DocumentId) -> Task:
        return await self._client().delete_document(self._uid, document_id)

    async def delete_all_documents(self) -> Task:
        return await self._client().delete_all_documents(self._uid)

    async def get_document(
        self, document_id: DocumentId, fields: Optional[Sequence[str]] = None
    ) -> Dict[str, Any]:
        """Fetch one document. Raises EngineError (``document_not_found``) if absent."""
        return await self._client().get_document(self._uid, document_id, fields)

    async def get_documents(
        self, offset: int = 0, limit: int = 20, fields: Optional[Sequence[str]] = None
    ) -> DocumentsPage:
        if offset < 0 or limit < 0:
            raise EncodingError("query", "offset and limit must be non-negative")
        return await self._client().get_documents(self._uid, offset, limit, fields)

    async def get_all_documents(self, batch_size: int = EXPORT_BATCH_SIZE) -> List[Dict[str, Any]]:
        documents: List[Dict[str, Any]] = []
        offset = 0
        while True:
            page = await self.get_documents(offset=offset, limit=batch_size)
            documents.extend(page.results)
            offset += len(page.results)
            if not page.results or offset >= page.total:
                return documents

    async def number_of_documents(self) -> int:
        return (await self.stats()).number_of_documents

    # =========================================================================
    # SEARCH
    # =========================================================================

    async def search(self, query: Union[Query, str, None] = None, **options: Any) -> SearchResult:
        """
        Search the index.

        Args:
            query: Search text, a Query, or None to match every document
            **options: Query fields (limit, offset, filter, sort, facets, ...)
        """
        return await self._client().search(self._uid, build_query(query, **options))

    # =========================================================================
    # SETTINGS
    # =========================================================================

    async def get_settings(self) -> IndexSettings:
        return await self._client().get_settings(self._uid)

    async def update_settings(self, settings: Union[IndexSettings, Dict[str, Any]]) -> Task:
        if isinstance(settings, dict):
            try:
                settings = IndexSettings.model_validate(settings)
            except ValidationError as e:
                raise EncodingError("settings", str(e)) from e
        return await self._client().update_settings(self._uid, settings)

    async def reset_settings(self) -> Task:
        return await self._client().reset_settings(self._uid)

    # =========================================================================
    # TASKS
    # =========================================================================

    async def wait_for_task(
        self, task: Union[Task, int], timeout: Optional[float] = None
    ) -> Task:
        task_uid = task.uid if isinstance(task, Task) else task
        return await self._client().wait_for_task(task_uid, timeout=timeout)

    # =========================================================================
    # DUMPS
    # =========================================================================

    async def export_dump(self) -> IndexDump:
        """Copy the primary key, settings and all documents of this index."""
        info = await self.info()
        dump = IndexDump(
            primary_key=info.primary_key,
            settings=await self.get_settings(),
            documents=await self.get_all_documents(),
        )
        logger.info("index_exported", index=self._uid, documents=len(dump.documents))
        return dump

    async def import_dump(self, dump: IndexDump, timeout: Optional[float] = None) -> Task:
        """Replace this index with a dump: primary key, settings and documents."""
        task = await self._replace_contents(dump.documents, dump.primary_key, dump.settings, timeout)
        logger.info("index_imported", index=self._uid, documents=len(dump.documents), task_uid=task.uid)
        return task

    async def _replace_contents(
        self,
        documents: Sequence[Dict[str, Any]],
        primary_key: Optional[str],
        settings: Optional[IndexSettings],
        timeout: Optional[float],
    ) -> Task:
        codec.encode_documents(documents)
        client = self._client()

        try:
            current: Optional[IndexInfo] = await client.get_index(self._uid)
        except EngineError as e:
            if not e.is_not_found:
                raise
            current = None
        if current is not None:
            primary_key = primary_key or current.primary_key
            if settings is None:
                settings = await client.get_settings(self._uid)

        staging = f"{self._uid}{STAGING_SUFFIX}{secrets.token_hex(4)}"
        try:
            steps = [await client.create_index(staging, primary_key)]
            if settings is not None:
                steps.append(await client.update_settings(staging, settings))
            steps.append(await client.add_or_replace_documents(staging, documents, primary_key))
            for step in steps:
                (await client.wait_for_task(step.uid, timeout=timeout)).raise_for_status()

            if current is None:
                created = await client.wait_for_task(
                    (await client.create_index(self._uid, primary_key)).uid, timeout=timeout
                )
                if created.engine_error is not None and created.engine_error.code != "index_already_exists":
                    raise created.engine_error

            swap = await client.swap_indexes([(self._uid, staging)])
            swap = (await client.wait_for_task(swap.uid, timeout=timeout)).raise_for_status()
        finally:
            await self._drop_staging(client, staging)

        logger.info("index_contents_replaced", index=self._uid, documents=len(documents), task_uid=swap.uid)
        return swap

    async def _drop_staging(self, client: SearchClient, staging: str) -> None:
        try:
            await client.delete_index(staging)
        except EmbedSearchError as e:
            logger.warning("staging_index_cleanup_failed", index=self._uid, staging=staging, error=str(e))
