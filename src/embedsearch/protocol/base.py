"""
Command protocol interface for the embedded full-text search engine.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .models import (
    DocumentsPage,
    IndexInfo,
    IndexSettings,
    IndexStats,
    Query,
    SearchResult,
    Task,
)

DocumentId = Union[str, int]


class SearchClient(ABC):
    """
    Abstract interface for engine command round trips.

    Writes return a Task as soon as the engine accepts them; reads return
    final results. Failures raise EngineError or TransportError.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the transport."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the transport."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the engine is reachable and available."""
        pass

    # Indexes

    @abstractmethod
    async def create_index(self, uid: str, primary_key: Optional[str] = None) -> Task:
        pass

    @abstractmethod
    async def get_index(self, uid: str) -> IndexInfo:
        pass

    @abstractmethod
    async def list_indexes(self, offset: int = 0, limit: int = 20) -> List[IndexInfo]:
        pass

    @abstractmethod
    async def update_index(self, uid: str, primary_key: str) -> Task:
        """Set the primary key of an index that has no documents yet."""
        pass

    @abstractmethod
    async def delete_index(self, uid: str) -> Task:
        pass

    @abstractmethod
    async def get_stats(self, uid: str) -> IndexStats:
        pass

    @abstractmethod
    async def swap_indexes(self, pairs: Sequence[Tuple[str, str]]) -> Task:
        """Atomically exchange the contents of each pair of indexes."""
        pass

    # Documents

    @abstractmethod
    async def add_or_replace_documents(
        self, uid: str, documents: Sequence[Dict[str, Any]], primary_key: Optional[str] = None
    ) -> Task:
        """Add documents, replacing any existing document with the same id."""
        pass

    @abstractmethod
    async def add_or_update_documents(
        self, uid: str, documents: Sequence[Dict[str, Any]], primary_key: Optional[str] = None
    ) -> Task:
        """Add documents, merging fields into any existing document with the same id."""
        pass

    @abstractmethod
    async def delete_documents(self, uid: str, document_ids: Sequence[DocumentId]) -> Task:
        pass

    @abstractmethod
    async def delete_document(self, uid: str, document_id: DocumentId) -> Task:
        pass

    @abstractmethod
    async def delete_all_documents(self, uid: str) -> Task:
        pass

    @abstractmethod
    async def get_document(
        self, uid: str, document_id: DocumentId, fields: Optional[Sequence[str]] = None
    ) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_documents(
        self,
        uid: str,
        offset: int = 0,
        limit: int = 20,
        fields: Optional[Sequence[str]] = None,
    ) -> DocumentsPage:
        pass

    # Search

    @abstractmethod
    async def search(self, uid: str, query: Query) -> SearchResult:
        """
        Search documents.

        Args:
            uid: Index name
            query: Search request; ``query.q=None`` matches every document
        """
        pass

    # Settings

    @abstractmethod
    async def get_settings(self, uid: str) -> IndexSettings:
        pass

    @abstractmethod
    async def update_settings(self, uid: str, settings: IndexSettings) -> Task:
        pass

    @abstractmethod
    async def reset_settings(self, uid: str) -> Task:
        pass

    # Tasks

    @abstractmethod
    async def get_task(self, task_uid: int) -> Task:
        pass

    @abstractmethod
    async def wait_for_task(
        self,
        task_uid: int,
        timeout: Optional[float] = None,
        interval: Optional[float] = None,
    ) -> Task:
        """Poll a task until it is terminal, raising EngineTimeoutError past ``timeout``."""
        pass
