import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar
from urllib.parse import quote

import httpx
import structlog
from pydantic import ValidationError

from embedsearch.errors import EngineError, EngineTimeoutError, TransportError, map_engine_error
from embedsearch.platform.config import settings
from embedsearch.protocol import codec
from embedsearch.protocol.base import DocumentId, SearchClient
from embedsearch.protocol.models import (
    DocumentsPage,
    IndexInfo,
    IndexSettings,
    IndexStats,
    Query,
    SearchResult,
    Task,
)

logger = structlog.get_logger()

T = TypeVar("T")


def _doc_path(uid: str, document_id: DocumentId) -> str:
    return f"/indexes/{quote(uid, safe='')}/documents/{quote(str(document_id), safe='')}"


def _index_path(uid: str, suffix: str = "") -> str:
    return f"/indexes/{quote(uid, safe='')}{suffix}"


def _documents_page(data: Dict[str, Any]) -> DocumentsPage:
    data["results"] = [codec.decode_value(d) for d in data.get("results", [])]
    return DocumentsPage.model_validate(data)


def _search_result(data: Dict[str, Any]) -> SearchResult:
    data["hits"] = [codec.decode_value(h) for h in data.get("hits", [])]
    return SearchResult.from_wire(data)


class MeiliSearchClient(SearchClient):
    """Meilisearch implementation of SearchClient using httpx for async."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        task_timeout: Optional[float] = None,
        task_interval: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._url = url
        self._api_key = api_key
        self._timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT_SEC
        self._task_timeout = task_timeout if task_timeout is not None else settings.TASK_WAIT_TIMEOUT_SEC
        self._task_interval = task_interval if task_interval is not None else settings.TASK_POLL_INTERVAL_SEC
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    @property
    def url(self) -> str:
        return self._url

    async def connect(self) -> None:
        if not self.client:
            headers = {}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self.client = httpx.AsyncClient(
                base_url=self._url,
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
            )

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None

    async def _ensure_connected(self):
        if not self.client:
            await self.connect()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        content: Optional[bytes] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Send one request; raise TransportError or the mapped EngineError on failure."""
        await self._ensure_connected()
        headers = {"Content-Type": "application/json"} if content is not None else None
        try:
            resp = await self.client.request(
                method, path, json=json, content=content, params=params, headers=headers
            )
        except httpx.TransportError as e:
            logger.error("meilisearch_transport_failed", method=method, path=path, error=str(e))
            raise TransportError(f"{method} {path} failed: {e}", url=self._url) from e

        if resp.is_success:
            return resp

        try:
            payload = resp.json()
        except ValueError:
            payload = None
        error = map_engine_error(resp.status_code, payload, resp.text)
        logger.warning(
            "meilisearch_request_rejected",
            method=method,
            path=path,
            status=resp.status_code,
            code=error.code,
        )
        raise error

    def _parse(self, resp: httpx.Response, parse: Callable[[Any], T]) -> T:
        """Decode a successful response; a body that does not fit raises EngineError."""
        try:
            return parse(resp.json())
        except (ValueError, ValidationError, TypeError, AttributeError, KeyError) as e:
            path = resp.request.url.path
            logger.error("meilisearch_response_malformed", path=path, status=resp.status_code, error=str(e))
            raise EngineError(
                "malformed_response",
                f"Unexpected response body from {path}: {e}",
                error_type="internal",
                status_code=resp.status_code,
            ) from e

    async def _task(self, method: str, path: str, **kwargs: Any) -> Task:
        resp = await self._request(method, path, **kwargs)
        task = self._parse(resp, Task.model_validate)
        logger.debug("meilisearch_task_enqueued", path=path, task_uid=task.uid, type=task.type)
        return task

    async def health_check(self) -> bool:
        await self._ensure_connected()
        try:
            resp = await self.client.get("/health")
            return resp.status_code == 200 and resp.json().get("status") == "available"
        except (httpx.HTTPError, ValueError) as e:
            logger.error("meilisearch_health_check_failed", error=str(e))
            return False

    # =========================================================================
    # INDEXES
    # =========================================================================

    async def create_index(self, uid: str, primary_key: Optional[str] = None) -> Task:
        payload: Dict[str, Any] = {"uid": uid}
        if primary_key is not None:
            payload["primaryKey"] = primary_key
        task = await self._task("POST", "/indexes", json=payload)
        logger.info("created_meilisearch_index", index=uid, task_uid=task.uid)
        return task

    async def get_index(self, uid: str) -> IndexInfo:
        resp = await self._request("GET", _index_path(uid))
        return self._parse(resp, IndexInfo.model_validate)

    async def list_indexes(self, offset: int = 0, limit: int = 20) -> List[IndexInfo]:
        resp = await self._request("GET", "/indexes", params={"offset": offset, "limit": limit})
        return self._parse(resp, lambda data: [IndexInfo.model_validate(i) for i in data.get("results", [])])

    async def update_index(self, uid: str, primary_key: str) -> Task:
        return await self._task("PATCH", _index_path(uid), json={"primaryKey": primary_key})

    async def delete_index(self, uid: str) -> Task:
        return await self._task("DELETE", _index_path(uid))

    async def get_stats(self, uid: str) -> IndexStats:
        resp = await self._request("GET", _index_path(uid, "/stats"))
        return self._parse(resp, IndexStats.model_validate)

    async def swap_indexes(self, pairs: Sequence[Tuple[str, str]]) -> Task:
        task = await self._task(
            "POST", "/swap-indexes", json=[{"indexes": [a, b]} for a, b in pairs]
        )
        logger.info("swapped_meilisearch_indexes", pairs=[list(p) for p in pairs], task_uid=task.uid)
        return task

    # =========================================================================
    # DOCUMENTS
    # =========================================================================

    async def _write_documents(
        self,
        method: str,
        uid: str,
        documents: Sequence[Dict[str, Any]],
        primary_key: Optional[str],
    ) -> Task:
        # Encode first so shape errors surface before anything reaches the engine
        body = codec.encode_documents(documents)
        params = {"primaryKey": primary_key} if primary_key else None
        task = await self._task(
            method, _index_path(uid, "/documents"), content=body, params=params
        )
        logger.debug("indexed_documents", index=uid, count=len(documents), task_uid=task.uid)
        return task

    async def add_or_replace_documents(
        self, uid: str, documents: Sequence[Dict[str, Any]], primary_key: Optional[str] = None
    ) -> Task:
        return await self._write_documents("POST", uid, documents, primary_key)

    async def add_or_update_documents(
        self, uid: str, documents: Sequence[Dict[str, Any]], primary_key: Optional[str] = None
    ) -> Task:
        return await self._write_documents("PUT", uid, documents, primary_key)

    async def delete_documents(self, uid: str, document_ids: Sequence[DocumentId]) -> Task:
        task = await self._task(
            "POST", _index_path(uid, "/documents/delete-batch"), json=list(document_ids)
        )
        logger.debug("deleted_documents", index=uid, count=len(document_ids), task_uid=task.uid)
        return task

    async def delete_document(self, uid: str, document_id: DocumentId) -> Task:
        return await self._task("DELETE", _doc_path(uid, document_id))

    async def delete_all_documents(self, uid: str) -> Task:
        return await self._task("DELETE", _index_path(uid, "/documents"))

    async def get_document(
        self, uid: str, document_id: DocumentId, fields: Optional[Sequence[str]] = None
    ) -> Dict[str, Any]:
        params = {"fields": ",".join(fields)} if fields else None
        resp = await self._request("GET", _doc_path(uid, document_id), params=params)
        return codec.decode_document(resp.content)

    async def get_documents(
        self,
        uid: str,
        offset: int = 0,
        limit: int = 20,
        fields: Optional[Sequence[str]] = None,
    ) -> DocumentsPage:
        params: Dict[str, Any] = {"offset": offset, "limit": limit}
        if fields:
            params["fields"] = ",".join(fields)
        resp = await self._request("GET", _index_path(uid, "/documents"), params=params)
        return self._parse(resp, _documents_page)

    # =========================================================================
    # SEARCH
    # =========================================================================

    async def search(self, uid: str, query: Query) -> SearchResult:
        resp = await self._request("POST", _index_path(uid, "/search"), json=query.to_payload())
        return self._parse(resp, _search_result)

    # =========================================================================
    # SETTINGS
    # =========================================================================

    async def get_settings(self, uid: str) -> IndexSettings:
        resp = await self._request("GET", _index_path(uid, "/settings"))
        return self._parse(resp, IndexSettings.from_engine)

    async def update_settings(self, uid: str, settings: IndexSettings) -> Task:
        return await self._task("PATCH", _index_path(uid, "/settings"), json=settings.to_payload())

    async def reset_settings(self, uid: str) -> Task:
        return await self._task("DELETE", _index_path(uid, "/settings"))

    # =========================================================================
    # TASKS
    # =========================================================================

    async def get_task(self, task_uid: int) -> Task:
        resp = await self._request("GET", f"/tasks/{task_uid}")
        return self._parse(resp, Task.model_validate)

    async def wait_for_task(
        self,
        task_uid: int,
        timeout: Optional[float] = None,
        interval: Optional[float] = None,
    ) -> Task:
        timeout = self._task_timeout if timeout is None else timeout
        interval = self._task_interval if interval is None else interval
        deadline = time.monotonic() + timeout

        while True:
            task = await self.get_task(task_uid)
            if task.is_terminal:
                if task.error:
                    logger.warning(
                        "meilisearch_task_failed",
                        task_uid=task_uid,
                        code=task.error.get("code"),
                        message=task.error.get("message"),
                    )
                return task
            if time.monotonic() >= deadline:
                raise EngineTimeoutError(
                    f"Task {task_uid} still {task.status.value} after {timeout}s", timeout=timeout
                )
            await asyncio.sleep(interval)
