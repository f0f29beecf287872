from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic_core import to_jsonable_python

from maestro_crm.services.document_store import (
    ArrayUnion,
    DocumentSnapshot,
    FieldFilter,
    WriteBatch,
    WriteOperation,
)
from maestro_crm.services.exceptions import DownstreamServiceError, TransactionFailure

logger = logging.getLogger(__name__)


def _encode_value(value: Any) -> Any:
    if isinstance(value, ArrayUnion):
        return {"__op__": "arrayUnion", "values": to_jsonable_python(value.values)}
    return to_jsonable_python(value)


def _encode_data(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if data is None:
        return None
    return {key: _encode_value(value) for key, value in data.items()}


class HttpDocumentStore:
    """Async HTTP client for a document-store gateway.

    The gateway exposes one resource per collection::

        GET    /collections/{collection}/documents/{id}
        POST   /collections/{collection}:query
        POST   /collections/{collection}/documents
        POST   /batches:commit
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        token: str | None = None,
        poll_interval: float = 2.0,
    ) -> None:
        self._base_url = str(base_url).rstrip("/")
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._client: Optional[httpx.AsyncClient] = None

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=self._headers,
        )

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._build_client()
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self, method: str, path: str, *, payload: Dict[str, Any] | None = None
    ) -> httpx.Response:
        client = await self._ensure_client()
        try:
            response = await client.request(method, path, json=payload)
            if response.status_code == 404 and method == "GET":
                return response
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if path.startswith("/batches") and status in (400, 409, 412):
                raise TransactionFailure(
                    f"Batch rejected by the document store ({status})", cause=exc
                ) from exc
            logger.exception("Document store returned error %s", status)
            raise DownstreamServiceError(
                "Document store returned an error response",
                status_code=status,
                cause=exc,
            ) from exc
        except httpx.RequestError as exc:
            logger.exception("Unable to reach document store: %s", exc)
            raise DownstreamServiceError(
                "Unable to reach document store", status_code=None, cause=exc
            ) from exc

    def new_id(self, collection: str) -> str:
        # ids are generated client-side so they can be referenced inside a batch
        return secrets.token_hex(10)

    async def get_document(self, collection: str, document_id: str) -> DocumentSnapshot:
        response = await self._request(
            "GET", f"/collections/{collection}/documents/{document_id}"
        )
        if response.status_code == 404:
            return DocumentSnapshot(collection, document_id, None)
        body = response.json()
        return DocumentSnapshot(collection, document_id, body.get("data"))

    async def query_documents(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[DocumentSnapshot]:
        payload: Dict[str, Any] = {
            "filters": [
                {"field": item.field, "op": item.op, "value": to_jsonable_python(item.value)}
                for item in filters
            ]
        }
        if order_by:
            payload["orderBy"] = {"field": order_by, "descending": descending}
        response = await self._request(
            "POST", f"/collections/{collection}:query", payload=payload
        )
        return [
            DocumentSnapshot(collection, item["id"], item.get("data") or {})
            for item in response.json().get("documents", [])
        ]

    def subscribe(
        self,
        collection: str,
        *,
        document_id: Optional[str] = None,
        filters: Sequence[FieldFilter] = (),
    ) -> "PollingSubscription":
        return PollingSubscription(
            self,
            collection,
            document_id=document_id,
            filters=filters,
            interval=self._poll_interval,
        )

    def batch(self) -> WriteBatch:
        return WriteBatch(self._commit)

    async def _commit(self, operations: List[WriteOperation]) -> None:
        payload = {
            "writes": [
                {
                    "kind": operation.kind,
                    "collection": operation.collection,
                    "id": operation.document_id,
                    "data": _encode_data(operation.data),
                }
                for operation in operations
            ]
        }
        await self._request("POST", "/batches:commit", payload=payload)

    async def append(self, collection: str, data: Dict[str, Any]) -> str:
        response = await self._request(
            "POST",
            f"/collections/{collection}/documents",
            payload={"data": _encode_data(data)},
        )
        return str(response.json()["id"])


class PollingSubscription:
    """Emulates a change feed by polling and yielding changed snapshots."""

    def __init__(
        self,
        store: HttpDocumentStore,
        collection: str,
        *,
        document_id: Optional[str],
        filters: Sequence[FieldFilter],
        interval: float,
    ) -> None:
        self._store = store
        self.collection = collection
        self.document_id = document_id
        self.filters = tuple(filters)
        self._interval = interval
        self._last: Any = None
        self._started = False
        self.closed = False

    async def _fetch(self) -> Any:
        if self.document_id is not None:
            return await self._store.get_document(self.collection, self.document_id)
        return await self._store.query_documents(self.collection, self.filters)

    def __aiter__(self) -> "PollingSubscription":
        return self

    async def __anext__(self) -> Any:
        while not self.closed:
            if self._started:
                await asyncio.sleep(self._interval)
            self._started = True
            current = await self._fetch()
            if current != self._last:
                self._last = current
                return current
        raise StopAsyncIteration

    def close(self) -> None:
        self.closed = True
