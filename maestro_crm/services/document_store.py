"""Document store access layer.

Every workflow operation talks to the store through :class:`DocumentStore`.
Two implementations exist: :class:`MemoryDocumentStore` below, which keeps
collections in process and backs local runs and the test-suite, and
``maestro_crm.clients.store_http.HttpDocumentStore`` for a remote gateway.

Writes that must be observed together go through :meth:`DocumentStore.batch`;
a batch either applies every operation or none of them.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterator,
    Callable,
    DefaultDict,
    Dict,
    Iterable,
    List,
    NamedTuple,
    Optional,
    Protocol,
    Sequence,
    Tuple,
)

from pydantic import ValidationError as PydanticValidationError

from maestro_crm.services.exceptions import (
    NotFoundError,
    ServiceError,
    TransactionFailure,
    ValidationError,
)

logger = logging.getLogger(__name__)

USERS = "users"
SERVICE_REQUESTS = "serviceRequests"
QUOTES = "quotes"
AUDIT_LOGS = "auditLogs"
KNOWLEDGE_ARTICLES = "knowledgeArticles"
MAIL = "mail"

COLLECTIONS = (USERS, SERVICE_REQUESTS, QUOTES, AUDIT_LOGS, KNOWLEDGE_ARTICLES, MAIL)

_ID_PREFIXES = {
    USERS: "USR",
    SERVICE_REQUESTS: "SR",
    QUOTES: "QT",
    AUDIT_LOGS: "AUD",
    KNOWLEDGE_ARTICLES: "KB",
    MAIL: "MAIL",
}


class FieldFilter(NamedTuple):
    field: str
    op: str
    value: Any


_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": lambda left, right: left == right,
    "!=": lambda left, right: left != right,
    "in": lambda left, right: left in right,
    "not-in": lambda left, right: left not in right,
    "array-contains": lambda left, right: isinstance(left, list) and right in left,
    "array-contains-any": lambda left, right: isinstance(left, list)
    and any(item in left for item in right),
    ">": lambda left, right: left is not None and left > right,
    ">=": lambda left, right: left is not None and left >= right,
    "<": lambda left, right: left is not None and left < right,
    "<=": lambda left, right: left is not None and left <= right,
}


def matches(data: Dict[str, Any], filters: Iterable[FieldFilter]) -> bool:
    for item in filters:
        compare = _OPERATORS.get(item.op)
        if compare is None:
            raise ValueError(f"Unsupported filter operator '{item.op}'")
        if not compare(data.get(item.field), item.value):
            return False
    return True


@dataclass
class ArrayUnion:
    """Update sentinel appending values missing from an array field."""

    values: List[Any]


@dataclass
class DocumentSnapshot:
    collection: str
    id: str
    data: Optional[Dict[str, Any]] = None

    @property
    def exists(self) -> bool:
        return self.data is not None


@dataclass
class WriteOperation:
    kind: str  # set | update | delete
    collection: str
    document_id: str
    data: Optional[Dict[str, Any]] = None


@dataclass
class WriteBatch:
    """Collects writes and hands them to the store on :meth:`commit`."""

    _commit: Callable[[List[WriteOperation]], Any]
    operations: List[WriteOperation] = field(default_factory=list)

    def set(self, collection: str, document_id: str, data: Dict[str, Any]) -> "WriteBatch":
        self.operations.append(WriteOperation("set", collection, document_id, dict(data)))
        return self

    def update(self, collection: str, document_id: str, data: Dict[str, Any]) -> "WriteBatch":
        self.operations.append(WriteOperation("update", collection, document_id, dict(data)))
        return self

    def delete(self, collection: str, document_id: str) -> "WriteBatch":
        self.operations.append(WriteOperation("delete", collection, document_id))
        return self

    async def commit(self) -> None:
        if not self.operations:
            return
        await self._commit(list(self.operations))


class Subscription(Protocol):
    def __aiter__(self) -> AsyncIterator[Any]: ...

    async def __anext__(self) -> Any: ...

    def close(self) -> None: ...


class DocumentStore(Protocol):
    def new_id(self, collection: str) -> str: ...

    async def get_document(self, collection: str, document_id: str) -> DocumentSnapshot: ...

    async def query_documents(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[DocumentSnapshot]: ...

    def subscribe(
        self,
        collection: str,
        *,
        document_id: Optional[str] = None,
        filters: Sequence[FieldFilter] = (),
    ) -> Subscription: ...

    def batch(self) -> WriteBatch: ...

    async def append(self, collection: str, data: Dict[str, Any]) -> str: ...

    async def close(self) -> None: ...


def apply_update(current: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    updated = dict(current)
    for key, value in changes.items():
        if isinstance(value, ArrayUnion):
            existing = list(updated.get(key) or [])
            for item in value.values:
                if item not in existing:
                    existing.append(item)
            updated[key] = existing
        else:
            updated[key] = value
    return updated


def sort_snapshots(
    snapshots: List[DocumentSnapshot], order_by: Optional[str], descending: bool
) -> List[DocumentSnapshot]:
    if not order_by:
        return snapshots
    present = [snap for snap in snapshots if snap.data.get(order_by) is not None]
    missing = [snap for snap in snapshots if snap.data.get(order_by) is None]
    present.sort(key=lambda snap: snap.data[order_by], reverse=descending)
    return present + missing


class MemorySubscription:
    """Push stream of snapshots for one collection or document."""

    def __init__(
        self,
        store: "MemoryDocumentStore",
        collection: str,
        document_id: Optional[str],
        filters: Sequence[FieldFilter],
        *,
        max_pending: int = 16,
    ) -> None:
        self._store = store
        self.collection = collection
        self.document_id = document_id
        self.filters = tuple(filters)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self.closed = False

    def snapshot(self) -> Any:
        if self.document_id is not None:
            return self._store._snapshot(self.collection, self.document_id)
        return [
            snap
            for snap in self._store._all(self.collection)
            if matches(snap.data, self.filters)
        ]

    def push(self) -> None:
        if self.closed:
            return
        if self._queue.full():
            # readers that fall behind only ever need the latest state
            self._queue.get_nowait()
        self._queue.put_nowait(self.snapshot())

    def __aiter__(self) -> "MemorySubscription":
        return self

    async def __anext__(self) -> Any:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        return await self._queue.get()

    def close(self) -> None:
        self.closed = True
        self._store._detach(self)


class MemoryDocumentStore:
    def __init__(self) -> None:
        self._collections: DefaultDict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._counters: DefaultDict[str, itertools.count] = defaultdict(lambda: itertools.count(1))
        self._subscriptions: List[MemorySubscription] = []

    def new_id(self, collection: str) -> str:
        prefix = _ID_PREFIXES.get(collection, collection[:3].upper())
        while True:
            candidate = f"{prefix}-{next(self._counters[collection]):05d}"
            if candidate not in self._collections[collection]:
                return candidate

    def _snapshot(self, collection: str, document_id: str) -> DocumentSnapshot:
        data = self._collections[collection].get(document_id)
        return DocumentSnapshot(
            collection, document_id, copy.deepcopy(data) if data is not None else None
        )

    def _all(self, collection: str) -> List[DocumentSnapshot]:
        return [
            DocumentSnapshot(collection, document_id, copy.deepcopy(data))
            for document_id, data in self._collections[collection].items()
        ]

    async def get_document(self, collection: str, document_id: str) -> DocumentSnapshot:
        return self._snapshot(collection, document_id)

    async def query_documents(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[DocumentSnapshot]:
        results = [snap for snap in self._all(collection) if matches(snap.data, filters)]
        return sort_snapshots(results, order_by, descending)

    def subscribe(
        self,
        collection: str,
        *,
        document_id: Optional[str] = None,
        filters: Sequence[FieldFilter] = (),
    ) -> MemorySubscription:
        subscription = MemorySubscription(self, collection, document_id, filters)
        self._subscriptions.append(subscription)
        subscription.push()
        return subscription

    def _detach(self, subscription: MemorySubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def batch(self) -> WriteBatch:
        return WriteBatch(self._commit)

    async def append(self, collection: str, data: Dict[str, Any]) -> str:
        document_id = self.new_id(collection)
        await self.batch().set(collection, document_id, data).commit()
        return document_id

    async def _commit(self, operations: List[WriteOperation]) -> None:
        staged: Dict[Tuple[str, str], Optional[Dict[str, Any]]] = {}

        def current(collection: str, document_id: str) -> Optional[Dict[str, Any]]:
            key = (collection, document_id)
            if key in staged:
                return staged[key]
            return self._collections[collection].get(document_id)

        for operation in operations:
            key = (operation.collection, operation.document_id)
            if operation.kind == "set":
                staged[key] = copy.deepcopy(operation.data)
            elif operation.kind == "update":
                existing = current(*key)
                if existing is None:
                    raise TransactionFailure(
                        f"Batch rejected: {operation.collection}/{operation.document_id} does not exist"
                    )
                staged[key] = apply_update(existing, copy.deepcopy(operation.data))
            elif operation.kind == "delete":
                staged[key] = None
            else:
                raise TransactionFailure(f"Batch rejected: unknown operation '{operation.kind}'")

        for (collection, document_id), data in staged.items():
            if data is None:
                self._collections[collection].pop(document_id, None)
            else:
                self._collections[collection][document_id] = data

        logger.debug("Committed batch of %s operations", len(operations))
        touched = {collection for collection, _ in staged}
        for subscription in list(self._subscriptions):
            if subscription.collection in touched:
                subscription.push()

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.close()

    def dump(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        return {
            collection: copy.deepcopy(self._collections.get(collection, {}))
            for collection in COLLECTIONS
        }


def load_document(model, snapshot: DocumentSnapshot):
    """Validate a stored document into ``model``; missing documents raise ``NotFoundError``."""

    if not snapshot.exists:
        raise NotFoundError(snapshot.collection, snapshot.id)
    try:
        return model.from_document(snapshot.id, snapshot.data)
    except PydanticValidationError as exc:
        logger.warning("Rejected malformed document %s/%s", snapshot.collection, snapshot.id)
        raise ValidationError(
            f"Malformed document {snapshot.collection}/{snapshot.id}", cause=exc
        ) from exc


async def commit_batch(batch: WriteBatch, action: str) -> None:
    """Commit ``batch``; any failure surfaces once as a ``TransactionFailure``."""

    try:
        await batch.commit()
    except ServiceError:
        logger.warning("Batch for %s was not committed", action)
        raise
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected error while committing %s", action)
        raise TransactionFailure(f"Failed to commit {action}", cause=exc) from exc


_memory_store: Optional[MemoryDocumentStore] = None


def get_memory_store() -> MemoryDocumentStore:
    global _memory_store
    if _memory_store is None:
        _memory_store = MemoryDocumentStore()
    return _memory_store


def reset_memory_store() -> None:
    global _memory_store
    _memory_store = None
