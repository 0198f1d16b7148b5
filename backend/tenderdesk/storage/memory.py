"""In-process document store used for development and tests."""

import copy
import inspect
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable

from tenderdesk.exceptions import DocumentNotFoundError
from tenderdesk.storage.base import (
    Document,
    DocumentStore,
    Filters,
    SubscriptionCallback,
    matches_filter,
    resolve_server_timestamps,
    sort_documents,
)

logger = logging.getLogger(__name__)


class _Listener:
    def __init__(self, callback: SubscriptionCallback, filters: Filters | None):
        self.callback = callback
        self.filters = filters
        self.active = True


class MemoryDocumentStore(DocumentStore):
    """Dict-of-dicts store with synchronous change notification.

    Every write notifies the collection's listeners with the full,
    re-queried result set before the write call returns.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._collections: dict[str, dict[str, Document]] = {}
        self._listeners: dict[str, list[_Listener]] = {}
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _collection(self, name: str) -> dict[str, Document]:
        return self._collections.setdefault(name, {})

    def _prepare(self, data: Document) -> Document:
        data = resolve_server_timestamps(data, self._clock())
        data.pop("id", None)
        return copy.deepcopy(data)

    @staticmethod
    def _export(doc_id: str, data: Document) -> Document:
        doc = copy.deepcopy(data)
        doc["id"] = doc_id
        return doc

    def _select(self, collection: str, filters: Filters | None) -> list[Document]:
        return [
            self._export(doc_id, data)
            for doc_id, data in self._collection(collection).items()
            if matches_filter(data, filters)
        ]

    async def _notify(self, collection: str) -> None:
        for listener in list(self._listeners.get(collection, [])):
            if listener.active:
                await self._deliver(listener, self._select(collection, listener.filters), None)

    @staticmethod
    async def _deliver(
        listener: _Listener, docs: list[Document] | None, error: Exception | None
    ) -> None:
        try:
            result = listener.callback(docs, error)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Subscription callback failed: {e}")

    async def add(self, collection: str, data: Document) -> str:
        doc_id = uuid.uuid4().hex
        self._collection(collection)[doc_id] = self._prepare(data)
        await self._notify(collection)
        return doc_id

    async def set(self, collection: str, doc_id: str, data: Document) -> None:
        self._collection(collection)[doc_id] = self._prepare(data)
        await self._notify(collection)

    async def get(self, collection: str, doc_id: str) -> Document | None:
        data = self._collection(collection).get(doc_id)
        if data is None:
            return None
        return self._export(doc_id, data)

    async def update(self, collection: str, doc_id: str, data: Document) -> None:
        docs = self._collection(collection)
        if doc_id not in docs:
            raise DocumentNotFoundError(collection, doc_id)
        docs[doc_id].update(self._prepare(data))
        await self._notify(collection)

    async def delete(self, collection: str, doc_id: str) -> None:
        if self._collection(collection).pop(doc_id, None) is not None:
            await self._notify(collection)

    async def query(
        self,
        collection: str,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        docs = sort_documents(self._select(collection, filters), order_by, descending)
        if limit is not None:
            docs = docs[:limit]
        return docs

    async def subscribe(
        self,
        collection: str,
        callback: SubscriptionCallback,
        filters: Filters | None = None,
    ) -> Callable[[], None]:
        listener = _Listener(callback, filters)
        self._listeners.setdefault(collection, []).append(listener)
        await self._deliver(listener, self._select(collection, filters), None)

        def unsubscribe() -> None:
            listener.active = False
            listeners = self._listeners.get(collection, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    async def fail_subscribers(self, collection: str, error: Exception) -> None:
        """Push an error to every listener of a collection."""
        for listener in list(self._listeners.get(collection, [])):
            if listener.active:
                await self._deliver(listener, None, error)

    def listener_count(self, collection: str) -> int:
        return len(self._listeners.get(collection, []))
