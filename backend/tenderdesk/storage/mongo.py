"""
MongoDB document store backed by Motor (async driver).

This module provides:
- A DocumentStore implementation over Motor collections
- Live subscriptions via change streams (requires a replica set)
- Health check and connection info utilities
"""

import asyncio
import inspect
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError, ServerSelectionTimeoutError

from tenderdesk.exceptions import DocumentNotFoundError
from tenderdesk.storage.base import (
    Document,
    DocumentStore,
    Filters,
    SubscriptionCallback,
    resolve_server_timestamps,
)

logger = logging.getLogger(__name__)


class MongoDocumentStore(DocumentStore):
    """Document store over a single MongoDB database.

    Document ids are stored as string ``_id`` values and exposed as ``id``.
    """

    def __init__(
        self,
        url: str,
        database: str,
        environment: str = "development",
        client: AsyncIOMotorClient | None = None,
    ):
        self._url = url
        self._database_name = database
        self._environment = environment
        self._client = client or AsyncIOMotorClient(
            url, tz_aware=True, serverSelectionTimeoutMS=5000
        )
        self._watch_tasks: set[asyncio.Task] = set()

    @property
    def database(self) -> AsyncIOMotorDatabase:
        return self._client[self._database_name]

    @staticmethod
    def _prepare(data: Document) -> Document:
        data = resolve_server_timestamps(data, datetime.now(timezone.utc))
        data.pop("id", None)
        data.pop("_id", None)
        return data

    @staticmethod
    def _export(raw: dict[str, Any]) -> Document:
        doc = dict(raw)
        doc["id"] = str(doc.pop("_id"))
        return doc

    async def add(self, collection: str, data: Document) -> str:
        doc_id = uuid.uuid4().hex
        await self.database[collection].insert_one({"_id": doc_id, **self._prepare(data)})
        return doc_id

    async def set(self, collection: str, doc_id: str, data: Document) -> None:
        await self.database[collection].replace_one(
            {"_id": doc_id}, self._prepare(data), upsert=True
        )

    async def get(self, collection: str, doc_id: str) -> Document | None:
        raw = await self.database[collection].find_one({"_id": doc_id})
        return self._export(raw) if raw else None

    async def update(self, collection: str, doc_id: str, data: Document) -> None:
        result = await self.database[collection].update_one(
            {"_id": doc_id}, {"$set": self._prepare(data)}
        )
        if result.matched_count == 0:
            raise DocumentNotFoundError(collection, doc_id)

    async def delete(self, collection: str, doc_id: str) -> None:
        await self.database[collection].delete_one({"_id": doc_id})

    async def query(
        self,
        collection: str,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        cursor = self.database[collection].find(filters or {})
        if order_by:
            cursor = cursor.sort(order_by, DESCENDING if descending else ASCENDING)
        if limit is not None:
            cursor = cursor.limit(limit)
        return [self._export(raw) async for raw in cursor]

    async def subscribe(
        self,
        collection: str,
        callback: SubscriptionCallback,
        filters: Filters | None = None,
    ) -> Callable[[], None]:
        async def deliver(docs: list[Document] | None, error: Exception | None) -> None:
            try:
                result = callback(docs, error)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Subscription callback failed: {e}")

        await deliver(await self.query(collection, filters), None)

        async def watch() -> None:
            try:
                async with self.database[collection].watch() as stream:
                    async for _change in stream:
                        await deliver(await self.query(collection, filters), None)
            except asyncio.CancelledError:
                raise
            except PyMongoError as e:
                logger.error(f"Change stream on {collection} failed: {e}")
                await deliver(None, e)

        task = asyncio.create_task(watch())
        self._watch_tasks.add(task)
        task.add_done_callback(self._watch_tasks.discard)

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def ping(self) -> bool:
        """Check if MongoDB connection is healthy."""
        try:
            await self._client.admin.command("ping")
            return True
        except ServerSelectionTimeoutError:
            return False
        except PyMongoError as e:
            logger.warning(f"MongoDB ping failed: {e}")
            return False

    def get_info(self) -> dict:
        """Get database connection information."""
        return {
            "backend": "mongo",
            "url": _sanitize_mongodb_url(self._url),
            "database": self._database_name,
            "environment": self._environment,
        }

    async def close(self) -> None:
        for task in list(self._watch_tasks):
            task.cancel()
        self._client.close()


def _sanitize_mongodb_url(url: str) -> str:
    """
    Hide password in MongoDB URL for safe logging.
    """
    if "@" not in url or "://" not in url:
        return url

    protocol, rest = url.split("://", 1)
    credentials, host = rest.rsplit("@", 1)
    if ":" in credentials:
        username = credentials.split(":", 1)[0]
        return f"{protocol}://{username}:***@{host}"
    return url
