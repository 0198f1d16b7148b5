"""Document store interface shared by the in-memory and MongoDB backends."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Union

logger = logging.getLogger(__name__)


class _ServerTimestamp:
    """Sentinel replaced by the store's clock when a document is written."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()

Document = dict[str, Any]
Filters = dict[str, Any]
SubscriptionCallback = Callable[
    [list[Document] | None, Exception | None], Union[None, Awaitable[None]]
]

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "$eq": lambda a, b: a == b,
    "$ne": lambda a, b: a != b,
    "$gt": lambda a, b: a is not None and a > b,
    "$gte": lambda a, b: a is not None and a >= b,
    "$lt": lambda a, b: a is not None and a < b,
    "$lte": lambda a, b: a is not None and a <= b,
    "$in": lambda a, b: a in b,
}


def matches_filter(doc: Document, filters: Filters | None) -> bool:
    """Evaluate a Mongo-style filter subset against a plain dict."""
    if not filters:
        return True

    for field, condition in filters.items():
        value = doc.get(field)
        if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            for op, operand in condition.items():
                check = _OPERATORS.get(op)
                if check is None:
                    raise ValueError(f"Unsupported filter operator: {op}")
                try:
                    if not check(value, operand):
                        return False
                except TypeError:
                    return False
        elif value != condition:
            return False
    return True


def resolve_server_timestamps(data: Document, now: datetime) -> Document:
    """Replace SERVER_TIMESTAMP sentinels with `now` (top level only)."""
    return {k: (now if v is SERVER_TIMESTAMP else v) for k, v in data.items()}


def coerce_datetime(value: Any) -> datetime | None:
    """Best-effort conversion of stored timestamps to aware datetimes.

    Accepts datetimes, ISO-8601 strings, epoch milliseconds and
    ``{"seconds": ...}`` mappings. Naive values are taken as UTC.
    Returns None for anything unparseable.
    """
    if value is None or isinstance(value, bool):
        return None

    result: datetime | None = None
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, (int, float)):
        try:
            result = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            result = datetime.fromisoformat(text)
        except ValueError:
            return None
    elif isinstance(value, dict) and "seconds" in value:
        try:
            result = datetime.fromtimestamp(float(value["seconds"]), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            return None
    else:
        return None

    if result.tzinfo is None:
        result = result.replace(tzinfo=timezone.utc)
    return result


def coerce_amount(value: Any) -> float:
    """Parse a stored monetary amount. Blank or unparseable values become 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if not value:
            return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def coerce_text(value: Any) -> str:
    """Stored text fields may arrive as numbers or null."""
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _sort_key(value: Any) -> tuple[int, Any]:
    # None sorts first; datetimes compare as timestamps to mix aware values safely
    if value is None:
        return (0, 0)
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return (1, dt.timestamp())
    if isinstance(value, (int, float)):
        return (1, value)
    return (2, str(value))


def sort_documents(
    docs: list[Document], order_by: str | None, descending: bool = False
) -> list[Document]:
    if not order_by:
        return docs
    return sorted(docs, key=lambda d: _sort_key(d.get(order_by)), reverse=descending)


class DocumentStore(ABC):
    """Async CRUD, query and live-subscription primitives over named collections."""

    @abstractmethod
    async def add(self, collection: str, data: Document) -> str:
        """Insert a document with a generated id and return the id."""

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: Document) -> None:
        """Create or replace the document with the given id."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document | None:
        """Fetch a single document, or None if missing."""

    @abstractmethod
    async def update(self, collection: str, doc_id: str, data: Document) -> None:
        """Merge fields into an existing document.

        Raises DocumentNotFoundError if the document does not exist.
        """

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document. Missing documents are ignored."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        """Return documents matching `filters`, optionally ordered and limited."""

    @abstractmethod
    async def subscribe(
        self,
        collection: str,
        callback: SubscriptionCallback,
        filters: Filters | None = None,
    ) -> Callable[[], None]:
        """Deliver the current result set, then a fresh one after every change.

        On failure the callback receives ``(None, error)``. Returns a function
        that cancels the subscription; callers must invoke it on teardown.
        """

    async def close(self) -> None:
        """Release backend resources."""
        return None
