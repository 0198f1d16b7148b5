"""Tests for the in-memory document store and shared filter helpers."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from tenderdesk.exceptions import DocumentNotFoundError
from tenderdesk.storage.base import SERVER_TIMESTAMP, coerce_datetime, matches_filter, sort_documents


def test_add_get_update_delete(store, clock) -> None:
    async def run():
        doc_id = await store.add("tenders", {"title": "Beds", "created_at": SERVER_TIMESTAMP})
        created = await store.get("tenders", doc_id)
        await store.update("tenders", doc_id, {"title": "Hospital beds"})
        updated = await store.get("tenders", doc_id)
        await store.delete("tenders", doc_id)
        await store.delete("tenders", doc_id)
        return doc_id, created, updated, await store.get("tenders", doc_id)

    doc_id, created, updated, gone = asyncio.run(run())
    assert created == {"id": doc_id, "title": "Beds", "created_at": clock()}
    assert updated["title"] == "Hospital beds"
    assert updated["created_at"] == clock()
    assert gone is None


def test_update_missing_document_raises(store) -> None:
    with pytest.raises(DocumentNotFoundError) as exc:
        asyncio.run(store.update("tenders", "missing", {"title": "x"}))
    assert exc.value.status_code == 404


def test_returned_documents_are_copies(store) -> None:
    async def run():
        await store.set("tenders", "t1", {"items": [1, 2]})
        doc = await store.get("tenders", "t1")
        doc["items"].append(3)
        return await store.get("tenders", "t1")

    assert asyncio.run(run())["items"] == [1, 2]


def test_query_filters_orders_and_limits(store, clock) -> None:
    async def run():
        for n in range(5):
            await store.set("snapshots", f"s{n}", {"n": n, "at": clock() + timedelta(minutes=n)})
        return (
            await store.query("snapshots", {"n": {"$gte": 2}}, order_by="at", descending=True),
            await store.query("snapshots", order_by="n", limit=2),
            await store.query("snapshots", {"n": {"$in": [0, 4]}}),
        )

    newest_first, first_two, picked = asyncio.run(run())
    assert [d["n"] for d in newest_first] == [4, 3, 2]
    assert [d["n"] for d in first_two] == [0, 1]
    assert sorted(d["n"] for d in picked) == [0, 4]


def test_subscribers_get_initial_and_changed_result_sets(store) -> None:
    received: list[list[str]] = []

    async def on_change(docs, error) -> None:
        received.append(sorted(d["id"] for d in docs))

    async def run():
        unsubscribe = await store.subscribe("tracking", on_change, {"stage": "pending"})
        await store.set("tracking", "a", {"stage": "pending"})
        await store.set("tracking", "b", {"stage": "review"})
        unsubscribe()
        await store.set("tracking", "c", {"stage": "pending"})

    asyncio.run(run())
    assert received == [[], ["a"], ["a"]]
    assert store.listener_count("tracking") == 0


def test_failing_callback_does_not_break_writes(store) -> None:
    def broken(docs, error) -> None:
        raise RuntimeError("listener bug")

    async def run():
        await store.subscribe("tracking", broken)
        await store.set("tracking", "a", {"stage": "pending"})
        return await store.get("tracking", "a")

    assert asyncio.run(run()) == {"id": "a", "stage": "pending"}


def test_matches_filter_operators() -> None:
    doc = {"stage": "review", "value": 10, "missing": None}

    assert matches_filter(doc, None)
    assert matches_filter(doc, {"stage": "review", "value": {"$gt": 5, "$lte": 10}})
    assert not matches_filter(doc, {"stage": {"$ne": "review"}})
    assert not matches_filter(doc, {"missing": {"$gte": 1}})
    assert not matches_filter(doc, {"stage": {"$lt": 3}})
    with pytest.raises(ValueError):
        matches_filter(doc, {"value": {"$regex": "x"}})


def test_coerce_datetime_variants() -> None:
    expected = datetime(2025, 3, 3, 8, 0, tzinfo=timezone.utc)

    assert coerce_datetime(expected) == expected
    assert coerce_datetime("2025-03-03T08:00:00Z") == expected
    assert coerce_datetime("2025-03-03T08:00:00") == expected
    assert coerce_datetime(expected.timestamp() * 1000) == expected
    assert coerce_datetime({"seconds": expected.timestamp(), "nanoseconds": 0}) == expected
    assert coerce_datetime("yesterday") is None
    assert coerce_datetime(True) is None
    assert coerce_datetime(None) is None


def test_sort_documents_puts_missing_values_first() -> None:
    docs = [{"at": datetime(2025, 1, 2, tzinfo=timezone.utc)}, {"at": None}, {"at": datetime(2025, 1, 1)}]

    ordered = sort_documents(docs, "at")

    assert ordered[0]["at"] is None
    assert ordered[1]["at"] == datetime(2025, 1, 1)
