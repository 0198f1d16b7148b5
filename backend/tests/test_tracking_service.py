"""Tests for the tender tracking service."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from tenderdesk.events import EventBus, TenderTrackingUpdated
from tenderdesk.exceptions import InvalidStageError, TrackingEntryNotFoundError
from tenderdesk.tracking.models import GroupedTenders, Stage
from tenderdesk.tracking.service import (
    TRACKING_COLLECTION,
    TenderTrackingService,
    get_stage_display_name,
    get_status_text,
    move_note,
)


def _tender(tender_id: str, **fields) -> dict:
    return {"id": tender_id, "title": f"Tender {tender_id}", "entity": "وزارة الصحة", **fields}


def test_initialize_places_tender_in_pending(store, clock) -> None:
    service = TenderTrackingService(store, clock=clock)

    async def run() -> GroupedTenders:
        await service.initialize_tender_tracking(_tender("t1", estimated_value=500000))
        return await service.get_all_tracked_tenders()

    grouped = asyncio.run(run())
    assert grouped.ids(Stage.PENDING) == ["t1"]
    assert grouped.pending[0].progress == 25
    assert grouped.pending[0].estimated_value == 500000


def test_move_places_tender_in_target_and_removes_from_source(store, clock) -> None:
    service = TenderTrackingService(store, clock=clock)

    async def run() -> GroupedTenders:
        await service.initialize_tender_tracking(_tender("t1"))
        await service.move_tender_stage("t1", Stage.REVIEW, move_note(Stage.PENDING, Stage.REVIEW))
        return await service.get_all_tracked_tenders()

    grouped = asyncio.run(run())
    assert grouped.ids(Stage.PENDING) == []
    assert grouped.ids(Stage.REVIEW) == ["t1"]
    assert grouped.review[0].progress == 75
    assert grouped.review[0].last_moved_note == "تم نقل المناقصة من قيد الدراسة إلى تم فتح المظاريف"


def test_completed_can_move_back_to_pending(store, clock) -> None:
    service = TenderTrackingService(store, clock=clock)

    async def run() -> GroupedTenders:
        await service.initialize_tender_tracking(_tender("t1"))
        await service.move_tender_stage("t1", "completed")
        await service.move_tender_stage("t1", "pending")
        return await service.get_all_tracked_tenders()

    assert asyncio.run(run()).ids(Stage.PENDING) == ["t1"]


def test_move_rejects_unknown_stage_and_untracked_tender(store, clock) -> None:
    service = TenderTrackingService(store, clock=clock)

    async def run() -> None:
        await service.initialize_tender_tracking(_tender("t1"))
        with pytest.raises(InvalidStageError):
            await service.move_tender_stage("t1", "archived")
        with pytest.raises(TrackingEntryNotFoundError):
            await service.move_tender_stage("missing", "review")

    asyncio.run(run())


def test_columns_are_newest_moved_first(store, clock) -> None:
    service = TenderTrackingService(store, clock=clock)

    async def run() -> GroupedTenders:
        await service.initialize_tender_tracking(_tender("old"))
        clock.advance(minutes=5)
        await service.initialize_tender_tracking(_tender("new"))
        return await service.get_all_tracked_tenders()

    assert asyncio.run(run()).ids(Stage.PENDING) == ["new", "old"]


def test_current_tender_fields_override_tracking_copy(store, clock) -> None:
    service = TenderTrackingService(store, clock=clock)

    async def run() -> GroupedTenders:
        await store.set("tenders", "t1", {"title": "Renamed", "entity": "Entity"})
        await service.initialize_tender_tracking(_tender("t1", title="Original"))
        return await service.get_all_tracked_tenders()

    assert asyncio.run(run()).pending[0].title == "Renamed"


def test_remove_duplicate_tracking_entries_keeps_most_recently_modified(store, clock) -> None:
    service = TenderTrackingService(store, clock=clock)
    base = datetime(2025, 3, 1, tzinfo=timezone.utc)

    async def run() -> tuple[int, list[dict]]:
        await store.set(
            TRACKING_COLLECTION,
            "older",
            {"tender_id": "t1", "stage": "pending", "updated_at": base},
        )
        await store.set(
            TRACKING_COLLECTION,
            "newer",
            {"tender_id": "t1", "stage": "review", "updated_at": base + timedelta(hours=1)},
        )
        await store.set(
            TRACKING_COLLECTION,
            "other",
            {"tender_id": "t2", "stage": "pending", "updated_at": base},
        )
        removed = await service.remove_duplicate_tracking_entries()
        return removed, await store.query(TRACKING_COLLECTION, {"tender_id": "t1"})

    removed, remaining = asyncio.run(run())
    assert removed == 1
    assert [doc["id"] for doc in remaining] == ["newer"]


def test_remove_from_tracking_returns_tender_to_pool(store, clock) -> None:
    service = TenderTrackingService(store, clock=clock)

    async def run() -> tuple[int, set[str]]:
        await service.initialize_tender_tracking(_tender("t1"))
        await service.initialize_tender_tracking(_tender("t2"))
        removed = await service.remove_tender_from_tracking("t1")
        return removed, await service.get_tracked_tender_ids()

    removed, tracked = asyncio.run(run())
    assert removed == 1
    assert tracked == {"t2"}


def test_subscription_pushes_grouped_updates_until_unsubscribed(store, clock) -> None:
    service = TenderTrackingService(store, clock=clock)
    received: list[GroupedTenders] = []

    def on_update(grouped, error) -> None:
        assert error is None
        received.append(grouped)

    async def run() -> None:
        unsubscribe = await service.subscribe_to_tracked_tenders(on_update)
        await service.initialize_tender_tracking(_tender("t1"))
        await service.move_tender_stage("t1", "inProgress")
        unsubscribe()
        await service.move_tender_stage("t1", "completed")

    asyncio.run(run())
    # initial + add + move; nothing after unsubscribe
    assert len(received) == 3
    assert received[-1].ids(Stage.IN_PROGRESS) == ["t1"]


def test_subscription_reports_errors(store, clock) -> None:
    service = TenderTrackingService(store, clock=clock)
    errors: list[Exception] = []

    async def run() -> None:
        await service.subscribe_to_tracked_tenders(
            lambda grouped, error: errors.append(error) if error else None
        )
        await store.fail_subscribers(TRACKING_COLLECTION, ConnectionError("listener dropped"))

    asyncio.run(run())
    assert len(errors) == 1
    assert isinstance(errors[0], ConnectionError)


def test_changes_publish_tracking_events(store, clock) -> None:
    bus = EventBus()
    events: list[TenderTrackingUpdated] = []
    bus.subscribe(TenderTrackingUpdated, events.append)
    service = TenderTrackingService(store, bus, clock)

    async def run() -> None:
        await service.initialize_tender_tracking(_tender("t1"))
        await service.move_tender_stage("t1", "review")
        await service.remove_tender_from_tracking("t1")

    asyncio.run(run())
    assert [(e.tender_id, e.stage) for e in events] == [
        ("t1", "pending"),
        ("t1", "review"),
        ("t1", None),
    ]


def test_stage_display_names() -> None:
    assert get_stage_display_name("pending") == "قيد الدراسة"
    assert get_stage_display_name(Stage.COMPLETED) == "تم الترسية"
    assert get_stage_display_name("bogus") == "غير محدد"


def test_status_text_for_deadlines() -> None:
    now = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)

    assert get_status_text(None, now) == "غير محدد"
    assert get_status_text("not a date", now) == "غير محدد"
    assert get_status_text(now - timedelta(hours=1), now) == "منتهية"
    assert get_status_text(now + timedelta(hours=3), now) == "تنتهي اليوم"
    assert get_status_text(now + timedelta(days=5), now) == "متبقي 5 يوم"


def test_loosely_typed_tender_fields_do_not_break_the_board(store, clock) -> None:
    service = TenderTrackingService(store, clock=clock)

    async def run() -> GroupedTenders:
        await store.set("tenders", "t1", {"title": "Beds", "entity": "MOH", "estimated_value": ""})
        await service.initialize_tender_tracking(_tender("t1"))
        await service.initialize_tender_tracking(_tender("t2", reference_number=12345, estimated_value="1,200"))
        await store.add(TRACKING_COLLECTION, {"tender_id": "t3", "stage": "pending", "moved_at": "not a date"})
        return await service.get_all_tracked_tenders()

    grouped = asyncio.run(run())
    tenders = {t.id: t for t in grouped.all()}
    assert set(tenders) == {"t1", "t2", "t3"}
    assert tenders["t1"].estimated_value == 0.0
    assert tenders["t2"].reference_number == "12345"
    assert tenders["t2"].estimated_value == 1200.0
    assert tenders["t3"].moved_at is None
