"""Tests for kanban board orchestration."""

import asyncio

from tenderdesk.config import KanbanConfig
from tenderdesk.exceptions import TrackingEntryNotFoundError
from tenderdesk.tracking.dragdrop import DataTransfer, DragEvent
from tenderdesk.tracking.kanban import (
    RETURN_TO_LIST_TARGET,
    KanbanBoard,
    apply_move,
    classify_priority,
    filter_grouped,
)
from tenderdesk.tracking.models import GroupedTenders, Stage, TrackedTender
from tenderdesk.tracking.service import TenderTrackingService


def _grouped() -> GroupedTenders:
    return GroupedTenders.from_columns(
        {
            Stage.PENDING: [
                TrackedTender(id="a", title="Hospital beds", entity="وزارة الصحة"),
                TrackedTender(id="b", title="Road works", entity="Municipality"),
            ],
            Stage.IN_PROGRESS: [TrackedTender(id="c", title="Laptops", entity="University", stage=Stage.IN_PROGRESS)],
            Stage.REVIEW: [
                TrackedTender(id="d", title="Cleaning", entity="Airport", reference_number="REF-77", stage=Stage.REVIEW)
            ],
            Stage.COMPLETED: [
                TrackedTender(id="e", title="Catering", entity="Ministry of Sport", description="Stadium food", stage=Stage.COMPLETED)
            ],
        }
    )


def test_apply_move_prepends_to_target_without_mutating_input() -> None:
    grouped = _grouped()

    moved = apply_move(grouped, "b", Stage.PENDING, Stage.IN_PROGRESS)

    assert moved.ids(Stage.PENDING) == ["a"]
    assert moved.ids(Stage.IN_PROGRESS) == ["b", "c"]
    assert moved.in_progress[0].progress == 50
    assert moved.in_progress[0].stage == Stage.IN_PROGRESS
    assert grouped.ids(Stage.PENDING) == ["a", "b"]


def test_apply_move_of_unknown_tender_is_noop() -> None:
    moved = apply_move(_grouped(), "zzz", Stage.PENDING, Stage.REVIEW)
    assert moved.ids(Stage.PENDING) == ["a", "b"]
    assert moved.ids(Stage.REVIEW) == ["d"]


def test_filter_matching_only_entity_of_one_tender() -> None:
    filtered = filter_grouped(_grouped(), "municipality")

    assert filtered.ids(Stage.PENDING) == ["b"]
    assert filtered.ids(Stage.IN_PROGRESS) == []
    assert filtered.ids(Stage.REVIEW) == []
    assert filtered.ids(Stage.COMPLETED) == []


def test_filter_matches_reference_and_description() -> None:
    assert filter_grouped(_grouped(), "ref-77").ids(Stage.REVIEW) == ["d"]
    assert filter_grouped(_grouped(), "STADIUM").ids(Stage.COMPLETED) == ["e"]
    assert len(filter_grouped(_grouped(), "  ").all()) == 5


def test_classify_priority_boundaries() -> None:
    thresholds = KanbanConfig(high_priority_threshold=750000, medium_priority_threshold=400000)

    assert classify_priority(750001, thresholds) == "high"
    assert classify_priority(750000, thresholds) == "medium"
    assert classify_priority(400000, thresholds) == "medium"
    assert classify_priority(399999.99, thresholds) == "low"
    assert classify_priority(None, thresholds) == "low"


def test_classify_priority_uses_configured_thresholds() -> None:
    thresholds = KanbanConfig(high_priority_threshold=100, medium_priority_threshold=10)
    assert classify_priority(101, thresholds) == "high"
    assert classify_priority(10, thresholds) == "medium"


def test_move_card_persists_and_matches_store(store, clock) -> None:
    service = TenderTrackingService(store, clock=clock)
    board = KanbanBoard(service)

    async def run() -> tuple[bool, GroupedTenders]:
        await service.initialize_tender_tracking({"id": "t1", "title": "T1"})
        await board.load()
        ok = await board.move_card("t1", "pending", "review")
        return ok, await service.get_all_tracked_tenders()

    ok, persisted = asyncio.run(run())
    assert ok is True
    assert board.grouped.ids(Stage.REVIEW) == ["t1"]
    assert persisted.ids(Stage.REVIEW) == ["t1"]
    assert board.last_error is None


class FailingTracking(TenderTrackingService):
    async def move_tender_stage(self, tender_id, new_stage, note=None) -> None:
        raise TrackingEntryNotFoundError(tender_id)


def test_move_card_rolls_back_on_failure(store, clock) -> None:
    errors: list[str] = []
    service = FailingTracking(store, clock=clock)
    board = KanbanBoard(service, on_error=errors.append)

    async def run() -> bool:
        await service.initialize_tender_tracking({"id": "t1", "title": "T1"})
        await service.initialize_tender_tracking({"id": "t2", "title": "T2"})
        await board.load()
        return await board.move_card("t1", "pending", "completed")

    ok = asyncio.run(run())
    assert ok is False
    assert set(board.grouped.ids(Stage.PENDING)) == {"t1", "t2"}
    assert board.grouped.ids(Stage.COMPLETED) == []
    assert board.last_error is not None
    assert errors == [board.last_error]


def test_subscription_payload_replaces_local_state(store, clock) -> None:
    service = TenderTrackingService(store, clock=clock)
    board = KanbanBoard(service)

    async def run() -> None:
        await board.attach()
        await service.initialize_tender_tracking({"id": "t1", "title": "T1"})
        assert board.grouped.ids(Stage.PENDING) == ["t1"]
        # Another client moves the card; the echo wins over local state
        await service.move_tender_stage("t1", "completed")
        board.detach()
        await service.move_tender_stage("t1", "review")

    asyncio.run(run())
    assert board.grouped.ids(Stage.COMPLETED) == ["t1"]
    assert store.listener_count("tender_tracking") == 0


def test_drop_on_column_moves_card_and_ends_drag(store, clock) -> None:
    service = TenderTrackingService(store, clock=clock)
    board = KanbanBoard(service)
    transfer = DataTransfer()

    async def run() -> bool:
        await service.initialize_tender_tracking({"id": "t1", "title": "T1"})
        await board.load()
        board.drag.start(DragEvent(transfer), {"id": "t1"}, "pending")
        return await board.drop(DragEvent(transfer), "inProgress")

    assert asyncio.run(run()) is True
    assert board.grouped.ids(Stage.IN_PROGRESS) == ["t1"]
    assert board.drag.drag_state.is_dragging is False


def test_drop_on_return_zone_removes_from_tracking(store, clock) -> None:
    service = TenderTrackingService(store, clock=clock)
    board = KanbanBoard(service)
    transfer = DataTransfer()

    async def run() -> set[str]:
        await service.initialize_tender_tracking({"id": "t1", "title": "T1"})
        await board.load()
        board.drag.start(DragEvent(transfer), {"id": "t1"}, "pending")
        await board.drop(DragEvent(transfer), RETURN_TO_LIST_TARGET)
        return await service.get_tracked_tender_ids()

    assert asyncio.run(run()) == set()
    assert board.grouped.all() == []


def test_column_summary_counts() -> None:
    board = KanbanBoard(TenderTrackingService(store=None))  # type: ignore[arg-type]
    board.grouped = _grouped()

    summary = {col["stage"]: col for col in board.column_summary()}
    assert summary["pending"]["count"] == 2
    assert summary["completed"]["title"] == "تم الترسية"
    assert summary["review"]["progress"] == 75
