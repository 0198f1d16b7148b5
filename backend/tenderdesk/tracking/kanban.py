"""Kanban board orchestration with optimistic moves and rollback."""

import logging
from typing import Any, Callable, Literal

from tenderdesk.config import KanbanConfig
from tenderdesk.tracking.dragdrop import DragDropController, DragEvent
from tenderdesk.tracking.models import (
    STAGE_DISPLAY_NAMES,
    STAGE_PROGRESS,
    GroupedTenders,
    Stage,
    TrackedTender,
    parse_stage,
)
from tenderdesk.tracking.service import TenderTrackingService, move_note

logger = logging.getLogger(__name__)

Priority = Literal["high", "medium", "low"]

RETURN_TO_LIST_TARGET = "returnToList"


def classify_priority(value: float | None, thresholds: KanbanConfig) -> Priority:
    """Label a tender by estimated value. Derived on read, never stored."""
    value = value or 0
    if value > thresholds.high_priority_threshold:
        return "high"
    if value >= thresholds.medium_priority_threshold:
        return "medium"
    return "low"


def apply_move(
    grouped: GroupedTenders, tender_id: str, source: Stage, target: Stage
) -> GroupedTenders:
    """Remove a tender from `source` and prepend it to `target`.

    Returns a new structure; `grouped` is left untouched. Unknown tenders
    yield an unchanged copy.
    """
    columns = {stage: list(column) for stage, column in grouped.columns()}
    moving = next((t for t in columns[source] if t.id == tender_id), None)
    if moving is None:
        logger.warning(f"Tender {tender_id} not found in {source.value}, move not applied")
        return GroupedTenders.from_columns(columns)

    columns[source] = [t for t in columns[source] if t.id != tender_id]
    moved = moving.model_copy(update={"stage": target, "progress": STAGE_PROGRESS[target]})
    columns[target] = [moved] + [t for t in columns[target] if t.id != tender_id]
    return GroupedTenders.from_columns(columns)


def filter_grouped(grouped: GroupedTenders, term: str) -> GroupedTenders:
    """Client-side search over title, entity, description and reference number."""
    if not term or not term.strip():
        return grouped
    return GroupedTenders.from_columns(
        {stage: [t for t in column if t.matches(term)] for stage, column in grouped.columns()}
    )


class KanbanBoard:
    """Board state for four stage columns, reconciled against the live subscription.

    Subscription payloads are authoritative and replace local state
    wholesale, including any optimistic move still in flight.
    """

    def __init__(
        self,
        tracking: TenderTrackingService,
        thresholds: KanbanConfig | None = None,
        on_error: Callable[[str], None] | None = None,
    ):
        self.tracking = tracking
        self.thresholds = thresholds or KanbanConfig()
        self.on_error = on_error
        self.drag = DragDropController()
        self.grouped = GroupedTenders()
        self.last_error: str | None = None
        self._unsubscribe: Callable[[], None] | None = None

    async def load(self) -> GroupedTenders:
        await self.tracking.remove_duplicate_tracking_entries()
        self.grouped = await self.tracking.get_all_tracked_tenders()
        return self.grouped

    async def attach(self) -> None:
        if self._unsubscribe is not None:
            return

        def on_update(grouped: GroupedTenders | None, error: Exception | None) -> None:
            if error is not None:
                self._report(f"تعذر تحديث المناقصات: {error}")
                return
            self.grouped = grouped

        self._unsubscribe = await self.tracking.subscribe_to_tracked_tenders(on_update)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _report(self, message: str) -> None:
        self.last_error = message
        logger.error(message)
        if self.on_error:
            self.on_error(message)

    async def move_card(self, tender_id: str, source: "str | Stage", target: "str | Stage") -> bool:
        """Optimistically move a card, then persist; roll back if persisting fails."""
        source, target = parse_stage(source), parse_stage(target)
        if source == target:
            return False

        self.grouped = apply_move(self.grouped, tender_id, source, target)
        try:
            await self.tracking.move_tender_stage(tender_id, target, move_note(source, target))
        except Exception as e:
            self.grouped = apply_move(self.grouped, tender_id, target, source)
            self._report(f"فشل في نقل المناقصة: {e}")
            return False

        self.last_error = None
        return True

    async def handle_drop(self, item: Any, source: str, target: str) -> None:
        """Drop callback for the drag controller; `item` is the dragged tender payload."""
        tender_id = item.get("id") if isinstance(item, dict) else str(item)
        if target == RETURN_TO_LIST_TARGET:
            await self.return_to_list(tender_id)
            return
        await self.move_card(tender_id, source, target)

    async def drop(self, event: DragEvent, target: str) -> bool:
        try:
            return await self.drag.drop(event, target, self.handle_drop)
        finally:
            self.drag.end()

    async def return_to_list(self, tender_id: str) -> bool:
        found = self.grouped.find(tender_id)
        try:
            await self.tracking.remove_tender_from_tracking(tender_id)
        except Exception as e:
            self._report(f"فشل في إرجاع المناقصة إلى القائمة: {e}")
            return False

        if found is not None:
            stage, _ = found
            columns = {s: list(c) for s, c in self.grouped.columns()}
            columns[stage] = [t for t in columns[stage] if t.id != tender_id]
            self.grouped = GroupedTenders.from_columns(columns)
        return True

    def visible(self, term: str = "") -> GroupedTenders:
        return filter_grouped(self.grouped, term)

    def priority_of(self, tender: TrackedTender) -> Priority:
        return classify_priority(tender.estimated_value, self.thresholds)

    def column_summary(self) -> list[dict[str, Any]]:
        return [
            {
                "stage": stage.value,
                "title": STAGE_DISPLAY_NAMES[stage],
                "progress": STAGE_PROGRESS[stage],
                "count": len(column),
            }
            for stage, column in self.grouped.columns()
        ]
