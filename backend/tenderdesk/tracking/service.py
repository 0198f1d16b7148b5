"""Tender tracking service: owns the tender -> pipeline stage mapping."""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Union

from pydantic import ValidationError

from tenderdesk.events import EventBus, TenderTrackingUpdated
from tenderdesk.exceptions import TrackingEntryNotFoundError
from tenderdesk.storage.base import SERVER_TIMESTAMP, Document, DocumentStore, coerce_datetime
from tenderdesk.tracking.models import (
    STAGE_DISPLAY_NAMES,
    STAGE_PROGRESS,
    GroupedTenders,
    Stage,
    TrackedTender,
    parse_stage,
)

logger = logging.getLogger(__name__)

TRACKING_COLLECTION = "tender_tracking"
TENDERS_COLLECTION = "tenders"

UNKNOWN_TEXT = "غير محدد"

# Tender fields copied onto the tracking entry so the board renders without a join
TENDER_SNAPSHOT_FIELDS = (
    "title",
    "entity",
    "description",
    "reference_number",
    "estimated_value",
    "submission_deadline",
)

TrackingCallback = Callable[
    [GroupedTenders | None, Exception | None], Union[None, Awaitable[None]]
]


def get_stage_display_name(stage: "str | Stage") -> str:
    try:
        return STAGE_DISPLAY_NAMES[Stage(stage)]
    except ValueError:
        return UNKNOWN_TEXT


def move_note(source: "str | Stage", target: "str | Stage") -> str:
    """Audit note recorded when a tender changes stage."""
    return f"تم نقل المناقصة من {get_stage_display_name(source)} إلى {get_stage_display_name(target)}"


def get_status_text(deadline: Any, now: datetime | None = None) -> str:
    """Human-readable time remaining until a submission deadline."""
    deadline_dt = coerce_datetime(deadline)
    if deadline_dt is None:
        return UNKNOWN_TEXT

    now = now or datetime.now(timezone.utc)
    remaining = (deadline_dt - now).total_seconds()
    if remaining < 0:
        return "منتهية"

    days = math.ceil(remaining / 86400)
    if days <= 1 and deadline_dt.astimezone(now.tzinfo).date() == now.date():
        return "تنتهي اليوم"
    return f"متبقي {days} يوم"


def _entry_modified_at(entry: Document) -> float:
    for key in ("updated_at", "moved_at", "created_at"):
        dt = coerce_datetime(entry.get(key))
        if dt is not None:
            return dt.timestamp()
    return 0.0


class TenderTrackingService:
    """Persists stage transitions and broadcasts tracked tenders grouped by stage."""

    def __init__(
        self,
        store: DocumentStore,
        bus: EventBus | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.bus = bus
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _publish(self, tender_id: str | None, stage: Stage | None) -> None:
        if self.bus:
            self.bus.publish(
                TenderTrackingUpdated(
                    tender_id=tender_id,
                    stage=stage.value if stage else None,
                    updated_at=self._clock(),
                )
            )

    async def _entries_for(self, tender_id: str) -> list[Document]:
        return await self.store.query(TRACKING_COLLECTION, {"tender_id": tender_id})

    async def _group(self, entries: list[Document]) -> GroupedTenders:
        tenders = {doc["id"]: doc for doc in await self.store.query(TENDERS_COLLECTION)}
        columns: dict[Stage, list[TrackedTender]] = {}

        for entry in entries:
            tender_id = entry.get("tender_id")
            if not tender_id:
                logger.warning(f"Tracking entry {entry.get('id')} has no tender_id, skipping")
                continue
            try:
                stage = Stage(entry.get("stage", Stage.PENDING.value))
            except ValueError:
                logger.warning(f"Tracking entry {entry['id']} has unknown stage {entry.get('stage')}")
                stage = Stage.PENDING

            fields = {k: entry.get(k) for k in TENDER_SNAPSHOT_FIELDS if entry.get(k) is not None}
            current = tenders.get(tender_id)
            if current:
                fields.update({k: current[k] for k in TENDER_SNAPSHOT_FIELDS if current.get(k) is not None})

            try:
                tracked = TrackedTender(
                    **fields,
                    id=tender_id,
                    tracking_id=entry["id"],
                    stage=stage,
                    progress=entry.get("progress") or STAGE_PROGRESS[stage],
                    last_moved_note=entry.get("last_moved_note"),
                    moved_at=entry.get("moved_at") or entry.get("created_at"),
                )
            except ValidationError as e:
                logger.warning(f"Skipping malformed tracking entry {entry['id']}: {e}")
                continue
            columns.setdefault(stage, []).append(tracked)

        for column in columns.values():
            column.sort(
                key=lambda t: t.moved_at.timestamp() if t.moved_at else 0.0,
                reverse=True,
            )
        return GroupedTenders.from_columns(columns)

    async def get_all_tracked_tenders(self) -> GroupedTenders:
        """One-shot fetch of every tracked tender, grouped by stage."""
        entries = await self.store.query(TRACKING_COLLECTION)
        return await self._group(entries)

    async def get_tracked_tender_ids(self) -> set[str]:
        entries = await self.store.query(TRACKING_COLLECTION)
        return {entry["tender_id"] for entry in entries if entry.get("tender_id")}

    async def subscribe_to_tracked_tenders(self, callback: TrackingCallback) -> Callable[[], None]:
        """Open a live subscription; the returned function must be called on teardown."""

        async def on_change(docs: list[Document] | None, error: Exception | None) -> None:
            if error is not None:
                logger.error(f"Tracking subscription error: {error}")
                result = callback(None, error)
            else:
                try:
                    grouped = await self._group(docs or [])
                except Exception as e:
                    logger.error(f"Failed to group tracked tenders: {e}")
                    result = callback(None, e)
                else:
                    result = callback(grouped, None)
            if result is not None:
                await result

        return await self.store.subscribe(TRACKING_COLLECTION, on_change)

    async def move_tender_stage(self, tender_id: str, new_stage: "str | Stage", note: str | None = None) -> None:
        """Record a stage change. Last write wins; callers own optimistic rollback."""
        stage = parse_stage(new_stage)
        entries = await self._entries_for(tender_id)
        if not entries:
            raise TrackingEntryNotFoundError(tender_id)

        now = self._clock()
        for entry in entries:
            await self.store.update(
                TRACKING_COLLECTION,
                entry["id"],
                {
                    "stage": stage.value,
                    "progress": STAGE_PROGRESS[stage],
                    "last_moved_note": note,
                    "moved_at": now,
                    "updated_at": SERVER_TIMESTAMP,
                },
            )

        logger.info(f"Moved tender {tender_id} to {stage.value}")
        self._publish(tender_id, stage)

    async def initialize_tender_tracking(self, tender: dict[str, Any]) -> str:
        """Create a pending tracking entry. Not idempotent; see remove_duplicate_tracking_entries."""
        tender_id = tender.get("id")
        if not tender_id:
            raise ValueError("Tender must have an id to be tracked")

        now = self._clock()
        entry = {k: tender.get(k) for k in TENDER_SNAPSHOT_FIELDS if tender.get(k) is not None}
        entry.update(
            {
                "tender_id": tender_id,
                "stage": Stage.PENDING.value,
                "progress": STAGE_PROGRESS[Stage.PENDING],
                "last_moved_note": None,
                "moved_at": now,
                "created_at": now,
                "updated_at": SERVER_TIMESTAMP,
            }
        )
        entry_id = await self.store.add(TRACKING_COLLECTION, entry)

        logger.info(f"Started tracking tender {tender_id}")
        self._publish(tender_id, Stage.PENDING)
        return entry_id

    async def remove_tender_from_tracking(self, tender_id: str) -> int:
        """Return a tender to the untracked pool. Returns entries deleted."""
        entries = await self._entries_for(tender_id)
        for entry in entries:
            await self.store.delete(TRACKING_COLLECTION, entry["id"])

        if entries:
            logger.info(f"Removed tender {tender_id} from tracking")
            self._publish(tender_id, None)
        return len(entries)

    async def remove_duplicate_tracking_entries(self) -> int:
        """Keep only the most recently modified entry per tender. Returns entries deleted."""
        entries = await self.store.query(TRACKING_COLLECTION)
        groups: dict[str, list[Document]] = {}
        for entry in entries:
            if entry.get("tender_id"):
                groups.setdefault(entry["tender_id"], []).append(entry)

        removed = 0
        for tender_id, group in groups.items():
            if len(group) < 2:
                continue
            group.sort(key=_entry_modified_at, reverse=True)
            for duplicate in group[1:]:
                try:
                    await self.store.delete(TRACKING_COLLECTION, duplicate["id"])
                    removed += 1
                except Exception as e:
                    logger.error(f"Failed to delete duplicate tracking entry {duplicate['id']}: {e}")

        if removed:
            logger.info(f"Removed {removed} duplicate tracking entries")
        return removed
