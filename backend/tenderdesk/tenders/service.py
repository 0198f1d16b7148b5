"""Tender records: CRUD, validation, search, product items and trash."""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable

from tenderdesk.events import EventBus, ProductItemRestored, ProductItemsAdded
from tenderdesk.exceptions import DocumentNotFoundError, TenderValidationError
from tenderdesk.storage.base import SERVER_TIMESTAMP, DocumentStore, coerce_datetime
from tenderdesk.tenders.models import Tender, TenderItem

logger = logging.getLogger(__name__)

TENDERS_COLLECTION = "tenders"
TRASH_COLLECTION = "trash"

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def validate_tender_data(data: dict[str, Any], now: datetime | None = None) -> dict[str, str]:
    """Return field -> Arabic error message for every invalid field."""
    errors: dict[str, str] = {}
    now = now or datetime.now(timezone.utc)

    if not str(data.get("title") or "").strip():
        errors["title"] = "اسم المناقصة مطلوب"
    if not str(data.get("reference_number") or "").strip():
        errors["reference_number"] = "رقم المرجع مطلوب"
    if not str(data.get("entity") or "").strip():
        errors["entity"] = "الجهة مطلوبة"

    if data.get("submission_deadline"):
        deadline = coerce_datetime(data["submission_deadline"])
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        if deadline is None or deadline < today:
            errors["submission_deadline"] = "تاريخ التسليم يجب أن يكون في المستقبل"

    value = data.get("estimated_value")
    if value not in (None, ""):
        try:
            if float(value) < 0:
                raise ValueError(value)
        except (TypeError, ValueError):
            errors["estimated_value"] = "القيمة التقديرية يجب أن تكون رقم موجب"

    email = str(data.get("contact_email") or "").strip()
    if email and not EMAIL_PATTERN.match(email):
        errors["contact_email"] = "عنوان البريد الإلكتروني غير صالح"

    return errors


class TenderService:
    def __init__(
        self,
        store: DocumentStore,
        bus: EventBus | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.bus = bus
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def validate(self, data: dict[str, Any]) -> None:
        errors = validate_tender_data(data, self._clock())
        if errors:
            raise TenderValidationError(errors)

    async def create_tender(self, data: dict[str, Any]) -> Tender:
        self.validate(data)
        tender = Tender(**data)
        payload = tender.model_dump(exclude={"id", "created_at", "updated_at"})
        payload.update({"created_at": SERVER_TIMESTAMP, "updated_at": SERVER_TIMESTAMP})
        tender_id = await self.store.add(TENDERS_COLLECTION, payload)
        logger.info(f"Created tender {tender_id}: {tender.title}")
        return await self.get_tender(tender_id)

    async def get_tender(self, tender_id: str) -> Tender:
        doc = await self.store.get(TENDERS_COLLECTION, tender_id)
        if doc is None:
            raise DocumentNotFoundError(TENDERS_COLLECTION, tender_id)
        return Tender(**doc)

    async def update_tender(self, tender_id: str, data: dict[str, Any]) -> Tender:
        current = await self.get_tender(tender_id)
        merged = {**current.model_dump(), **data}
        if "submission_deadline" not in data:
            # An existing deadline may have passed; only new deadlines must be in the future
            merged.pop("submission_deadline", None)
        self.validate(merged)
        changes = {k: v for k, v in data.items() if k not in ("id", "created_at")}
        changes["updated_at"] = SERVER_TIMESTAMP
        await self.store.update(TENDERS_COLLECTION, tender_id, changes)
        return await self.get_tender(tender_id)

    async def list_tenders(self) -> list[Tender]:
        docs = await self.store.query(TENDERS_COLLECTION, order_by="created_at", descending=True)
        return [Tender(**doc) for doc in docs]

    async def search_tenders(self, term: str) -> list[Tender]:
        needle = term.strip().lower()
        tenders = await self.list_tenders()
        if not needle:
            return tenders
        return [
            t
            for t in tenders
            if needle in t.title.lower()
            or needle in t.reference_number.lower()
            or needle in t.entity.lower()
        ]

    async def get_tenders_by_status(self, status: str) -> list[Tender]:
        docs = await self.store.query(
            TENDERS_COLLECTION, {"status": status}, order_by="created_at", descending=True
        )
        return [Tender(**doc) for doc in docs]

    async def add_items(self, tender_id: str, items: list[TenderItem]) -> Tender:
        """Append product items, replacing any with the same id."""
        tender = await self.get_tender(tender_id)
        new_ids = {item.id for item in items}
        merged = [item for item in tender.items if item.id not in new_ids] + list(items)
        await self.store.update(
            TENDERS_COLLECTION,
            tender_id,
            {"items": [item.model_dump() for item in merged], "updated_at": SERVER_TIMESTAMP},
        )
        if self.bus:
            self.bus.publish(ProductItemsAdded(tender_id=tender_id, item_ids=sorted(new_ids)))
        return await self.get_tender(tender_id)

    async def move_to_trash(self, tender_id: str) -> str:
        """Soft delete: tenders are never hard-deleted, only moved to trash."""
        doc = await self.store.get(TENDERS_COLLECTION, tender_id)
        if doc is None:
            raise DocumentNotFoundError(TENDERS_COLLECTION, tender_id)

        doc.pop("id", None)
        trash_id = await self.store.add(
            TRASH_COLLECTION,
            {
                "original_collection": TENDERS_COLLECTION,
                "original_id": tender_id,
                "data": doc,
                "deleted_at": self._clock(),
            },
        )
        await self.store.delete(TENDERS_COLLECTION, tender_id)
        logger.info(f"Moved tender {tender_id} to trash")
        return trash_id

    async def list_trash(self) -> list[dict[str, Any]]:
        return await self.store.query(
            TRASH_COLLECTION,
            {"original_collection": TENDERS_COLLECTION},
            order_by="deleted_at",
            descending=True,
        )

    async def restore_from_trash(self, trash_id: str) -> Tender:
        entry = await self.store.get(TRASH_COLLECTION, trash_id)
        if entry is None:
            raise DocumentNotFoundError(TRASH_COLLECTION, trash_id)

        tender_id = entry["original_id"]
        data = dict(entry.get("data") or {})
        data["updated_at"] = SERVER_TIMESTAMP
        await self.store.set(TENDERS_COLLECTION, tender_id, data)
        await self.store.delete(TRASH_COLLECTION, trash_id)
        logger.info(f"Restored tender {tender_id} from trash")

        tender = await self.get_tender(tender_id)
        if tender.items and self.bus:
            self.bus.publish(
                ProductItemRestored(tender_id=tender_id, item_ids=[item.id for item in tender.items])
            )
        return tender

    async def permanently_delete(self, trash_id: str) -> None:
        await self.store.delete(TRASH_COLLECTION, trash_id)
