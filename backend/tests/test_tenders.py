"""Tests for tender records, validation and trash."""

import asyncio
from datetime import timedelta

import pytest

from tenderdesk.events import EventBus, ProductItemRestored, ProductItemsAdded
from tenderdesk.exceptions import DocumentNotFoundError, TenderValidationError
from tenderdesk.tenders.models import TenderItem
from tenderdesk.tenders.service import TenderService, validate_tender_data


def _data(clock, **overrides) -> dict:
    return {
        "title": "توريد أسرة طبية",
        "reference_number": "MOH-2025-014",
        "entity": "وزارة الصحة",
        "estimated_value": 820000,
        "submission_deadline": clock() + timedelta(days=10),
        "contact_email": "procurement@moh.gov.sa",
        **overrides,
    }


def test_validation_collects_every_error(clock) -> None:
    errors = validate_tender_data(
        {
            "title": " ",
            "entity": "",
            "estimated_value": -5,
            "submission_deadline": clock() - timedelta(days=1),
            "contact_email": "not-an-email",
        },
        clock(),
    )

    assert set(errors) == {
        "title",
        "reference_number",
        "entity",
        "estimated_value",
        "submission_deadline",
        "contact_email",
    }
    assert errors["title"] == "اسم المناقصة مطلوب"


def test_deadline_later_today_is_accepted(clock) -> None:
    assert validate_tender_data(_data(clock, submission_deadline=clock() - timedelta(hours=1)), clock()) == {}


def test_create_rejects_invalid_data(store, clock) -> None:
    service = TenderService(store, clock=clock)

    with pytest.raises(TenderValidationError) as exc:
        asyncio.run(service.create_tender(_data(clock, title="")))

    assert exc.value.status_code == 422
    assert "title" in exc.value.errors


def test_create_get_update_and_search(store, clock) -> None:
    service = TenderService(store, clock=clock)

    async def run():
        tender = await service.create_tender(_data(clock))
        await service.create_tender(_data(clock, title="صيانة طرق", reference_number="MUN-7", entity="أمانة الرياض"))
        updated = await service.update_tender(tender.id, {"status": "submitted"})
        return tender, updated, await service.search_tenders("moh-2025"), await service.get_tenders_by_status("submitted")

    tender, updated, found, submitted = asyncio.run(run())
    assert tender.created_at == clock()
    assert updated.status == "submitted"
    assert updated.title == tender.title
    assert [t.id for t in found] == [tender.id]
    assert [t.id for t in submitted] == [tender.id]


def test_update_keeps_a_deadline_that_has_since_passed(store, clock) -> None:
    service = TenderService(store, clock=clock)

    async def run():
        tender = await service.create_tender(_data(clock, submission_deadline=clock() + timedelta(days=1)))
        clock.advance(days=5)
        return await service.update_tender(tender.id, {"description": "late edit"})

    assert asyncio.run(run()).description == "late edit"


def test_add_items_replaces_by_id_and_publishes(store, clock) -> None:
    bus = EventBus()
    events: list[ProductItemsAdded] = []
    bus.subscribe(ProductItemsAdded, events.append)
    service = TenderService(store, bus, clock)

    async def run():
        tender = await service.create_tender(_data(clock))
        await service.add_items(tender.id, [TenderItem(id="i1", name="Bed", quantity=2, unit_price=100)])
        return await service.add_items(
            tender.id,
            [TenderItem(id="i1", name="Bed", quantity=3, unit_price=100), TenderItem(id="i2", name="Mattress")],
        )

    tender = asyncio.run(run())
    assert [(item.id, item.total) for item in tender.items] == [("i1", 300), ("i2", 0)]
    assert [e.item_ids for e in events] == [["i1"], ["i1", "i2"]]


def test_trash_and_restore(store, clock) -> None:
    bus = EventBus()
    restored_events: list[ProductItemRestored] = []
    bus.subscribe(ProductItemRestored, restored_events.append)
    service = TenderService(store, bus, clock)

    async def run():
        tender = await service.create_tender(_data(clock))
        await service.add_items(tender.id, [TenderItem(id="i1")])
        trash_id = await service.move_to_trash(tender.id)
        with pytest.raises(DocumentNotFoundError):
            await service.get_tender(tender.id)
        trash = await service.list_trash()
        restored = await service.restore_from_trash(trash_id)
        return tender, trash, restored, await service.list_trash()

    tender, trash, restored, trash_after = asyncio.run(run())
    assert trash[0]["original_id"] == tender.id
    assert restored.id == tender.id
    assert restored.title == tender.title
    assert trash_after == []
    assert restored_events[0].item_ids == ["i1"]


def test_permanent_delete_removes_trash_entry(store, clock) -> None:
    service = TenderService(store, clock=clock)

    async def run():
        tender = await service.create_tender(_data(clock))
        trash_id = await service.move_to_trash(tender.id)
        await service.permanently_delete(trash_id)
        return await service.list_trash(), await service.list_tenders()

    assert asyncio.run(run()) == ([], [])


def test_blank_estimated_value_is_stored_as_zero(store, clock) -> None:
    service = TenderService(store, clock=clock)

    async def run():
        return await service.create_tender(_data(clock, estimated_value="", reference_number=2025014))

    tender = asyncio.run(run())
    assert tender.estimated_value == 0
    assert tender.reference_number == "2025014"
