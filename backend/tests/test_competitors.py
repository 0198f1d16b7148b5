"""Tests for competitor prices and bid statistics."""

import asyncio

import pytest
from pydantic import ValidationError

from tenderdesk.exceptions import DuplicateCompetitorError
from tenderdesk.tenders.competitors import COMPETITOR_PRICES_COLLECTION, CompetitorPriceService
from tenderdesk.tenders.models import CompetitorPrice, PriceStudyInput
from tenderdesk.tenders.pricing import PriceStudyService


def _service(store) -> CompetitorPriceService:
    return CompetitorPriceService(store, PriceStudyService(store))


def _price(competitor_id: str, price: float, tender_id: str = "t1") -> CompetitorPrice:
    return CompetitorPrice(
        tender_id=tender_id,
        competitor_id=competitor_id,
        competitor_name=f"Company {competitor_id}",
        price=price,
    )


def test_duplicate_competitor_is_rejected(store) -> None:
    service = _service(store)

    async def run():
        added = await service.add_competitor_price(_price("c1", 100))
        with pytest.raises(DuplicateCompetitorError) as exc:
            await service.add_competitor_price(_price("c1", 90))
        with pytest.raises(DuplicateCompetitorError):
            await service.add_competitor_price(
                CompetitorPrice(tender_id="t1", competitor_id="c9", competitor_name="company C1 ", price=70)
            )
        other_tender = await service.add_competitor_price(_price("c1", 80, tender_id="t2"))
        return added, exc.value, other_tender

    added, error, other_tender = asyncio.run(run())
    assert added.id is not None
    assert error.status_code == 409
    assert other_tender.tender_id == "t2"


def test_blank_competitor_fields_fail_validation() -> None:
    with pytest.raises(ValidationError):
        CompetitorPrice(tender_id="t1", competitor_id=" ", competitor_name="X")


def test_prices_collapse_to_latest_per_competitor(store, clock) -> None:
    service = _service(store)

    async def run():
        await store.add(COMPETITOR_PRICES_COLLECTION, {"tender_id": "t1", "competitor_id": "c1", "competitor_name": "A", "price": 100, "added_at": clock()})
        clock.advance(minutes=1)
        await store.add(COMPETITOR_PRICES_COLLECTION, {"tender_id": "t1", "competitor_id": "c1", "competitor_name": "A", "price": 95, "added_at": clock()})
        clock.advance(minutes=1)
        await store.add(COMPETITOR_PRICES_COLLECTION, {"tender_id": "t1", "competitor_id": "c2", "competitor_name": "B", "price": 120, "added_at": clock()})
        return await service.get_competitor_prices("t1")

    prices = asyncio.run(run())
    assert [(p.competitor_id, p.price) for p in prices] == [("c2", 120), ("c1", 95)]


def test_update_and_delete(store) -> None:
    service = _service(store)

    async def run():
        added = await service.add_competitor_price(_price("c1", 100))
        await service.update_competitor_price(added.id, {"price": "150", "competitor_id": "hijack"})
        updated = (await service.get_competitor_prices("t1"))[0]
        await service.add_competitor_price(_price("c2", 90))
        await service.delete_competitor_price(added.id)
        remaining = await service.get_competitor_prices("t1")
        cleared = await service.delete_all_competitor_prices("t1")
        return updated, remaining, cleared

    updated, remaining, cleared = asyncio.run(run())
    assert updated.price == 150
    assert updated.competitor_id == "c1"
    assert [p.competitor_id for p in remaining] == ["c2"]
    assert cleared == 1


def test_stats_include_our_price_from_study(store) -> None:
    service = _service(store)

    async def run():
        await service.studies.save_study("t1", PriceStudyInput(estimated_value=1000, profit_percentage=10))
        await service.add_competitor_price(_price("c1", 1000))
        await service.add_competitor_price(_price("c2", 1300))
        await service.add_competitor_price(_price("c3", 0))
        return await service.get_tender_result_stats("t1")

    stats = asyncio.run(run())
    assert stats.our_price == 1100
    assert stats.lowest_price == 1000
    assert stats.highest_price == 1300
    assert stats.average_price == pytest.approx(1133.3333333)
    assert stats.competitor_count == 2
    assert stats.total_bids == 3


def test_stats_fall_back_to_saved_result_then_zero(store) -> None:
    service = _service(store)

    async def run():
        empty = await service.get_tender_result_stats("t1")
        await service.save_tender_result("t1", {"our_price": "500", "status": "lost"})
        return empty, await service.get_tender_result_stats("t1"), await service.get_tender_result("t1")

    empty, stats, result = asyncio.run(run())
    assert empty.total_bids == 0
    assert empty.lowest_price == 0
    assert stats.our_price == 500
    assert stats.total_bids == 1
    assert result["status"] == "lost"
    assert result["created_at"] is not None
