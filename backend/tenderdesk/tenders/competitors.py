"""Competitor prices and tender result statistics."""

import logging
from typing import Any

from tenderdesk.exceptions import DuplicateCompetitorError
from tenderdesk.storage.base import SERVER_TIMESTAMP, DocumentStore, coerce_datetime
from tenderdesk.tenders.models import CompetitorPrice, TenderResultStats
from tenderdesk.tenders.pricing import PriceStudyService

logger = logging.getLogger(__name__)

COMPETITOR_PRICES_COLLECTION = "competitorPrices"
TENDER_RESULTS_COLLECTION = "tenderResults"


def _added_at(doc: dict) -> float:
    dt = coerce_datetime(doc.get("added_at"))
    return dt.timestamp() if dt else 0.0


class CompetitorPriceService:
    def __init__(self, store: DocumentStore, studies: PriceStudyService):
        self.store = store
        self.studies = studies

    async def get_tender_result(self, tender_id: str) -> dict | None:
        return await self.store.get(TENDER_RESULTS_COLLECTION, tender_id)

    async def save_tender_result(self, tender_id: str, data: dict[str, Any]) -> None:
        existing = await self.get_tender_result(tender_id)
        payload = {**(existing or {}), **data, "tender_id": tender_id, "updated_at": SERVER_TIMESTAMP}
        if existing is None:
            payload["created_at"] = SERVER_TIMESTAMP
        await self.store.set(TENDER_RESULTS_COLLECTION, tender_id, payload)

    async def get_competitor_prices(self, tender_id: str) -> list[CompetitorPrice]:
        """One price per competitor (most recently added), newest first."""
        docs = await self.store.query(COMPETITOR_PRICES_COLLECTION, {"tender_id": tender_id})
        latest: dict[str, dict] = {}
        for doc in docs:
            competitor_id = doc.get("competitor_id")
            if not competitor_id:
                continue
            if competitor_id not in latest or _added_at(doc) > _added_at(latest[competitor_id]):
                latest[competitor_id] = doc

        prices = sorted(latest.values(), key=_added_at, reverse=True)
        if len(prices) != len(docs):
            logger.debug(f"Collapsed {len(docs)} competitor prices to {len(prices)} for {tender_id}")
        return [CompetitorPrice(**doc) for doc in prices]

    async def competitor_exists(
        self, tender_id: str, competitor_id: str, competitor_name: str | None = None
    ) -> bool:
        """Match on competitor id, or on name ignoring case."""
        docs = await self.store.query(COMPETITOR_PRICES_COLLECTION, {"tender_id": tender_id})
        name = (competitor_name or "").strip().lower()
        return any(
            doc.get("competitor_id") == competitor_id
            or (name and str(doc.get("competitor_name") or "").strip().lower() == name)
            for doc in docs
        )

    async def add_competitor_price(self, price: CompetitorPrice) -> CompetitorPrice:
        if await self.competitor_exists(price.tender_id, price.competitor_id, price.competitor_name):
            raise DuplicateCompetitorError(
                f"المنافس {price.competitor_name} مضاف مسبقاً لهذه المناقصة", status_code=409
            )

        data = price.model_dump(exclude={"id", "added_at"})
        data.update({"added_at": SERVER_TIMESTAMP, "updated_at": SERVER_TIMESTAMP})
        doc_id = await self.store.add(COMPETITOR_PRICES_COLLECTION, data)
        logger.info(f"Added competitor {price.competitor_name} to {price.tender_id}: {price.price:,.2f}")
        return CompetitorPrice(**(await self.store.get(COMPETITOR_PRICES_COLLECTION, doc_id)))

    async def update_competitor_price(self, price_id: str, updates: dict[str, Any]) -> None:
        updates = {k: v for k, v in updates.items() if k not in ("id", "tender_id", "competitor_id")}
        if "price" in updates:
            updates["price"] = float(updates["price"] or 0)
        updates["updated_at"] = SERVER_TIMESTAMP
        await self.store.update(COMPETITOR_PRICES_COLLECTION, price_id, updates)

    async def delete_competitor_price(self, price_id: str) -> None:
        await self.store.delete(COMPETITOR_PRICES_COLLECTION, price_id)

    async def delete_all_competitor_prices(self, tender_id: str) -> int:
        docs = await self.store.query(COMPETITOR_PRICES_COLLECTION, {"tender_id": tender_id})
        for doc in docs:
            await self.store.delete(COMPETITOR_PRICES_COLLECTION, doc["id"])
        return len(docs)

    async def _our_price(self, tender_id: str) -> float:
        study = await self.studies.get_study(tender_id)
        if study is not None:
            return study.final_price
        result = await self.get_tender_result(tender_id)
        try:
            return float((result or {}).get("our_price") or 0)
        except (TypeError, ValueError):
            return 0.0

    async def get_tender_result_stats(self, tender_id: str) -> TenderResultStats:
        """Bid statistics including our own price. Non-positive prices are ignored."""
        our_price = await self._our_price(tender_id)
        competitor_prices = [
            p.price for p in await self.get_competitor_prices(tender_id) if p.price > 0
        ]
        all_prices = [p for p in [our_price, *competitor_prices] if p > 0]

        if not all_prices:
            return TenderResultStats(our_price=our_price)

        return TenderResultStats(
            our_price=our_price,
            lowest_price=min(all_prices),
            highest_price=max(all_prices),
            average_price=sum(all_prices) / len(all_prices),
            competitor_count=len(competitor_prices),
            total_bids=len(all_prices),
        )
