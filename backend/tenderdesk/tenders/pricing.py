"""Price study calculations for tender bids.

Monetary results are rounded to 10 decimal places to keep sums of
float percentages stable across recalculation.
"""

import logging
from datetime import datetime, timezone

from tenderdesk.storage.base import SERVER_TIMESTAMP, DocumentStore
from tenderdesk.tenders.models import ItemProfit, PriceStudy, PriceStudyInput, TenderItem

logger = logging.getLogger(__name__)

STUDIES_COLLECTION = "tender_studies"

PRECISION = 10


def _round(value: float) -> float:
    return round(value, PRECISION)


def calculate_item_profit(item: TenderItem, profit: ItemProfit) -> float:
    """Profit on one line item, percentage of its total or a fixed amount."""
    if profit.value < 0:
        raise ValueError(f"Profit for item {item.id} cannot be negative, got {profit.value}")
    if profit.type == "percentage":
        return _round(item.total * profit.value / 100)
    return _round(profit.value)


def resolve_base_cost(data: PriceStudyInput) -> float:
    """Grand total if set, else estimated value, else the sum of item totals."""
    subtotal = sum(item.total for item in data.items)
    return float(data.grand_total or data.estimated_value or subtotal or 0)


def calculate_price_study(data: PriceStudyInput, vat_rate: float = 0.15) -> PriceStudy:
    """Compute final bid price from base cost and the chosen profit method."""
    if not 0 <= vat_rate < 1:
        raise ValueError(f"VAT rate must be between 0 and 1, got {vat_rate}")

    base_cost = resolve_base_cost(data)

    if data.item_profits:
        items = {item.id: item for item in data.items}
        total_profit = 0.0
        for profit in data.item_profits:
            item = items.get(profit.item_id)
            if item is None:
                logger.warning(f"Profit set for unknown item {profit.item_id}, ignoring")
                continue
            total_profit += calculate_item_profit(item, profit)
        total_profit = _round(total_profit)
        method = "per_item"
    else:
        if data.fixed_profit < 0 or data.profit_percentage < 0:
            raise ValueError("Profit amounts cannot be negative")
        percentage_amount = _round(base_cost * data.profit_percentage / 100)
        total_profit = _round(data.fixed_profit + percentage_amount)
        method = "overall"

    final_price = _round(base_cost + total_profit)
    profit_margin = _round(total_profit / base_cost * 100) if base_cost > 0 else 0.0
    vat_amount = _round(final_price * vat_rate)

    return PriceStudy(
        base_cost=base_cost,
        total_profit=total_profit,
        final_price=final_price,
        profit_margin=profit_margin,
        vat_amount=vat_amount,
        final_price_with_vat=_round(final_price + vat_amount),
        method=method,
    )


class PriceStudyService:
    """Stores one price study per tender, keyed by tender id."""

    def __init__(self, store: DocumentStore, vat_rate: float = 0.15):
        self.store = store
        self.vat_rate = vat_rate

    async def save_study(self, tender_id: str, data: PriceStudyInput) -> PriceStudy:
        study = calculate_price_study(data, self.vat_rate)
        await self.store.set(
            STUDIES_COLLECTION,
            tender_id,
            {
                "tender_id": tender_id,
                "input": data.model_dump(mode="json"),
                "profit_calculation": study.model_dump(),
                "calculated_at": datetime.now(timezone.utc),
                "updated_at": SERVER_TIMESTAMP,
            },
        )
        logger.info(f"Saved price study for {tender_id}: final price {study.final_price:,.2f}")
        return study

    async def get_study(self, tender_id: str) -> PriceStudy | None:
        doc = await self.store.get(STUDIES_COLLECTION, tender_id)
        if not doc or not doc.get("profit_calculation"):
            return None
        return PriceStudy(**doc["profit_calculation"])
