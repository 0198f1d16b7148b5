"""Pydantic models for tender records, price studies and competitor prices."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tenderdesk.storage.base import coerce_amount, coerce_datetime, coerce_text

TenderStatus = Literal["draft", "active", "submitted", "awarded", "lost", "cancelled"]
ProfitType = Literal["percentage", "fixed"]


class TenderItem(BaseModel):
    """Line item in a tender's bill of quantities."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: str = ""
    quantity: float = 1
    unit_price: float = 0
    total_price: float | None = None

    @property
    def total(self) -> float:
        if self.total_price is not None:
            return self.total_price
        return self.quantity * self.unit_price


class Tender(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    title: str
    reference_number: str
    entity: str
    description: str = ""
    estimated_value: float = 0
    submission_deadline: datetime | None = None
    contact_email: str | None = None
    status: TenderStatus = "active"
    items: list[TenderItem] = Field(default_factory=list)
    documents: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("submission_deadline", "created_at", "updated_at", mode="before")
    @classmethod
    def parse_timestamp(cls, v: Any) -> datetime | None:
        return coerce_datetime(v)

    @field_validator("estimated_value", mode="before")
    @classmethod
    def parse_amount(cls, v: Any) -> float:
        return coerce_amount(v)

    @field_validator("reference_number", "description", mode="before")
    @classmethod
    def parse_text(cls, v: Any) -> str:
        return coerce_text(v)


class ItemProfit(BaseModel):
    """Per-item markup: a percentage of the item total or a fixed amount."""

    item_id: str
    type: ProfitType = "percentage"
    value: float = 0


class PriceStudyInput(BaseModel):
    items: list[TenderItem] = Field(default_factory=list)
    estimated_value: float = 0
    grand_total: float | None = None
    item_profits: list[ItemProfit] = Field(default_factory=list)
    fixed_profit: float = 0
    profit_percentage: float = 0


class PriceStudy(BaseModel):
    base_cost: float
    total_profit: float
    final_price: float
    profit_margin: float
    vat_amount: float
    final_price_with_vat: float
    method: Literal["per_item", "overall"]


class CompetitorPrice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    tender_id: str
    competitor_id: str
    competitor_name: str
    competitor_email: str = ""
    competitor_phone: str = ""
    competitor_city: str = ""
    price: float = 0
    created_by: str = "system"
    added_at: datetime | None = None

    @field_validator("competitor_id", "competitor_name")
    @classmethod
    def require_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("added_at", mode="before")
    @classmethod
    def parse_timestamp(cls, v: Any) -> datetime | None:
        return coerce_datetime(v)


class TenderResultStats(BaseModel):
    our_price: float = 0
    lowest_price: float = 0
    highest_price: float = 0
    average_price: float = 0
    competitor_count: int = 0
    total_bids: int = 0
