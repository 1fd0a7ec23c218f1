from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from margin_engine.engine.margin.classifier import HUNDRED, MarginStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PriceHistoryEntry(BaseModel):
    selling_price: Decimal
    base_price: Decimal
    margin: Decimal
    changed_at: datetime


class Sku(BaseModel):
    id: str
    name: Optional[str] = None
    category: Optional[str] = None
    region: Optional[str] = None
    cost: Optional[Decimal] = None
    base_price: Decimal = Decimal("0")
    selling_price: Decimal
    competitor_average: Optional[Decimal] = None
    margin: Decimal = Decimal("0")
    margin_status: MarginStatus = MarginStatus.CRITICAL
    version: int = 0
    history: List[PriceHistoryEntry] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("id")
    @classmethod
    def required_stripped(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("value is required")
        return value.strip()

    @field_validator("cost", "base_price", "selling_price", "competitor_average")
    @classmethod
    def non_negative_amount(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        if value is None:
            return None
        if not value.is_finite():
            raise ValueError("amount must be finite")
        if value < 0:
            raise ValueError("amount must be >= 0")
        return value

    def effective_cost(self) -> Decimal:
        """Stored cost, or the cost implied by the last known margin."""
        if self.cost is not None:
            return self.cost
        return self.selling_price * (Decimal("1") - self.margin / HUNDRED)

    @property
    def competitor_known(self) -> bool:
        return self.competitor_average is not None and self.competitor_average > 0
