from __future__ import annotations

from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from margin_engine.engine.ledger.models import Sku
from margin_engine.engine.pricing.strategies import (
    AdjustmentUnit,
    CompetitorAlignedAdjustment,
    CompetitorMode,
    Direction,
    FlatAdjustment,
    PriceAdjustmentStrategy,
    TargetMarginAdjustment,
)
from margin_engine.engine.workflow.models import Priority, UpdateSource


class FlatAdjustmentRequest(BaseModel):
    kind: Literal["flat"] = "flat"
    value: Decimal
    direction: Direction = Direction.INCREASE
    unit: AdjustmentUnit = AdjustmentUnit.PERCENT

    def to_strategy(self) -> PriceAdjustmentStrategy:
        return FlatAdjustment(value=self.value, direction=self.direction, unit=self.unit)


class TargetMarginRequest(BaseModel):
    kind: Literal["target_margin"] = "target_margin"
    target_margin_percent: Decimal

    def to_strategy(self) -> PriceAdjustmentStrategy:
        return TargetMarginAdjustment(target_margin_percent=self.target_margin_percent)


class CompetitorAlignedRequest(BaseModel):
    kind: Literal["competitor_aligned"] = "competitor_aligned"
    mode: CompetitorMode = CompetitorMode.MATCH
    offset_percent: Decimal = Decimal("0")

    def to_strategy(self) -> PriceAdjustmentStrategy:
        return CompetitorAlignedAdjustment(mode=self.mode, offset_percent=self.offset_percent)


StrategyRequest = Annotated[
    Union[FlatAdjustmentRequest, TargetMarginRequest, CompetitorAlignedRequest],
    Field(discriminator="kind"),
]


class BulkOperationRequest(BaseModel):
    strategy: StrategyRequest
    # empty means every SKU in the ledger
    sku_ids: List[str] = Field(default_factory=list)


class BulkProposalRequest(BulkOperationRequest):
    source: UpdateSource = UpdateSource.MANUAL
    priority: Optional[Priority] = None
    reason: Optional[str] = None


class PreviewRequest(BaseModel):
    strategy: StrategyRequest
    sku_ids: List[str]


class PriceUpdateRequest(BaseModel):
    selling_price: Decimal
    base_price: Optional[Decimal] = None


class PendingUpdateRequest(BaseModel):
    sku_id: str
    new_price: Decimal
    source: UpdateSource = UpdateSource.MANUAL
    priority: Optional[Priority] = None
    reason: Optional[str] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class MarginRiskView(BaseModel):
    sku: Sku
    urgent: bool
