from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Union

from margin_engine.engine.ledger.models import Sku
from margin_engine.engine.margin.classifier import (
    DEFAULT_THRESHOLDS,
    HUNDRED,
    MarginStatus,
    MarginThresholds,
    margin_status,
)
from margin_engine.util.errors import InvalidParameter, InvalidPrice

PRICE_INCREMENT = Decimal("0.01")


class Direction(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"


class AdjustmentUnit(str, Enum):
    PERCENT = "percent"
    AMOUNT = "amount"


class CompetitorMode(str, Enum):
    MATCH = "match"
    BEAT = "beat"
    PREMIUM = "premium"


def round_price(value: Decimal, increment: Decimal = PRICE_INCREMENT) -> Decimal:
    if increment <= 0:
        return value
    increments = (value / increment).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return increments * increment


def _finalize(value: Decimal, sku: Sku) -> Decimal:
    price = round_price(value)
    if price < 0:
        raise InvalidPrice(f"adjusted price for {sku.id} would be negative: {price}")
    return price


def _finite(name: str, value: object) -> Decimal:
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise InvalidParameter(f"{name} is not a number: {value!r}") from exc
    if not number.is_finite():
        raise InvalidParameter(f"{name} must be a finite number, got {value!r}")
    return number


@dataclass(frozen=True)
class FlatAdjustment:
    value: Decimal
    direction: Direction = Direction.INCREASE
    unit: AdjustmentUnit = AdjustmentUnit.PERCENT

    kind = "flat"

    def compute(self, sku: Sku) -> Decimal:
        value = _finite("value", self.value)
        if value <= 0:
            raise InvalidParameter(f"value must be > 0, got {value}")
        if self.unit == AdjustmentUnit.PERCENT:
            change = sku.selling_price * value / HUNDRED
        else:
            change = value
        if self.direction == Direction.DECREASE:
            change = -change
        return _finalize(sku.selling_price + change, sku)


@dataclass(frozen=True)
class TargetMarginAdjustment:
    target_margin_percent: Decimal

    kind = "target_margin"

    def compute(self, sku: Sku) -> Decimal:
        target = _finite("target_margin_percent", self.target_margin_percent)
        if not Decimal("0") < target < HUNDRED:
            raise InvalidParameter(f"target_margin_percent must be in (0, 100), got {target}")
        cost = sku.effective_cost()
        return _finalize(cost / (Decimal("1") - target / HUNDRED), sku)


@dataclass(frozen=True)
class CompetitorAlignedAdjustment:
    mode: CompetitorMode = CompetitorMode.MATCH
    offset_percent: Decimal = Decimal("0")

    kind = "competitor_aligned"

    def compute(self, sku: Sku) -> Decimal:
        if not sku.competitor_known:
            raise InvalidParameter(f"competitor average unknown for {sku.id}")
        average = sku.competitor_average
        if self.mode == CompetitorMode.MATCH:
            return _finalize(average, sku)
        offset = _finite("offset_percent", self.offset_percent)
        if offset <= 0:
            raise InvalidParameter(f"offset_percent must be > 0, got {offset}")
        if self.mode == CompetitorMode.BEAT:
            if offset >= HUNDRED:
                raise InvalidParameter(f"offset_percent must be < 100, got {offset}")
            return _finalize(average * (Decimal("1") - offset / HUNDRED), sku)
        return _finalize(average * (Decimal("1") + offset / HUNDRED), sku)


PriceAdjustmentStrategy = Union[FlatAdjustment, TargetMarginAdjustment, CompetitorAlignedAdjustment]


@dataclass
class PricePreview:
    sku_id: str
    old_price: Decimal
    new_price: Decimal
    new_margin: Decimal
    margin_status: MarginStatus


def preview(
    strategy: PriceAdjustmentStrategy,
    sku: Sku,
    thresholds: MarginThresholds = DEFAULT_THRESHOLDS,
) -> PricePreview:
    new_price = strategy.compute(sku)
    margin, status = margin_status(new_price, sku.effective_cost(), thresholds)
    return PricePreview(
        sku_id=sku.id,
        old_price=sku.selling_price,
        new_price=new_price,
        new_margin=margin,
        margin_status=status,
    )
