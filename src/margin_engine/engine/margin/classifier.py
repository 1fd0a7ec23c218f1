from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum

PERCENT_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")


class MarginStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class MarginThresholds:
    """Lower bounds (exclusive) of each risk tier, in margin percent.

    ``critical_below`` and ``warning_below`` drive the authoritative
    classification stored on every SKU. ``urgent_below`` only splits the
    risk view and never changes a stored status.
    """

    critical_below: Decimal = Decimal("10")
    warning_below: Decimal = Decimal("15")
    urgent_below: Decimal = Decimal("5")


DEFAULT_THRESHOLDS = MarginThresholds()


def _exact_margin(selling_price: Decimal, cost: Decimal) -> Decimal:
    return (selling_price - cost) / selling_price * HUNDRED


def compute_margin(selling_price: Decimal, cost: Decimal) -> Decimal:
    if selling_price <= 0:
        return Decimal("0")
    return _exact_margin(selling_price, cost).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)


def classify(margin: Decimal, thresholds: MarginThresholds = DEFAULT_THRESHOLDS) -> MarginStatus:
    if margin < thresholds.critical_below:
        return MarginStatus.CRITICAL
    if margin < thresholds.warning_below:
        return MarginStatus.WARNING
    return MarginStatus.HEALTHY


def margin_status(
    selling_price: Decimal,
    cost: Decimal,
    thresholds: MarginThresholds = DEFAULT_THRESHOLDS,
) -> tuple[Decimal, MarginStatus]:
    """Stored two-decimal margin and the tier of the unrounded margin."""
    # a zero price has no meaningful margin and is always critical
    if selling_price <= 0:
        return Decimal("0"), MarginStatus.CRITICAL
    exact = _exact_margin(selling_price, cost)
    return exact.quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP), classify(exact, thresholds)
