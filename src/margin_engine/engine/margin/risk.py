from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

from margin_engine.engine.ledger.models import Sku
from margin_engine.engine.margin.classifier import DEFAULT_THRESHOLDS, MarginStatus, MarginThresholds

AT_RISK = {MarginStatus.WARNING, MarginStatus.CRITICAL}


@dataclass
class MarginRisk:
    sku: Sku
    urgent: bool


def margin_risks(
    skus: Iterable[Sku],
    *,
    thresholds: MarginThresholds = DEFAULT_THRESHOLDS,
    category: Optional[str] = None,
    region: Optional[str] = None,
    urgent_only: bool = False,
) -> List[MarginRisk]:
    """Filter SKUs already flagged by the ledger into the review list.

    The stored ``margin_status`` decides membership; the urgent split is a
    stricter display cut and never reclassifies a SKU.
    """
    risks: List[MarginRisk] = []
    for sku in skus:
        if sku.margin_status not in AT_RISK:
            continue
        if category is not None and sku.category != category:
            continue
        if region is not None and sku.region != region:
            continue
        urgent = sku.margin < thresholds.urgent_below
        if urgent_only and not urgent:
            continue
        risks.append(MarginRisk(sku=sku, urgent=urgent))
    risks.sort(key=lambda risk: (not risk.urgent, risk.sku.margin, risk.sku.id))
    return risks
