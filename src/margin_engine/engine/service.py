from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from margin_engine.app.models.config import EngineConfig
from margin_engine.engine.bulk.executor import BulkOperationExecutor
from margin_engine.engine.ledger.ledger import SkuLedger, SkuStore
from margin_engine.engine.margin.risk import MarginRisk, margin_risks
from margin_engine.engine.pricing.strategies import PriceAdjustmentStrategy, PricePreview, preview
from margin_engine.engine.rules.registry import PriceRuleRegistry, PriceRuleStore
from margin_engine.engine.workflow.pending import PendingUpdateStore, PendingUpdateWorkflow
from margin_engine.util.metrics import CloudWatchMetrics


@dataclass
class PricingEngine:
    config: EngineConfig
    ledger: SkuLedger
    workflow: PendingUpdateWorkflow
    executor: BulkOperationExecutor
    registry: PriceRuleRegistry

    def margin_risks(
        self,
        *,
        category: Optional[str] = None,
        region: Optional[str] = None,
        urgent_only: bool = False,
    ) -> List[MarginRisk]:
        return margin_risks(
            self.ledger.get_all(),
            thresholds=self.ledger.thresholds,
            category=category,
            region=region,
            urgent_only=urgent_only,
        )

    def preview(self, strategy: PriceAdjustmentStrategy, sku_id: str) -> PricePreview:
        return preview(strategy, self.ledger.get_by_id(sku_id), self.ledger.thresholds)


def build_engine(
    config: EngineConfig | None = None,
    *,
    sku_store: SkuStore | None = None,
    pending_store: PendingUpdateStore | None = None,
    rule_store: PriceRuleStore | None = None,
    metrics: CloudWatchMetrics | None = None,
) -> PricingEngine:
    config = config or EngineConfig()
    metrics = metrics or CloudWatchMetrics.from_env()
    ledger = SkuLedger(
        sku_store,
        thresholds=config.margin_thresholds.to_thresholds(),
        cas_attempts=config.ledger.cas_attempts,
        history_limit=config.ledger.history_limit,
    )
    workflow = PendingUpdateWorkflow(ledger, pending_store, metrics=metrics)
    executor = BulkOperationExecutor(
        ledger,
        workflow=workflow,
        max_workers=config.bulk.max_workers,
        metrics=metrics,
    )
    return PricingEngine(
        config=config,
        ledger=ledger,
        workflow=workflow,
        executor=executor,
        registry=PriceRuleRegistry(rule_store),
    )
