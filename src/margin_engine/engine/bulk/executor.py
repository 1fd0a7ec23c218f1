from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, TypeVar, Union

from pydantic import BaseModel, Field

from margin_engine.engine.ledger.ledger import SkuLedger
from margin_engine.engine.ledger.models import Sku
from margin_engine.engine.pricing.strategies import PriceAdjustmentStrategy
from margin_engine.engine.workflow.models import Priority, UpdateSource
from margin_engine.engine.workflow.pending import PendingUpdateWorkflow
from margin_engine.util.errors import InvalidParameter, InvalidPrice
from margin_engine.util.logging import get_logger, log_event
from margin_engine.util.metrics import CloudWatchMetrics

T = TypeVar("T")


class SkippedItem(BaseModel):
    sku_id: str
    reason: str


class BulkOperationResult(BaseModel):
    attempted: int
    applied: int
    skipped: List[SkippedItem] = Field(default_factory=list)
    pending_update_ids: List[str] = Field(default_factory=list)


class _Outcome(BaseModel):
    sku_id: str
    skip_reason: Optional[str] = None
    pending_update_id: Optional[str] = None


def _target_id(target: Union[Sku, str]) -> str:
    return target.id if isinstance(target, Sku) else target


class BulkOperationExecutor:
    """Applies one strategy across many SKUs with per-item skip semantics.

    Every item is computed from the SKU as currently stored, never from the
    snapshot handed in by the caller. Re-running a flat or percentage batch
    therefore compounds, while target-margin and competitor-aligned batches
    converge on the same prices.
    """

    def __init__(
        self,
        ledger: SkuLedger,
        *,
        workflow: PendingUpdateWorkflow | None = None,
        max_workers: int = 1,
        metrics: CloudWatchMetrics | None = None,
    ) -> None:
        self.ledger = ledger
        self.workflow = workflow
        self.max_workers = max_workers
        self.metrics = metrics or CloudWatchMetrics.from_env()
        self.logger = get_logger(self.__class__.__name__)

    def execute(
        self,
        strategy: PriceAdjustmentStrategy,
        targets: Sequence[Union[Sku, str]],
    ) -> BulkOperationResult:
        def apply_one(sku_id: str) -> _Outcome:
            try:
                self.ledger.reprice(sku_id, strategy.compute)
            except (InvalidParameter, InvalidPrice) as exc:
                return _Outcome(sku_id=sku_id, skip_reason=str(exc))
            return _Outcome(sku_id=sku_id)

        outcomes = self._run([_target_id(target) for target in targets], apply_one)
        return self._report("bulk_operation_completed", strategy, outcomes)

    def propose(
        self,
        strategy: PriceAdjustmentStrategy,
        targets: Sequence[Union[Sku, str]],
        *,
        requested_by: str,
        source: UpdateSource = UpdateSource.MANUAL,
        priority: Priority = Priority.MEDIUM,
        reason: Optional[str] = None,
    ) -> BulkOperationResult:
        """Route the computed prices into the approval workflow."""
        if self.workflow is None:
            raise ValueError("no approval workflow configured for gated bulk operations")
        workflow = self.workflow

        def propose_one(sku_id: str) -> _Outcome:
            current = self.ledger.get_by_id(sku_id)
            try:
                new_price = strategy.compute(current)
                update = workflow.create(
                    sku_id,
                    new_price,
                    source=source,
                    requested_by=requested_by,
                    priority=priority,
                    reason=reason,
                )
            except (InvalidParameter, InvalidPrice) as exc:
                return _Outcome(sku_id=sku_id, skip_reason=str(exc))
            return _Outcome(sku_id=sku_id, pending_update_id=update.id)

        outcomes = self._run([_target_id(target) for target in targets], propose_one)
        return self._report("bulk_proposal_completed", strategy, outcomes)

    def _run(self, sku_ids: List[str], func: Callable[[str], T]) -> List[T]:
        if self.max_workers <= 1 or len(sku_ids) <= 1:
            return [func(sku_id) for sku_id in sku_ids]
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            return list(pool.map(func, sku_ids))

    def _report(
        self,
        event: str,
        strategy: PriceAdjustmentStrategy,
        outcomes: List[_Outcome],
    ) -> BulkOperationResult:
        skipped = [
            SkippedItem(sku_id=outcome.sku_id, reason=outcome.skip_reason)
            for outcome in outcomes
            if outcome.skip_reason is not None
        ]
        result = BulkOperationResult(
            attempted=len(outcomes),
            applied=len(outcomes) - len(skipped),
            skipped=skipped,
            pending_update_ids=[
                outcome.pending_update_id for outcome in outcomes if outcome.pending_update_id
            ],
        )
        self.metrics.record_bulk_operation(
            strategy=strategy.kind, applied=result.applied, skipped=len(result.skipped)
        )
        log_event(
            self.logger,
            event,
            strategy=strategy.kind,
            attempted=result.attempted,
            applied=result.applied,
            skipped=[item.model_dump() for item in result.skipped],
        )
        return result
