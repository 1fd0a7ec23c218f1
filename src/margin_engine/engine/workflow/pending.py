from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, List, NoReturn, Optional, Protocol

from margin_engine.engine.ledger.ledger import SkuLedger, coerce_price
from margin_engine.engine.margin.classifier import margin_status
from margin_engine.engine.workflow.models import (
    PendingUpdate,
    Priority,
    UpdateSource,
    UpdateStatus,
)
from margin_engine.persistence.memory import InMemoryPendingUpdates
from margin_engine.util.errors import AlreadyResolved, InvalidParameter, NotFound
from margin_engine.util.logging import get_logger, log_event
from margin_engine.util.metrics import CloudWatchMetrics


class PendingUpdateStore(Protocol):
    def create(self, update: PendingUpdate) -> None: ...

    def get(self, update_id: str) -> Optional[PendingUpdate]: ...

    def list(self, status: Optional[UpdateStatus] = None) -> List[PendingUpdate]: ...

    def transition(
        self,
        update_id: str,
        *,
        expected: UpdateStatus,
        status: UpdateStatus,
        **fields: Any,
    ) -> Optional[PendingUpdate]: ...


def format_margin_impact(delta: Decimal) -> str:
    rounded = delta.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    if rounded.is_zero():
        rounded = abs(rounded)
    return f"{rounded:+.1f}%"


class PendingUpdateWorkflow:
    """Approval gate between a proposed price and the ledger.

    A record leaves ``pending`` exactly once. The store performs the state
    change as a conditional write, so of two concurrent approvals only one
    claims the record and the other receives ``AlreadyResolved``.
    """

    def __init__(
        self,
        ledger: SkuLedger,
        store: PendingUpdateStore | None = None,
        *,
        metrics: CloudWatchMetrics | None = None,
    ) -> None:
        self.ledger = ledger
        self.store = store if store is not None else InMemoryPendingUpdates()
        self.metrics = metrics or CloudWatchMetrics.from_env()
        self.logger = get_logger(self.__class__.__name__)

    def create(
        self,
        sku_id: str,
        new_price: object,
        *,
        source: UpdateSource,
        requested_by: str,
        priority: Priority = Priority.MEDIUM,
        reason: Optional[str] = None,
    ) -> PendingUpdate:
        price = coerce_price(new_price, field="new_price")
        if not requested_by or not requested_by.strip():
            raise InvalidParameter("requested_by is required")
        try:
            source = UpdateSource(source)
            priority = Priority(priority)
        except ValueError as exc:
            raise InvalidParameter(str(exc)) from exc
        sku = self.ledger.get_by_id(sku_id)
        new_margin, _ = margin_status(price, sku.effective_cost(), self.ledger.thresholds)
        update = PendingUpdate(
            id=str(uuid.uuid4()),
            sku_id=sku.id,
            old_price=sku.selling_price,
            new_price=price,
            margin_impact=format_margin_impact(new_margin - sku.margin),
            source=source,
            priority=priority,
            requested_by=requested_by.strip(),
            reason=reason,
        )
        self.store.create(update)
        log_event(
            self.logger,
            "pending_update_created",
            update_id=update.id,
            sku_id=update.sku_id,
            old_price=update.old_price,
            new_price=update.new_price,
            source=update.source.value,
        )
        return update

    def get(self, update_id: str) -> PendingUpdate:
        update = self.store.get(update_id)
        if update is None:
            raise NotFound("pending update", update_id)
        return update

    def list(
        self,
        *,
        source: Optional[UpdateSource] = None,
        priority: Optional[Priority] = None,
        requested_by: Optional[str] = None,
    ) -> List[PendingUpdate]:
        matches = [
            update
            for update in self.store.list(UpdateStatus.PENDING)
            if update.status == UpdateStatus.PENDING
            and (source is None or update.source == source)
            and (priority is None or update.priority == priority)
            and (requested_by is None or update.requested_by == requested_by)
        ]
        return sorted(matches, key=lambda update: (update.created_at, update.id))

    def resolved(self) -> List[PendingUpdate]:
        records = [
            update for update in self.store.list() if update.status != UpdateStatus.PENDING
        ]
        return sorted(records, key=lambda update: (update.resolved_at or update.created_at, update.id))

    def approve(self, update_id: str, approved_by: Optional[str] = None) -> PendingUpdate:
        claimed = self.store.transition(
            update_id,
            expected=UpdateStatus.PENDING,
            status=UpdateStatus.APPROVED,
            resolved_at=datetime.now(timezone.utc),
            resolved_by=approved_by,
        )
        if claimed is None:
            self._raise_unresolvable(update_id, "approve")
        try:
            self.ledger.apply_price(claimed.sku_id, claimed.new_price)
        except Exception:
            # hand the record back so the change can be retried or rejected
            self.store.transition(
                update_id,
                expected=UpdateStatus.APPROVED,
                status=UpdateStatus.PENDING,
                resolved_at=None,
                resolved_by=None,
            )
            log_event(
                self.logger,
                "pending_update_release",
                level=logging.WARNING,
                update_id=update_id,
                sku_id=claimed.sku_id,
            )
            raise
        log_event(
            self.logger,
            "pending_update_approved",
            update_id=update_id,
            sku_id=claimed.sku_id,
            new_price=claimed.new_price,
            approved_by=approved_by,
        )
        return claimed

    def reject(
        self,
        update_id: str,
        reason: Optional[str],
        rejected_by: Optional[str] = None,
    ) -> PendingUpdate:
        if not reason or not reason.strip():
            raise InvalidParameter("a reason is required to reject a price change")
        rejected = self.store.transition(
            update_id,
            expected=UpdateStatus.PENDING,
            status=UpdateStatus.REJECTED,
            resolved_at=datetime.now(timezone.utc),
            resolved_by=rejected_by,
            rejection_reason=reason.strip(),
        )
        if rejected is None:
            self._raise_unresolvable(update_id, "reject")
        log_event(
            self.logger,
            "pending_update_rejected",
            update_id=update_id,
            sku_id=rejected.sku_id,
            rejected_by=rejected_by,
        )
        return rejected

    def _raise_unresolvable(self, update_id: str, transition: str) -> NoReturn:
        current = self.store.get(update_id)
        if current is None:
            raise NotFound("pending update", update_id)
        self.metrics.record_transition_conflict(transition=transition)
        log_event(
            self.logger,
            "pending_update_conflict",
            level=logging.WARNING,
            update_id=update_id,
            transition=transition,
            status=current.status.value,
        )
        raise AlreadyResolved(update_id, current.status.value)
