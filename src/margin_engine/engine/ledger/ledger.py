from __future__ import annotations

import logging
import threading
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List, Optional, Protocol

from margin_engine.engine.ledger.models import PriceHistoryEntry, Sku, utcnow
from margin_engine.engine.margin.classifier import DEFAULT_THRESHOLDS, MarginThresholds, margin_status
from margin_engine.persistence.memory import InMemorySkus
from margin_engine.util.errors import ConcurrentUpdate, InvalidPrice, NotFound
from margin_engine.util.logging import get_logger, log_event


class SkuStore(Protocol):
    def get(self, sku_id: str) -> Optional[Sku]: ...

    def list(self) -> List[Sku]: ...

    def compare_and_set(self, sku: Sku, expected_version: Optional[int]) -> bool: ...


def coerce_price(value: object, *, field: str = "price") -> Decimal:
    if isinstance(value, Decimal):
        price = value
    else:
        try:
            price = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError) as exc:
            raise InvalidPrice(f"{field} is not a number: {value!r}") from exc
    if not price.is_finite():
        raise InvalidPrice(f"{field} must be finite: {value!r}")
    if price < 0:
        raise InvalidPrice(f"{field} must be >= 0: {value!r}")
    return price


class SkuLedger:
    """Single writer of SKU prices and their derived margin fields.

    Writes against one SKU id are serialized by an in-process lock and
    persisted with a compare-and-set on ``Sku.version``, so the stored
    margin is always derived from the price that was actually written.
    """

    def __init__(
        self,
        store: SkuStore | None = None,
        *,
        thresholds: MarginThresholds = DEFAULT_THRESHOLDS,
        cas_attempts: int = 3,
        history_limit: int = 20,
    ) -> None:
        self.store = store if store is not None else InMemorySkus()
        self.thresholds = thresholds
        self.cas_attempts = max(1, cas_attempts)
        self.history_limit = history_limit
        self.logger = get_logger(self.__class__.__name__)
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, sku_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(sku_id, threading.Lock())

    def get_all(self) -> List[Sku]:
        return self.store.list()

    def get_by_id(self, sku_id: str) -> Sku:
        sku = self.store.get(sku_id)
        if sku is None:
            raise NotFound("sku", sku_id)
        return sku

    def history(self, sku_id: str) -> List[PriceHistoryEntry]:
        return list(self.get_by_id(sku_id).history)

    def register(self, sku: Sku) -> Sku:
        """Store a catalog snapshot, deriving its margin fields."""
        margin, status = margin_status(sku.selling_price, sku.effective_cost(), self.thresholds)
        with self._lock_for(sku.id):
            existing = self.store.get(sku.id)
            expected_version = existing.version if existing else None
            stored = sku.model_copy(
                update={
                    "margin": margin,
                    "margin_status": status,
                    "version": (expected_version or 0) + 1,
                    "history": list(existing.history) if existing else [],
                    "updated_at": utcnow(),
                }
            )
            if not self.store.compare_and_set(stored, expected_version):
                raise ConcurrentUpdate(f"sku {sku.id} changed during registration")
        log_event(self.logger, "sku_registered", sku_id=stored.id, margin=stored.margin)
        return stored

    def apply_price(
        self,
        sku_id: str,
        new_selling_price: object,
        new_base_price: object | None = None,
    ) -> Sku:
        selling_price = coerce_price(new_selling_price, field="selling_price")
        base_price = (
            coerce_price(new_base_price, field="base_price") if new_base_price is not None else None
        )
        return self._write(sku_id, lambda current: selling_price, base_price)

    def reprice(self, sku_id: str, compute: Callable[[Sku], object]) -> Sku:
        """Derive the new selling price from the SKU as stored at write time.

        ``compute`` runs under the SKU's lock and again after every
        compare-and-set conflict, so relative adjustments never apply to a
        stale price. Errors raised by ``compute`` propagate unchanged.
        """
        return self._write(
            sku_id, lambda current: coerce_price(compute(current), field="selling_price"), None
        )

    def _write(
        self,
        sku_id: str,
        price_for: Callable[[Sku], Decimal],
        base_price: Decimal | None,
    ) -> Sku:
        with self._lock_for(sku_id):
            for attempt in range(1, self.cas_attempts + 1):
                current = self.get_by_id(sku_id)
                updated = self._repriced(current, price_for(current), base_price)
                if self.store.compare_and_set(updated, current.version):
                    log_event(
                        self.logger,
                        "price_applied",
                        sku_id=sku_id,
                        old_price=current.selling_price,
                        new_price=updated.selling_price,
                        margin=updated.margin,
                        margin_status=updated.margin_status.value,
                    )
                    return updated
                log_event(
                    self.logger,
                    "price_write_conflict",
                    level=logging.WARNING,
                    sku_id=sku_id,
                    attempt=attempt,
                )
        raise ConcurrentUpdate(f"sku {sku_id} kept changing after {self.cas_attempts} attempts")

    def _repriced(self, current: Sku, selling_price: Decimal, base_price: Decimal | None) -> Sku:
        # cost is read before the price moves so a reconstructed cost uses
        # the margin that belonged to the old price
        cost = current.effective_cost()
        margin, status = margin_status(selling_price, cost, self.thresholds)
        entry = PriceHistoryEntry(
            selling_price=current.selling_price,
            base_price=current.base_price,
            margin=current.margin,
            changed_at=current.updated_at,
        )
        history = (list(current.history) + [entry])[-self.history_limit:] if self.history_limit else []
        return current.model_copy(
            update={
                "selling_price": selling_price,
                "base_price": base_price if base_price is not None else current.base_price,
                "margin": margin,
                "margin_status": status,
                "version": current.version + 1,
                "history": history,
                "updated_at": utcnow(),
            }
        )
