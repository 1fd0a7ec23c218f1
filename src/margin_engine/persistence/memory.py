from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional

from margin_engine.engine.ledger.models import Sku
from margin_engine.engine.rules.models import PriceRule
from margin_engine.engine.workflow.models import PendingUpdate, UpdateStatus


class InMemorySkus:
    def __init__(self) -> None:
        self._data: Dict[str, Sku] = {}
        self._guard = threading.Lock()

    def get(self, sku_id: str) -> Optional[Sku]:
        return self._data.get(sku_id)

    def list(self) -> List[Sku]:
        return list(self._data.values())

    def compare_and_set(self, sku: Sku, expected_version: Optional[int]) -> bool:
        with self._guard:
            current = self._data.get(sku.id)
            current_version = current.version if current else None
            if current_version != expected_version:
                return False
            self._data[sku.id] = sku
            return True


class InMemoryPendingUpdates:
    def __init__(self) -> None:
        self._data: Dict[str, PendingUpdate] = {}
        self._guard = threading.Lock()

    def create(self, update: PendingUpdate) -> None:
        self._data[update.id] = update

    def get(self, update_id: str) -> Optional[PendingUpdate]:
        return self._data.get(update_id)

    def list(self, status: Optional[UpdateStatus] = None) -> List[PendingUpdate]:
        return [
            update for update in self._data.values() if status is None or update.status == status
        ]

    def transition(
        self,
        update_id: str,
        *,
        expected: UpdateStatus,
        status: UpdateStatus,
        **fields: Any,
    ) -> Optional[PendingUpdate]:
        with self._guard:
            current = self._data.get(update_id)
            if current is None or current.status != expected:
                return None
            updated = current.model_copy(update={"status": status, **fields})
            self._data[update_id] = updated
            return updated


class InMemoryPriceRules:
    def __init__(self) -> None:
        self._data: Dict[str, PriceRule] = {}

    def put(self, rule: PriceRule) -> None:
        self._data[rule.id] = rule

    def get(self, rule_id: str) -> Optional[PriceRule]:
        return self._data.get(rule_id)

    def list(self) -> List[PriceRule]:
        return list(self._data.values())
