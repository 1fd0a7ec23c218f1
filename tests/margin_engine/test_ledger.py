import threading
from decimal import Decimal
from typing import Optional

import pytest

from margin_engine.engine.ledger.ledger import SkuLedger
from margin_engine.engine.ledger.models import Sku
from margin_engine.engine.margin.classifier import MarginStatus, compute_margin
from margin_engine.persistence.memory import InMemorySkus
from margin_engine.util.errors import ConcurrentUpdate, InvalidPrice, NotFound


def _sku(sku_id: str = "SKU1", **fields) -> Sku:
    values = {"cost": Decimal("10"), "base_price": Decimal("20"), "selling_price": Decimal("20")}
    values.update(fields)
    return Sku(id=sku_id, **values)


class FlakyStore(InMemorySkus):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def compare_and_set(self, sku: Sku, expected_version: Optional[int]) -> bool:
        if expected_version is not None:
            self.attempts += 1
            if self.attempts <= self.failures:
                return False
        return super().compare_and_set(sku, expected_version)


def test_register_derives_margin_fields(ledger: SkuLedger) -> None:
    stored = ledger.register(
        _sku(margin=Decimal("99"), margin_status=MarginStatus.CRITICAL)
    )
    assert stored.margin == Decimal("50.00")
    assert stored.margin_status == MarginStatus.HEALTHY
    assert stored.version == 1
    assert ledger.get_by_id("SKU1") == stored


def test_apply_price_recomputes_margin_and_history(ledger: SkuLedger) -> None:
    ledger.register(_sku())
    updated = ledger.apply_price("SKU1", Decimal("16"))
    assert updated.selling_price == Decimal("16")
    assert updated.margin == Decimal("37.50")
    assert updated.margin_status == MarginStatus.HEALTHY
    assert updated.version == 2
    assert updated.base_price == Decimal("20")
    assert [entry.selling_price for entry in ledger.history("SKU1")] == [Decimal("20")]


def test_apply_price_updates_base_price_when_given(ledger: SkuLedger) -> None:
    ledger.register(_sku())
    updated = ledger.apply_price("SKU1", "18.50", "19")
    assert updated.selling_price == Decimal("18.50")
    assert updated.base_price == Decimal("19")


@pytest.mark.parametrize("price", [Decimal("-0.01"), Decimal("NaN"), Decimal("Infinity"), "abc"])
def test_apply_price_rejects_invalid_prices(ledger: SkuLedger, price) -> None:
    ledger.register(_sku())
    with pytest.raises(InvalidPrice):
        ledger.apply_price("SKU1", price)
    assert ledger.get_by_id("SKU1").version == 1


def test_unknown_sku_raises_not_found(ledger: SkuLedger) -> None:
    with pytest.raises(NotFound):
        ledger.get_by_id("missing")
    with pytest.raises(NotFound):
        ledger.apply_price("missing", Decimal("10"))


def test_missing_cost_is_reconstructed_from_previous_margin(ledger: SkuLedger) -> None:
    stored = ledger.register(_sku(cost=None, selling_price=Decimal("100"), margin=Decimal("25")))
    assert stored.margin == Decimal("25.00")
    updated = ledger.apply_price("SKU1", Decimal("80"))
    # implied cost is 75
    assert updated.margin == Decimal("6.25")
    assert updated.margin_status == MarginStatus.CRITICAL
    assert updated.cost is None


def test_zero_price_is_critical(ledger: SkuLedger) -> None:
    ledger.register(_sku())
    updated = ledger.apply_price("SKU1", Decimal("0"))
    assert updated.margin == Decimal("0")
    assert updated.margin_status == MarginStatus.CRITICAL


def test_history_is_bounded() -> None:
    ledger = SkuLedger(history_limit=2)
    ledger.register(_sku())
    for price in ("21", "22", "23"):
        ledger.apply_price("SKU1", Decimal(price))
    assert [entry.selling_price for entry in ledger.history("SKU1")] == [Decimal("21"), Decimal("22")]


def test_concurrent_writes_keep_margin_consistent(ledger: SkuLedger) -> None:
    ledger.register(_sku())
    prices = [Decimal(12 + index) for index in range(16)]
    threads = [
        threading.Thread(target=ledger.apply_price, args=("SKU1", price)) for price in prices
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    final = ledger.get_by_id("SKU1")
    assert final.version == 1 + len(prices)
    assert final.selling_price in prices
    assert final.margin == compute_margin(final.selling_price, Decimal("10"))


def test_compare_and_set_conflicts_are_retried() -> None:
    store = FlakyStore(failures=2)
    ledger = SkuLedger(store, cas_attempts=3)
    ledger.register(_sku())
    updated = ledger.apply_price("SKU1", Decimal("25"))
    assert updated.selling_price == Decimal("25")
    assert store.attempts == 3


def test_compare_and_set_gives_up_after_attempts() -> None:
    store = FlakyStore(failures=10)
    ledger = SkuLedger(store, cas_attempts=2)
    ledger.register(_sku())
    with pytest.raises(ConcurrentUpdate):
        ledger.apply_price("SKU1", Decimal("25"))
    assert ledger.get_by_id("SKU1").selling_price == Decimal("20")


def test_reprice_computes_from_price_stored_after_conflict() -> None:
    store = InMemorySkus()
    ledger = SkuLedger(store, cas_attempts=2)
    ledger.register(_sku())
    seen = []

    def add_one(current: Sku) -> Decimal:
        seen.append(current.selling_price)
        if len(seen) == 1:
            # a writer outside this process lands between read and write
            store.compare_and_set(
                current.model_copy(
                    update={"selling_price": Decimal("30"), "version": current.version + 1}
                ),
                current.version,
            )
        return current.selling_price + 1

    updated = ledger.reprice("SKU1", add_one)

    assert seen == [Decimal("20"), Decimal("30")]
    assert updated.selling_price == Decimal("31")
    assert updated.version == 3


def test_reprice_propagates_compute_errors(ledger: SkuLedger) -> None:
    ledger.register(_sku())

    def negative(current: Sku) -> Decimal:
        return Decimal("-1")

    with pytest.raises(InvalidPrice):
        ledger.reprice("SKU1", negative)
    assert ledger.get_by_id("SKU1").version == 1
