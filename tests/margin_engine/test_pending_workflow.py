import threading
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from margin_engine.engine.ledger.ledger import SkuLedger
from margin_engine.engine.ledger.models import Sku
from margin_engine.engine.workflow.models import Priority, UpdateSource, UpdateStatus
from margin_engine.engine.workflow.pending import PendingUpdateWorkflow, format_margin_impact
from margin_engine.util.errors import (
    AlreadyResolved,
    ConcurrentUpdate,
    InvalidParameter,
    InvalidPrice,
    NotFound,
)


@pytest.fixture
def workflow(ledger: SkuLedger, metrics) -> PendingUpdateWorkflow:
    ledger.register(Sku(id="SKU1", cost=Decimal("60"), selling_price=Decimal("100")))
    ledger.register(Sku(id="SKU2", cost=Decimal("5"), selling_price=Decimal("10")))
    return PendingUpdateWorkflow(ledger, metrics=metrics)


def test_create_records_margin_impact(workflow: PendingUpdateWorkflow, ledger: SkuLedger) -> None:
    update = workflow.create(
        "SKU1", Decimal("80"), source=UpdateSource.MANUAL, requested_by="alice", reason="promo"
    )
    assert update.status == UpdateStatus.PENDING
    assert update.old_price == Decimal("100")
    assert update.new_price == Decimal("80")
    assert update.margin_impact == "-15.0%"
    assert update.reason == "promo"
    assert ledger.get_by_id("SKU1").selling_price == Decimal("100")


@pytest.mark.parametrize(
    ("delta", "expected"),
    [
        (Decimal("-15"), "-15.0%"),
        (Decimal("2.34"), "+2.3%"),
        (Decimal("0.05"), "+0.1%"),
        (Decimal("-0.04"), "+0.0%"),
        (Decimal("0"), "+0.0%"),
    ],
)
def test_format_margin_impact(delta: Decimal, expected: str) -> None:
    assert format_margin_impact(delta) == expected


def test_create_validates_inputs(workflow: PendingUpdateWorkflow) -> None:
    with pytest.raises(InvalidPrice):
        workflow.create("SKU1", Decimal("-1"), source=UpdateSource.MANUAL, requested_by="alice")
    with pytest.raises(InvalidParameter):
        workflow.create("SKU1", Decimal("90"), source=UpdateSource.MANUAL, requested_by=" ")
    with pytest.raises(InvalidParameter):
        workflow.create("SKU1", Decimal("90"), source="import", requested_by="alice")
    with pytest.raises(NotFound):
        workflow.create("missing", Decimal("90"), source=UpdateSource.MANUAL, requested_by="alice")
    assert workflow.list() == []


def test_approve_applies_price_once(workflow: PendingUpdateWorkflow, ledger: SkuLedger) -> None:
    update = workflow.create("SKU1", Decimal("80"), source=UpdateSource.RULE, requested_by="alice")

    approved = workflow.approve(update.id, approved_by="bob")

    assert approved.status == UpdateStatus.APPROVED
    assert approved.resolved_by == "bob"
    assert approved.resolved_at is not None
    sku = ledger.get_by_id("SKU1")
    assert sku.selling_price == Decimal("80")
    assert sku.margin == Decimal("25.00")
    assert sku.version == 2

    with pytest.raises(AlreadyResolved):
        workflow.approve(update.id)
    assert ledger.get_by_id("SKU1").version == 2


def test_reject_requires_reason(workflow: PendingUpdateWorkflow) -> None:
    update = workflow.create("SKU1", Decimal("80"), source=UpdateSource.MANUAL, requested_by="alice")
    for reason in (None, "", "   "):
        with pytest.raises(InvalidParameter):
            workflow.reject(update.id, reason)
    assert workflow.get(update.id).status == UpdateStatus.PENDING


def test_reject_keeps_price_and_records_reason(
    workflow: PendingUpdateWorkflow, ledger: SkuLedger
) -> None:
    update = workflow.create(
        "SKU1", Decimal("80"), source=UpdateSource.MANUAL, requested_by="alice", reason="promo"
    )

    rejected = workflow.reject(update.id, " too deep ", rejected_by="bob")

    assert rejected.status == UpdateStatus.REJECTED
    assert rejected.rejection_reason == "too deep"
    assert rejected.reason == "promo"
    assert ledger.get_by_id("SKU1").selling_price == Decimal("100")
    with pytest.raises(AlreadyResolved):
        workflow.approve(update.id)
    with pytest.raises(AlreadyResolved):
        workflow.reject(update.id, "again")


def test_unknown_update_is_not_found(workflow: PendingUpdateWorkflow) -> None:
    with pytest.raises(NotFound):
        workflow.get("missing")
    with pytest.raises(NotFound):
        workflow.approve("missing")
    with pytest.raises(NotFound):
        workflow.reject("missing", "nope")


def test_list_filters_and_orders_pending(workflow: PendingUpdateWorkflow, freezer) -> None:
    first = workflow.create(
        "SKU1", Decimal("90"), source=UpdateSource.RULE, requested_by="alice", priority=Priority.HIGH
    )
    freezer.tick(timedelta(seconds=1))
    second = workflow.create("SKU2", Decimal("11"), source=UpdateSource.MANUAL, requested_by="bob")
    freezer.tick(timedelta(seconds=1))
    third = workflow.create(
        "SKU2", Decimal("12"), source=UpdateSource.RULE, requested_by="bob", priority=Priority.LOW
    )
    workflow.reject(third.id, "superseded")

    assert [update.id for update in workflow.list()] == [first.id, second.id]
    assert [update.id for update in workflow.list(source=UpdateSource.RULE)] == [first.id]
    assert [update.id for update in workflow.list(priority=Priority.MEDIUM)] == [second.id]
    assert [update.id for update in workflow.list(requested_by="alice")] == [first.id]
    assert [update.id for update in workflow.resolved()] == [third.id]


def test_concurrent_approvals_apply_exactly_once(
    workflow: PendingUpdateWorkflow, ledger: SkuLedger
) -> None:
    update = workflow.create("SKU1", Decimal("80"), source=UpdateSource.MANUAL, requested_by="alice")
    barrier = threading.Barrier(8)
    outcomes = []
    outcomes_guard = threading.Lock()

    def approve() -> None:
        barrier.wait()
        try:
            workflow.approve(update.id)
            result = "approved"
        except AlreadyResolved:
            result = "conflict"
        with outcomes_guard:
            outcomes.append(result)

    threads = [threading.Thread(target=approve) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("approved") == 1
    assert outcomes.count("conflict") == 7
    assert ledger.get_by_id("SKU1").version == 2


def test_failed_ledger_write_releases_the_record(
    workflow: PendingUpdateWorkflow, ledger: SkuLedger, monkeypatch
) -> None:
    update = workflow.create("SKU1", Decimal("80"), source=UpdateSource.MANUAL, requested_by="alice")

    def fail(*args, **kwargs):
        raise ConcurrentUpdate("sku SKU1 kept changing")

    with monkeypatch.context() as patch:
        patch.setattr(ledger, "apply_price", fail)
        with pytest.raises(ConcurrentUpdate):
            workflow.approve(update.id)
    released = workflow.get(update.id)
    assert released.status == UpdateStatus.PENDING
    assert released.resolved_at is None

    assert workflow.approve(update.id).status == UpdateStatus.APPROVED
    assert ledger.get_by_id("SKU1").selling_price == Decimal("80")


def test_conflicts_are_recorded(ledger: SkuLedger) -> None:
    ledger.register(Sku(id="SKU1", cost=Decimal("60"), selling_price=Decimal("100")))
    metrics = MagicMock()
    workflow = PendingUpdateWorkflow(ledger, metrics=metrics)
    update = workflow.create("SKU1", Decimal("80"), source=UpdateSource.MANUAL, requested_by="alice")
    workflow.approve(update.id)

    with pytest.raises(AlreadyResolved):
        workflow.reject(update.id, "late")

    metrics.record_transition_conflict.assert_called_once_with(transition="reject")
