"""Unit tests for cancelling committed sales."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from medcure_pos import ledger
from medcure_pos.cancellation import cancel_sale
from medcure_pos.cart import Cart
from medcure_pos.checkout import commit_sale
from medcure_pos.constants import MovementType, ReferenceType, TransactionStatus
from medcure_pos.errors import AlreadyCancelled, NotFound, StoreUnavailable
from medcure_pos.packaging import PackagingQuantity


@pytest.fixture
def committed_sale(stocked_store):
    cart = Cart()
    cart.add(stocked_store.get_product("P-PARA"), PackagingQuantity(pieces=4))
    cart.add(stocked_store.get_product("P-AMOX"), PackagingQuantity(sheets=1))
    return commit_sale(stocked_store, cart).transaction


def test_cancel_restores_stock_and_logs_reversal(stocked_store, committed_sale):
    result = cancel_sale(stocked_store, committed_sale.transaction_id, "Customer changed mind")

    assert stocked_store.get_product("P-PARA").total_stock == 50
    assert stocked_store.get_product("P-AMOX").total_stock == 30
    assert result.transaction.status == TransactionStatus.CANCELLED.value
    assert result.transaction.cancellation_reason == "Customer changed mind"
    assert result.transaction.cancelled_at_iso is not None
    assert len(result.restored) == 2

    para_entries = [
        entry
        for entry in stocked_store.list_movements(product_id="P-PARA")
        if entry.reference_id == committed_sale.transaction_id
    ]
    assert [(e.movement_type, e.quantity_change) for e in para_entries] == [
        (MovementType.OUT.value, -4),
        (MovementType.IN.value, 4),
    ]
    assert para_entries[1].reference_type == ReferenceType.CANCELLATION.value
    assert committed_sale.transaction_number in para_entries[1].notes
    assert ledger.audit_conservation(stocked_store, "P-PARA")
    assert ledger.audit_conservation(stocked_store, "P-AMOX")


def test_cancel_twice_raises_without_touching_stock(stocked_store, committed_sale):
    cancel_sale(stocked_store, committed_sale.transaction_id, "Wrong item")
    movements = stocked_store.list_movements()
    notifier = Mock(name="notifier")

    with pytest.raises(AlreadyCancelled):
        cancel_sale(stocked_store, committed_sale.transaction_id, "Again", notifier=notifier)

    assert stocked_store.get_product("P-PARA").total_stock == 50
    assert stocked_store.list_movements() == movements
    outcome = notifier.call_args.args[0]
    assert outcome.kind == "AlreadyCancelled"
    assert outcome.transaction_id == committed_sale.transaction_id


def test_cancel_unknown_transaction(stocked_store):
    with pytest.raises(NotFound):
        cancel_sale(stocked_store, "S-MISSING", "n/a")


def test_partial_failure_keeps_sale_completed_and_retry_finishes(stocked_store, committed_sale, monkeypatch):
    """A retried cancellation restores only the lines the first attempt missed."""

    original = stocked_store.set_stock

    def failing_set_stock(product_id, new_total, *, expected_stock=None):
        if product_id == "P-AMOX":
            raise StoreUnavailable("disk full", product_id=product_id)
        return original(product_id, new_total, expected_stock=expected_stock)

    monkeypatch.setattr(stocked_store, "set_stock", failing_set_stock)

    with pytest.raises(StoreUnavailable):
        cancel_sale(stocked_store, committed_sale.transaction_id, "Refund")

    assert stocked_store.get_transaction(committed_sale.transaction_id).status == TransactionStatus.COMPLETED.value
    assert stocked_store.get_product("P-PARA").total_stock == 50
    assert stocked_store.get_product("P-AMOX").total_stock == 22

    monkeypatch.setattr(stocked_store, "set_stock", original)
    result = cancel_sale(stocked_store, committed_sale.transaction_id, "Refund")

    assert [item.product_id for item in result.skipped] == ["P-PARA"]
    assert [item.product_id for item in result.restored] == ["P-AMOX"]
    assert stocked_store.get_product("P-PARA").total_stock == 50
    assert stocked_store.get_product("P-AMOX").total_stock == 30
    assert ledger.audit_conservation(stocked_store, "P-PARA")
    assert ledger.audit_conservation(stocked_store, "P-AMOX")


def test_cancel_notifies_success(stocked_store, committed_sale):
    notifier = Mock(name="notifier")

    cancel_sale(stocked_store, committed_sale.transaction_id, "  ", notifier=notifier)

    outcome = notifier.call_args.args[0]
    assert outcome.succeeded
    assert outcome.operation == "cancel"
    assert outcome.detail == "Cancelled by cashier"


def test_unexpected_store_error_is_reported_as_store_unavailable(stocked_store, committed_sale, monkeypatch):
    notifier = Mock(name="notifier")
    monkeypatch.setattr(stocked_store, "set_stock", Mock(side_effect=KeyError("TotalStock")))

    with pytest.raises(StoreUnavailable) as excinfo:
        cancel_sale(stocked_store, committed_sale.transaction_id, "Refund", notifier=notifier)

    assert isinstance(excinfo.value.__cause__, KeyError)
    assert excinfo.value.transaction_id == committed_sale.transaction_id
    outcome = notifier.call_args.args[0]
    assert outcome.kind == "StoreUnavailable"
    assert outcome.operation == "cancel"
    assert stocked_store.get_transaction(committed_sale.transaction_id).status == TransactionStatus.COMPLETED.value
