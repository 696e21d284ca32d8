"""Contract tests shared by the in-memory and workbook stores."""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from medcure_pos import data_manager
from medcure_pos.constants import MovementType, ReferenceType, TransactionStatus
from medcure_pos.data_manager import SaleLineItemRow, SaleTransactionRow, StockMovementRow
from medcure_pos.errors import (
    DuplicateRecord,
    DuplicateTransactionNumber,
    InsufficientStock,
    NotFound,
    StockConflict,
    StoreUnavailable,
)
from medcure_pos.stores import InMemoryStore, WorkbookStore


@pytest.fixture(params=["memory", "workbook"])
def store(request, master_workbook_path):
    if request.param == "memory":
        return InMemoryStore()
    return WorkbookStore(data_manager.open_workbook(master_workbook_path), master_workbook_path)


def _transaction(transaction_id="S-1", number="TXN-1") -> SaleTransactionRow:
    return SaleTransactionRow(
        transaction_id=transaction_id,
        transaction_number=number,
        created_at_iso="2025-03-14T09:30:00+00:00",
        status=TransactionStatus.COMPLETED.value,
        subtotal=Decimal("21.00"),
        discount_percent=Decimal("0"),
        discount_amount=Decimal("0.00"),
        statutory_discount_amount=Decimal("0.00"),
        total_amount=Decimal("21.00"),
        amount_paid=Decimal("21.00"),
        change_amount=Decimal("0.00"),
        payment_method="cash",
    )


def test_get_product_unknown_raises_not_found(store):
    with pytest.raises(NotFound) as excinfo:
        store.get_product("P-MISSING")
    assert excinfo.value.product_id == "P-MISSING"


def test_add_product_rejects_duplicate_id(store, product_factory):
    store.add_product(product_factory())
    with pytest.raises(ValueError):
        store.add_product(product_factory())


def test_list_products_hides_archived_by_default(store, product_factory):
    store.add_product(product_factory())
    store.add_product(product_factory("P-OLD", name="Discontinued", is_active=False))

    assert [p.product_id for p in store.list_products()] == ["P-PARA"]
    assert {p.product_id for p in store.list_products(include_inactive=True)} == {"P-PARA", "P-OLD"}


def test_set_stock_compare_and_set(store, product_factory):
    store.add_product(product_factory(total_stock=50))

    updated = store.set_stock("P-PARA", 46, expected_stock=50)
    assert updated.total_stock == 46

    with pytest.raises(StockConflict) as excinfo:
        store.set_stock("P-PARA", 40, expected_stock=50)
    assert excinfo.value.current_stock == 46
    assert store.get_product("P-PARA").total_stock == 46


def test_set_stock_never_goes_negative(store, product_factory):
    store.add_product(product_factory(total_stock=3))

    with pytest.raises(InsufficientStock):
        store.set_stock("P-PARA", -1)
    assert store.get_product("P-PARA").total_stock == 3


def test_update_product_keeps_stock_counter(store, product_factory):
    store.add_product(product_factory(total_stock=50))

    store.update_product(replace(product_factory(total_stock=0), name="Paracetamol 500mg Tablet"))

    product = store.get_product("P-PARA")
    assert product.name == "Paracetamol 500mg Tablet"
    assert product.total_stock == 50


def test_update_product_stores_expiry_date(store, product_factory):
    store.add_product(product_factory())

    store.update_product(product_factory(expiry_date=date(2026, 1, 31)))

    assert store.get_product("P-PARA").expiry_date == date(2026, 1, 31)


def test_create_transaction_rejects_reused_number(store):
    store.create_transaction(_transaction())
    with pytest.raises(DuplicateTransactionNumber):
        store.create_transaction(_transaction("S-2", "TXN-1"))
    assert [t.transaction_id for t in store.list_transactions()] == ["S-1"]


def test_create_transaction_rejects_reused_id(store):
    store.create_transaction(_transaction())
    with pytest.raises(DuplicateRecord):
        store.create_transaction(_transaction("S-1", "TXN-2"))
    assert [t.transaction_number for t in store.list_transactions()] == ["TXN-1"]


def test_create_line_item_rejects_reused_id(store):
    store.create_transaction(_transaction())
    item = SaleLineItemRow(
        line_item_id="L-1",
        transaction_id="S-1",
        product_id="P-PARA",
        product_name="Paracetamol 500mg",
        total_pieces=4,
        unit_price=Decimal("5.25"),
        line_total=Decimal("21.00"),
        pieces=4,
    )
    store.create_line_item(item)

    with pytest.raises(DuplicateRecord):
        store.create_line_item(replace(item, product_id="P-AMOX"))
    assert [i.product_id for i in store.get_line_items("S-1")] == ["P-PARA"]


def test_transaction_status_update_and_line_items(store):
    store.create_transaction(_transaction())
    store.create_line_item(
        SaleLineItemRow(
            line_item_id="L-1",
            transaction_id="S-1",
            product_id="P-PARA",
            product_name="Paracetamol 500mg",
            total_pieces=4,
            unit_price=Decimal("5.25"),
            line_total=Decimal("21.00"),
            pieces=4,
        )
    )

    updated = store.update_transaction_status(
        "S-1",
        TransactionStatus.CANCELLED.value,
        cancelled_at_iso="2025-03-14T10:00:00+00:00",
        cancellation_reason="Returned",
    )

    assert updated.status == "cancelled"
    assert store.get_transaction("S-1").cancellation_reason == "Returned"
    assert [item.line_item_id for item in store.get_line_items("S-1")] == ["L-1"]
    assert store.get_line_items("S-OTHER") == []


def test_movements_filter_in_append_order(store):
    for index, (product_id, reference_type) in enumerate(
        [("P-PARA", "sale"), ("P-AMOX", "sale"), ("P-PARA", "restock")]
    ):
        store.append_movement(
            StockMovementRow(
                movement_id=f"M-{index}",
                created_at_iso="2025-03-14T09:30:00+00:00",
                product_id=product_id,
                movement_type=MovementType.OUT.value,
                quantity_change=-1,
                remaining_stock=10,
                reference_type=reference_type,
                reference_id="S-1",
            )
        )

    assert [e.movement_id for e in store.list_movements(product_id="P-PARA")] == ["M-0", "M-2"]
    assert [e.movement_id for e in store.list_movements(reference_type=ReferenceType.SALE.value)] == ["M-0", "M-1"]
    assert len(store.list_movements(reference_id="S-1")) == 3


def test_workbook_store_flush_persists_to_disk(master_workbook_path, product_factory):
    store = WorkbookStore(data_manager.open_workbook(master_workbook_path), master_workbook_path)
    store.add_product(product_factory(total_stock=50))
    store.set_stock("P-PARA", 44)
    store.flush()

    reloaded = WorkbookStore(data_manager.open_workbook(master_workbook_path), master_workbook_path)
    product = reloaded.get_product("P-PARA")
    assert product.total_stock == 44
    assert product.selling_price == Decimal("5.25")
    assert product.is_active is True


def test_workbook_store_flush_failure_raises_store_unavailable(master_workbook_path, monkeypatch):
    store = WorkbookStore(data_manager.open_workbook(master_workbook_path), master_workbook_path)

    def fail(*_, **__):
        raise PermissionError("workbook is open in Excel")

    monkeypatch.setattr(data_manager, "save_workbook", fail)

    with pytest.raises(StoreUnavailable, match="open in Excel"):
        store.flush()


def test_in_memory_store_seeds_products(product_factory):
    store = InMemoryStore([product_factory(), product_factory("P-AMOX", name="Amoxicillin")])
    assert {p.product_id for p in store.list_products()} == {"P-PARA", "P-AMOX"}
