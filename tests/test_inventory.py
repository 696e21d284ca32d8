"""Unit tests for catalog and stock administration."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from medcure_pos import inventory, ledger
from medcure_pos.constants import ExpiryStatus, MovementType, ReferenceType, StockStatus
from medcure_pos.errors import InvalidQuantity, NotFound, ProductInactive


def test_register_product_logs_opening_stock(memory_store, product_factory):
    product = inventory.register_product(memory_store, product_factory(total_stock=50))

    assert product.total_stock == 50
    entries = memory_store.list_movements(product_id="P-PARA")
    assert len(entries) == 1
    assert entries[0].movement_type == MovementType.IN.value
    assert entries[0].reference_type == ReferenceType.INITIAL_STOCK.value
    assert entries[0].quantity_change == 50
    assert ledger.audit_conservation(memory_store, "P-PARA")


def test_register_product_without_stock_logs_nothing(memory_store, product_factory):
    inventory.register_product(memory_store, product_factory(total_stock=0))
    assert memory_store.list_movements() == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "  "},
        {"pieces_per_sheet": 0},
        {"sheets_per_box": 0},
        {"selling_price": "-1.00"},
        {"total_stock": -5},
        {"critical_level": -1},
    ],
)
def test_register_product_validates_fields(memory_store, product_factory, overrides):
    with pytest.raises(ValueError):
        inventory.register_product(memory_store, product_factory(**overrides))
    assert memory_store.list_products(include_inactive=True) == []


def test_register_product_warns_when_selling_below_cost(memory_store, product_factory, caplog):
    caplog.set_level("WARNING")
    inventory.register_product(memory_store, product_factory(cost_price="6.00", selling_price="5.00"))
    assert any("below cost" in record.getMessage() for record in caplog.records)


def test_import_products_names_offending_row(memory_store, product_factory):
    rows = [
        product_factory("P-1", name="Cetirizine"),
        product_factory("P-2", name="Loratadine"),
        product_factory("P-3", name=""),
    ]

    with pytest.raises(ValueError, match="Row 3"):
        inventory.import_products(memory_store, rows)

    assert {p.product_id for p in memory_store.list_products()} == {"P-1", "P-2"}
    assert {e.reference_type for e in memory_store.list_movements()} == {ReferenceType.IMPORT.value}


def test_update_product_details_changes_catalog_only(stocked_store):
    product = inventory.update_product_details(stocked_store, "P-PARA", selling_price=Decimal("5.50"), critical_level=20)

    assert product.selling_price == Decimal("5.50")
    assert product.critical_level == 20
    assert product.total_stock == 50


def test_update_product_details_refuses_stock_edits(stocked_store):
    with pytest.raises(ValueError, match="total_stock"):
        inventory.update_product_details(stocked_store, "P-PARA", total_stock=99)


def test_restock_adds_pieces_and_logs(stocked_store):
    product = inventory.restock(stocked_store, "P-AMOX", 16, "Supplier delivery")

    assert product.total_stock == 46
    entry = stocked_store.list_movements(reference_type=ReferenceType.RESTOCK.value)[0]
    assert entry.quantity_change == 16
    assert entry.remaining_stock == 46
    assert entry.notes == "Supplier delivery"
    assert ledger.audit_conservation(stocked_store, "P-AMOX")


def test_restock_rejects_non_positive_quantity(stocked_store):
    with pytest.raises(InvalidQuantity):
        inventory.restock(stocked_store, "P-AMOX", 0)


def test_restock_rejects_archived_product(stocked_store):
    inventory.archive_product(stocked_store, "P-AMOX", "Recalled batch")
    with pytest.raises(ProductInactive):
        inventory.restock(stocked_store, "P-AMOX", 5)


def test_restock_unknown_product(stocked_store):
    with pytest.raises(NotFound):
        inventory.restock(stocked_store, "P-MISSING", 5)


def test_adjust_stock_logs_signed_difference(stocked_store):
    product = inventory.adjust_stock(stocked_store, "P-PARA", 47, "Shelf count")

    assert product.total_stock == 47
    entry = stocked_store.list_movements(reference_type=ReferenceType.ADJUSTMENT.value)[0]
    assert entry.movement_type == MovementType.ADJUSTMENT.value
    assert entry.quantity_change == -3
    assert entry.notes == "Shelf count"
    assert ledger.audit_conservation(stocked_store, "P-PARA")


def test_adjust_stock_noop_when_count_matches(stocked_store):
    before = stocked_store.list_movements()
    inventory.adjust_stock(stocked_store, "P-PARA", 50, "Shelf count")
    assert stocked_store.list_movements() == before


@pytest.mark.parametrize("count, reason, error", [(-1, "Shelf count", InvalidQuantity), (10, " ", ValueError)])
def test_adjust_stock_validates_input(stocked_store, count, reason, error):
    with pytest.raises(error):
        inventory.adjust_stock(stocked_store, "P-PARA", count, reason)
    assert stocked_store.get_product("P-PARA").total_stock == 50


def test_archive_and_restore_round_trip(stocked_store):
    archived = inventory.archive_product(stocked_store, "P-PARA", "Discontinued")
    assert archived.is_active is False
    assert "P-PARA" not in {p.product_id for p in stocked_store.list_products()}

    with pytest.raises(ValueError):
        inventory.archive_product(stocked_store, "P-PARA", "Again")

    restored = inventory.restore_product(stocked_store, "P-PARA")
    assert restored.is_active is True

    entries = stocked_store.list_movements(product_id="P-PARA")
    assert [(e.reference_type, e.quantity_change) for e in entries[1:]] == [
        (ReferenceType.ARCHIVE.value, 0),
        (ReferenceType.RESTORE.value, 0),
    ]
    assert entries[1].notes == "Discontinued"


def test_archive_requires_reason(stocked_store):
    with pytest.raises(ValueError):
        inventory.archive_product(stocked_store, "P-PARA", "")


def test_restore_active_product_fails(stocked_store):
    with pytest.raises(ValueError):
        inventory.restore_product(stocked_store, "P-PARA")


@pytest.mark.parametrize(
    "stock, expected",
    [(0, StockStatus.OUT_OF_STOCK), (10, StockStatus.LOW), (11, StockStatus.IN_STOCK)],
)
def test_stock_status_thresholds(product_factory, stock, expected):
    assert inventory.stock_status(product_factory(total_stock=stock, critical_level=10)) is expected


def test_low_stock_products_sorted_lowest_first(stocked_store, product_factory):
    stocked_store.set_stock("P-AMOX", 2)
    stocked_store.set_stock("P-PARA", 0)
    inventory.register_product(stocked_store, product_factory("P-ARCH", name="Archived", total_stock=0, is_active=False))

    assert [p.product_id for p in inventory.low_stock_products(stocked_store)] == ["P-PARA", "P-AMOX"]


def test_inventory_value_uses_cost_price(stocked_store):
    # 50 x 3.00 + 30 x 8.00
    assert inventory.inventory_value(stocked_store) == Decimal("390.00")


TODAY = date(2025, 3, 14)


@pytest.mark.parametrize(
    "offset, expected",
    [
        (None, ExpiryStatus.UNKNOWN),
        (-3, ExpiryStatus.EXPIRED),
        (0, ExpiryStatus.EXPIRED),
        (7, ExpiryStatus.CRITICAL),
        (8, ExpiryStatus.WARNING),
        (30, ExpiryStatus.WARNING),
        (31, ExpiryStatus.GOOD),
    ],
)
def test_expiry_status_thresholds(product_factory, offset, expected):
    expiry = TODAY + timedelta(days=offset) if offset is not None else None
    product = product_factory(expiry_date=expiry)

    assert inventory.expiry_status(product, today=TODAY) is expected
    assert inventory.is_expired(product, today=TODAY) is (expected is ExpiryStatus.EXPIRED)


def test_days_until_expiry(product_factory):
    assert inventory.days_until_expiry(product_factory(), today=TODAY) is None
    assert inventory.days_until_expiry(product_factory(expiry_date=date(2025, 4, 1)), today=TODAY) == 18


def test_expiring_products_soonest_first(memory_store, product_factory):
    inventory.register_product(memory_store, product_factory("P-LATE", expiry_date=date(2025, 4, 10)))
    inventory.register_product(memory_store, product_factory("P-GONE", expiry_date=date(2025, 3, 1)))
    inventory.register_product(memory_store, product_factory("P-FAR", expiry_date=date(2026, 1, 1)))
    inventory.register_product(memory_store, product_factory("P-NONE"))
    inventory.register_product(
        memory_store, product_factory("P-HIDDEN", expiry_date=date(2025, 3, 20), is_active=False)
    )

    flagged = inventory.expiring_products(memory_store, today=TODAY)

    assert [p.product_id for p in flagged] == ["P-GONE", "P-LATE"]
    assert [p.product_id for p in inventory.expiring_products(memory_store, 0, today=TODAY)] == ["P-GONE"]


def test_expiring_products_rejects_negative_window(memory_store):
    with pytest.raises(ValueError):
        inventory.expiring_products(memory_store, -1)


def test_update_product_details_sets_expiry(stocked_store):
    updated = inventory.update_product_details(stocked_store, "P-AMOX", expiry_date=date(2026, 6, 30))

    assert updated.expiry_date == date(2026, 6, 30)
    assert updated.total_stock == 30
