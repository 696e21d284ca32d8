"""Product catalog and stock administration.

Everything that changes stock outside of a sale goes through here, and every
change is paired with a ledger entry so the movement history stays complete.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from . import log
from .constants import (
    EXPIRY_CRITICAL_DAYS,
    EXPIRY_WARNING_DAYS,
    ExpiryStatus,
    MovementType,
    ReferenceType,
    StockStatus,
)
from .data_manager import ProductRow
from .errors import InvalidQuantity, ProductInactive
from .identifiers import generate_identifier, resolve_timestamp
from .ledger import apply_stock_delta, record_movement
from .stores import Store


def validate_product(product: ProductRow) -> None:
    """Check catalog fields before a product is stored.

    Raises:
        ValueError: If the name is blank, a packaging multiplier is below
            one, or a price, stock, or critical level is negative.
    """

    if not product.product_id.strip():
        raise ValueError("Product id must not be empty")
    if not product.name.strip():
        raise ValueError("Product name must not be empty")
    if product.pieces_per_sheet < 1 or product.sheets_per_box < 1:
        raise ValueError("Packaging multipliers must be at least 1")
    if product.cost_price < 0 or product.selling_price < 0:
        raise ValueError("Prices must not be negative")
    if product.total_stock < 0:
        raise ValueError("Stock must not be negative")
    if product.critical_level < 0:
        raise ValueError("Critical level must not be negative")
    if product.selling_price < product.cost_price:
        log.warning(
            "Product '%s' sells below cost (%s < %s)",
            product.product_id,
            product.selling_price,
            product.cost_price,
        )


def new_product_id(*, when: Optional[datetime] = None) -> str:
    return generate_identifier("P", when=when)


def register_product(
    store: Store,
    product: ProductRow,
    *,
    reference_type: ReferenceType = ReferenceType.INITIAL_STOCK,
    timestamp: Optional[datetime] = None,
) -> ProductRow:
    """Add ``product`` to the catalog and log its opening stock.

    The product is stored with zero stock first and the opening quantity is
    then booked as an ``in`` movement, so the ledger replays to the counter.

    Raises:
        ValueError: If the product fails :func:`validate_product` or the id
            is already taken.
    """

    validate_product(product)
    store.add_product(replace(product, total_stock=0))
    stored = store.get_product(product.product_id)
    if product.total_stock > 0:
        stored = apply_stock_delta(store, product.product_id, product.total_stock)
        record_movement(
            store,
            product_id=product.product_id,
            movement_type=MovementType.IN,
            quantity_change=product.total_stock,
            remaining_stock=stored.total_stock,
            reference_type=reference_type,
            notes="Opening stock",
            timestamp=timestamp,
        )
    store.flush()
    log.info("Registered product '%s' (%s) with %d pieces", product.product_id, product.name, stored.total_stock)
    return stored


def import_products(
    store: Store,
    products: Iterable[ProductRow],
    *,
    timestamp: Optional[datetime] = None,
) -> List[ProductRow]:
    """Register many products at once, booking their stock as ``import``.

    Stops at the first invalid row; rows before it stay registered.

    Raises:
        ValueError: Naming the 1-based position of the offending row.
    """

    imported: List[ProductRow] = []
    for position, product in enumerate(products, start=1):
        try:
            imported.append(
                register_product(store, product, reference_type=ReferenceType.IMPORT, timestamp=timestamp)
            )
        except ValueError as exc:
            log.warning("Import stopped at row %d: %s", position, exc)
            raise ValueError(f"Row {position}: {exc}") from exc
    log.info("Imported %d product(s)", len(imported))
    return imported


def update_product_details(store: Store, product_id: str, **changes: Any) -> ProductRow:
    """Edit catalog fields of an existing product.

    Stock cannot be changed here; use :func:`restock` or :func:`adjust_stock`.

    Raises:
        ValueError: If ``changes`` touches ``total_stock`` or ``product_id``,
            or the result fails validation.
    """

    forbidden = {"total_stock", "product_id"} & set(changes)
    if forbidden:
        raise ValueError(f"Cannot edit {', '.join(sorted(forbidden))} directly")
    updated = replace(store.get_product(product_id), **changes)
    validate_product(updated)
    stored = store.update_product(updated)
    store.flush()
    log.info("Updated product '%s': %s", product_id, ", ".join(sorted(changes)))
    return stored


def restock(
    store: Store,
    product_id: str,
    quantity: int,
    note: Optional[str] = None,
    *,
    timestamp: Optional[datetime] = None,
) -> ProductRow:
    """Receive ``quantity`` pieces of a product.

    Raises:
        InvalidQuantity: If ``quantity`` is not positive.
        ProductInactive: If the product is archived.
    """

    if quantity <= 0:
        log.warning("Rejected restock of %d pieces for '%s'", quantity, product_id)
        raise InvalidQuantity("Restock quantity must be greater than zero", product_id=product_id)
    if not store.get_product(product_id).is_active:
        log.warning("Rejected restock of archived product '%s'", product_id)
        raise ProductInactive(f"Product '{product_id}' is archived", product_id=product_id)

    product = apply_stock_delta(store, product_id, quantity)
    record_movement(
        store,
        product_id=product_id,
        movement_type=MovementType.IN,
        quantity_change=quantity,
        remaining_stock=product.total_stock,
        reference_type=ReferenceType.RESTOCK,
        notes=note,
        timestamp=timestamp,
    )
    store.flush()
    return product


def adjust_stock(
    store: Store,
    product_id: str,
    new_total: int,
    reason: str,
    *,
    timestamp: Optional[datetime] = None,
) -> ProductRow:
    """Correct a product's counter to a physically counted ``new_total``.

    The signed difference is logged as an ``adjustment`` movement. A count
    equal to the current stock changes nothing and logs nothing.

    Raises:
        InvalidQuantity: If ``new_total`` is negative.
        ValueError: If ``reason`` is blank.
    """

    if new_total < 0:
        raise InvalidQuantity("Counted stock must not be negative", product_id=product_id)
    if not reason or not reason.strip():
        raise ValueError("An adjustment reason is required")

    current = store.get_product(product_id)
    delta = new_total - current.total_stock
    if delta == 0:
        log.info("Stock count for '%s' matches the counter (%d)", product_id, new_total)
        return current

    product = store.set_stock(product_id, new_total, expected_stock=current.total_stock)
    record_movement(
        store,
        product_id=product_id,
        movement_type=MovementType.ADJUSTMENT,
        quantity_change=delta,
        remaining_stock=product.total_stock,
        reference_type=ReferenceType.ADJUSTMENT,
        notes=reason.strip(),
        timestamp=timestamp,
    )
    store.flush()
    return product


def _set_archived(
    store: Store,
    product_id: str,
    *,
    active: bool,
    reason: Optional[str],
    timestamp: Optional[datetime],
) -> ProductRow:
    product = store.set_active(product_id, active)
    record_movement(
        store,
        product_id=product_id,
        movement_type=MovementType.ARCHIVED,
        quantity_change=0,
        remaining_stock=product.total_stock,
        reference_type=ReferenceType.RESTORE if active else ReferenceType.ARCHIVE,
        notes=reason,
        timestamp=timestamp,
    )
    store.flush()
    log.info("%s product '%s'", "Restored" if active else "Archived", product_id)
    return product


def archive_product(
    store: Store,
    product_id: str,
    reason: str,
    *,
    timestamp: Optional[datetime] = None,
) -> ProductRow:
    """Hide a product from sale without deleting its history.

    Raises:
        ValueError: If ``reason`` is blank or the product is already archived.
    """

    if not reason or not reason.strip():
        raise ValueError("An archive reason is required")
    if not store.get_product(product_id).is_active:
        raise ValueError(f"Product '{product_id}' is already archived")
    return _set_archived(store, product_id, active=False, reason=reason.strip(), timestamp=timestamp)


def restore_product(
    store: Store,
    product_id: str,
    *,
    timestamp: Optional[datetime] = None,
) -> ProductRow:
    if store.get_product(product_id).is_active:
        raise ValueError(f"Product '{product_id}' is not archived")
    return _set_archived(store, product_id, active=True, reason=None, timestamp=timestamp)


def stock_status(product: ProductRow) -> StockStatus:
    if product.total_stock <= 0:
        return StockStatus.OUT_OF_STOCK
    if product.total_stock <= product.critical_level:
        return StockStatus.LOW
    return StockStatus.IN_STOCK


def low_stock_products(store: Store) -> List[ProductRow]:
    """Active products at or below their critical level, lowest stock first."""

    flagged = [
        product
        for product in store.list_products()
        if stock_status(product) is not StockStatus.IN_STOCK
    ]
    return sorted(flagged, key=lambda product: (product.total_stock, product.name))


def inventory_value(store: Store) -> Decimal:
    """Cost value of the active stock on hand."""

    return sum(
        (product.cost_price * product.total_stock for product in store.list_products()),
        Decimal("0"),
    )


def days_until_expiry(product: ProductRow, *, today: Optional[date] = None) -> Optional[int]:
    """Whole days from ``today`` to the product's expiry date, or ``None``."""

    if product.expiry_date is None:
        return None
    today = today or resolve_timestamp().date()
    return (product.expiry_date - today).days


def is_expired(product: ProductRow, *, today: Optional[date] = None) -> bool:
    """A product is expired from its expiry date onwards."""

    remaining = days_until_expiry(product, today=today)
    return remaining is not None and remaining <= 0


def expiry_status(product: ProductRow, *, today: Optional[date] = None) -> ExpiryStatus:
    remaining = days_until_expiry(product, today=today)
    if remaining is None:
        return ExpiryStatus.UNKNOWN
    if remaining <= 0:
        return ExpiryStatus.EXPIRED
    if remaining <= EXPIRY_CRITICAL_DAYS:
        return ExpiryStatus.CRITICAL
    if remaining <= EXPIRY_WARNING_DAYS:
        return ExpiryStatus.WARNING
    return ExpiryStatus.GOOD


def expiring_products(
    store: Store,
    within_days: int = EXPIRY_WARNING_DAYS,
    *,
    today: Optional[date] = None,
) -> List[ProductRow]:
    """Active products expiring within ``within_days``, soonest first.

    Already expired products are included; products without an expiry date
    are never listed.

    Raises:
        ValueError: If ``within_days`` is negative.
    """

    if within_days < 0:
        raise ValueError("within_days must not be negative")
    today = today or resolve_timestamp().date()
    cutoff = today + timedelta(days=within_days)
    flagged = [
        product
        for product in store.list_products()
        if product.expiry_date is not None and product.expiry_date <= cutoff
    ]
    return sorted(flagged, key=lambda product: (product.expiry_date, product.name))
