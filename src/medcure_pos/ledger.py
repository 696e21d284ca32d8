"""Append-only stock movement ledger.

Every change to a product's stock counter is paired with one
:class:`~medcure_pos.data_manager.StockMovementRow`. Entries are never updated
or removed, so replaying a product's movements on top of its opening stock
must reproduce the current counter.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from . import log
from .constants import MovementType, ReferenceType
from .data_manager import ProductRow, StockMovementRow
from .errors import InsufficientStock, StockConflict
from .identifiers import generate_identifier, resolve_timestamp
from .stores import Store


def build_movement(
    *,
    product_id: str,
    movement_type: MovementType,
    quantity_change: int,
    remaining_stock: int,
    reference_type: ReferenceType,
    reference_id: Optional[str] = None,
    line_item_id: Optional[str] = None,
    notes: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> StockMovementRow:
    """Materialize a ledger entry without persisting it."""

    timestamp = resolve_timestamp(timestamp)
    return StockMovementRow(
        movement_id=generate_identifier("M", when=timestamp),
        created_at_iso=timestamp.isoformat(),
        product_id=product_id,
        movement_type=movement_type.value,
        quantity_change=quantity_change,
        remaining_stock=remaining_stock,
        reference_type=reference_type.value,
        reference_id=reference_id,
        line_item_id=line_item_id,
        notes=notes,
    )


def record_movement(store: Store, **fields) -> StockMovementRow:
    """Build a ledger entry from ``fields`` and append it to ``store``."""

    entry = store.append_movement(build_movement(**fields))
    log.info(
        "Ledger %s %+d for '%s' (remaining=%d, ref=%s:%s)",
        entry.movement_type,
        entry.quantity_change,
        entry.product_id,
        entry.remaining_stock,
        entry.reference_type,
        entry.reference_id,
    )
    return entry


def apply_stock_delta(store: Store, product_id: str, delta: int, *, retries: int = 3) -> ProductRow:
    """Add ``delta`` pieces to a product's stock with a compare-and-set write.

    The counter is re-read and the write retried when another terminal
    changed it in between, up to ``retries`` extra attempts.

    Raises:
        InsufficientStock: If the live stock cannot absorb a negative
            ``delta``.
        StockConflict: If every attempt lost the race.
    """

    product = store.get_product(product_id)
    attempt = 0
    while True:
        new_total = product.total_stock + delta
        if new_total < 0:
            log.warning(
                "Insufficient stock for '%s': requested %d, available %d",
                product_id,
                -delta,
                product.total_stock,
            )
            raise InsufficientStock(
                f"Insufficient stock for '{product.name}'. Available: {product.total_stock}, requested: {-delta}",
                product_id=product_id,
                requested=-delta,
                available=product.total_stock,
            )
        try:
            return store.set_stock(product_id, new_total, expected_stock=product.total_stock)
        except StockConflict:
            attempt += 1
            if attempt > retries:
                raise
            log.info("Retrying stock update for '%s' after conflict (attempt %d)", product_id, attempt)
            product = store.get_product(product_id)


def restored_line_ids(store: Store, transaction_id: str) -> set[str]:
    """Return the line items of ``transaction_id`` whose stock was already put back."""

    return {
        entry.line_item_id
        for entry in movements_for_reference(store, ReferenceType.CANCELLATION, transaction_id)
        if entry.line_item_id is not None
    }


def movements_for_reference(store: Store, reference_type: ReferenceType, reference_id: str) -> List[StockMovementRow]:
    return store.list_movements(reference_type=reference_type.value, reference_id=reference_id)


def replay_stock(initial_stock: int, entries: Iterable[StockMovementRow]) -> int:
    """Apply the signed quantity changes of ``entries`` to ``initial_stock``."""

    return initial_stock + sum(entry.quantity_change for entry in entries)


def net_change_by_product(entries: Iterable[StockMovementRow]) -> Dict[str, int]:
    totals: Dict[str, int] = {}
    for entry in entries:
        totals[entry.product_id] = totals.get(entry.product_id, 0) + entry.quantity_change
    return totals


def audit_conservation(store: Store, product_id: str, *, initial_stock: int = 0) -> bool:
    """Check that the ledger explains the product's current stock counter.

    ``initial_stock`` is the counter value before the first ledger entry; it
    is ``0`` for products registered through :mod:`medcure_pos.inventory`,
    which logs the opening stock as a movement of its own.
    """

    product = store.get_product(product_id)
    expected = replay_stock(initial_stock, store.list_movements(product_id=product_id))
    if expected != product.total_stock:
        log.error(
            "Ledger mismatch for '%s': counter=%d, replayed=%d",
            product_id,
            product.total_stock,
            expected,
        )
        return False
    return True
