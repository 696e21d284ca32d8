"""Cancellation of completed sales.

Cancelling a sale puts every line's pieces back on the shelf, records one
``in`` ledger entry per line, and only then flips the transaction to
``cancelled``. If anything fails part way the status stays ``completed``;
running the cancellation again finishes the job without restoring any line
twice, because each restored line is recognised by its ledger entry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from . import log
from .constants import MovementType, ReferenceType, TransactionStatus
from .data_manager import ProductRow, SaleLineItemRow, SaleTransactionRow
from .errors import AlreadyCancelled, Notifier, Outcome, SaleEngineError, StoreUnavailable
from .identifiers import resolve_timestamp
from .ledger import apply_stock_delta, record_movement, restored_line_ids
from .stores import Store


DEFAULT_REASON = "Cancelled by cashier"


@dataclass(frozen=True)
class CancellationResult:
    transaction: SaleTransactionRow
    restored: List[SaleLineItemRow] = field(default_factory=list)
    skipped: List[SaleLineItemRow] = field(default_factory=list)


def restore_line_item(
    store: Store,
    transaction: SaleTransactionRow,
    line_item: SaleLineItemRow,
    *,
    log_movement: bool = True,
    retries: int = 3,
    notes: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> ProductRow:
    """Return a line's pieces to stock and record the matching ledger entry.

    Args:
        store (Store): Store holding the product counter and the ledger.
        transaction (SaleTransactionRow): Sale the line belongs to.
        line_item (SaleLineItemRow): Line whose pieces are put back.
        log_movement (bool): ``False`` when the original decrement never made
            it into the ledger, so the restore must not either.
        retries (int): Extra attempts after a concurrent stock update.
        notes (str | None): Ledger note; defaults to one naming the sale.
        timestamp (datetime | None): Ledger timestamp override.

    Returns:
        ProductRow: The product with its restored stock counter.
    """

    product = apply_stock_delta(store, line_item.product_id, line_item.total_pieces, retries=retries)
    if log_movement:
        record_movement(
            store,
            product_id=line_item.product_id,
            movement_type=MovementType.IN,
            quantity_change=line_item.total_pieces,
            remaining_stock=product.total_stock,
            reference_type=ReferenceType.CANCELLATION,
            reference_id=transaction.transaction_id,
            line_item_id=line_item.line_item_id,
            notes=notes or f"Cancelled sale {transaction.transaction_number}",
            timestamp=timestamp,
        )
    return product


def _notify(notifier: Optional[Notifier], outcome: Outcome) -> None:
    if notifier is not None:
        notifier(outcome)


def cancel_sale(
    store: Store,
    transaction_id: str,
    reason: str = DEFAULT_REASON,
    *,
    notifier: Optional[Notifier] = None,
    max_stock_retries: int = 3,
    timestamp: Optional[datetime] = None,
) -> CancellationResult:
    """Reverse a completed sale.

    Raises:
        NotFound: If ``transaction_id`` is unknown.
        AlreadyCancelled: If the sale was cancelled before. No stock moves.
        StoreUnavailable: If the store cannot be written; the sale stays
            ``completed`` and may be cancelled again.
    """

    try:
        result = _cancel(
            store,
            transaction_id,
            reason.strip() or DEFAULT_REASON,
            max_stock_retries=max_stock_retries,
            timestamp=timestamp,
        )
    except Exception as exc:
        if isinstance(exc, SaleEngineError):
            error = exc
        else:
            log.error("Cancellation of '%s' failed unexpectedly: %r", transaction_id, exc)
            error = StoreUnavailable(f"Cancellation aborted: {exc}")
        if error.transaction_id is None:
            error.transaction_id = transaction_id
        _notify(notifier, Outcome.from_error("cancel", error))
        if error is exc:
            raise
        raise error from exc

    _notify(
        notifier,
        Outcome(
            operation="cancel",
            kind="success",
            transaction_id=transaction_id,
            detail=result.transaction.cancellation_reason or "",
        ),
    )
    return result


def _cancel(
    store: Store,
    transaction_id: str,
    reason: str,
    *,
    max_stock_retries: int,
    timestamp: Optional[datetime],
) -> CancellationResult:
    transaction = store.get_transaction(transaction_id)
    if transaction.status == TransactionStatus.CANCELLED.value:
        log.warning("Refused to cancel '%s': already cancelled", transaction.transaction_number)
        raise AlreadyCancelled(
            f"Transaction {transaction.transaction_number} is already cancelled",
            transaction_id=transaction_id,
        )

    timestamp = resolve_timestamp(timestamp)
    done = restored_line_ids(store, transaction_id)
    restored: List[SaleLineItemRow] = []
    skipped: List[SaleLineItemRow] = []
    for line_item in store.get_line_items(transaction_id):
        if line_item.line_item_id in done:
            log.info("Line '%s' of '%s' already restored", line_item.line_item_id, transaction.transaction_number)
            skipped.append(line_item)
            continue
        restore_line_item(store, transaction, line_item, retries=max_stock_retries, timestamp=timestamp)
        restored.append(line_item)

    # status flips last so a partial failure leaves the sale completed
    updated = store.update_transaction_status(
        transaction_id,
        TransactionStatus.CANCELLED.value,
        cancelled_at_iso=timestamp.isoformat(),
        cancellation_reason=reason,
    )
    store.flush()
    log.info(
        "Cancelled sale %s: %d line(s) restored, %d already restored",
        transaction.transaction_number,
        len(restored),
        len(skipped),
    )
    return CancellationResult(transaction=updated, restored=restored, skipped=skipped)
