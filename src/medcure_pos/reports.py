"""Read-only sales and stock reports."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from .constants import TransactionStatus
from .data_manager import SaleTransactionRow, StockMovementRow
from .pricing import round_money
from .stores import Store


@dataclass(frozen=True)
class SalesSummary:
    """Aggregates over the completed sales of a period."""

    start: Optional[datetime]
    end: Optional[datetime]
    transaction_count: int = 0
    revenue: Decimal = Decimal("0.00")
    average_sale: Decimal = Decimal("0.00")
    total_discounts: Decimal = Decimal("0.00")
    items_sold: int = 0
    pwd_senior_count: int = 0
    cancelled_count: int = 0
    by_payment_method: Dict[str, Decimal] = field(default_factory=dict)


def _created_at(transaction: SaleTransactionRow) -> datetime:
    return datetime.fromisoformat(transaction.created_at_iso)


def _comparable(moment: datetime, reference: datetime) -> datetime:
    # Naive bounds are read in the timezone of the stored timestamps.
    if moment.tzinfo is None and reference.tzinfo is not None:
        return moment.replace(tzinfo=reference.tzinfo)
    return moment


def _in_period(transaction: SaleTransactionRow, start: Optional[datetime], end: Optional[datetime]) -> bool:
    created = _created_at(transaction)
    if start is not None and created < _comparable(start, created):
        return False
    if end is not None and created >= _comparable(end, created):
        return False
    return True


def transaction_history(
    store: Store,
    *,
    status: Optional[TransactionStatus] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    search: Optional[str] = None,
) -> List[SaleTransactionRow]:
    """List sales newest first.

    Args:
        store (Store): Store to read from.
        status (TransactionStatus | None): Keep only sales in this state.
        start (datetime | None): Inclusive lower bound on the sale time.
        end (datetime | None): Exclusive upper bound on the sale time.
        search (str | None): Case-insensitive match against the transaction
            number or the customer name.
    """

    needle = search.strip().lower() if search else ""
    matches = []
    for transaction in store.list_transactions():
        if status is not None and transaction.status != status.value:
            continue
        if not _in_period(transaction, start, end):
            continue
        if needle:
            haystack = f"{transaction.transaction_number} {transaction.customer_name or ''}".lower()
            if needle not in haystack:
                continue
        matches.append(transaction)
    return sorted(matches, key=_created_at, reverse=True)


def sales_summary(
    store: Store,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> SalesSummary:
    """Summarize the completed sales between ``start`` and ``end``.

    Cancelled sales are counted separately and contribute nothing to revenue,
    discounts, or items sold.
    """

    period = [t for t in store.list_transactions() if _in_period(t, start, end)]
    completed = [t for t in period if t.status == TransactionStatus.COMPLETED.value]
    revenue = sum((t.total_amount for t in completed), Decimal("0"))
    discounts = sum((t.discount_amount + t.statutory_discount_amount for t in completed), Decimal("0"))
    by_method: Dict[str, Decimal] = {}
    items_sold = 0
    for transaction in completed:
        by_method[transaction.payment_method] = by_method.get(transaction.payment_method, Decimal("0")) + transaction.total_amount
        items_sold += sum(item.total_pieces for item in store.get_line_items(transaction.transaction_id))

    count = len(completed)
    return SalesSummary(
        start=start,
        end=end,
        transaction_count=count,
        revenue=round_money(revenue),
        average_sale=round_money(revenue / count) if count else Decimal("0.00"),
        total_discounts=round_money(discounts),
        items_sold=items_sold,
        pwd_senior_count=sum(1 for t in completed if t.is_pwd_senior),
        cancelled_count=len(period) - count,
        by_payment_method={method: round_money(amount) for method, amount in sorted(by_method.items())},
    )


def daily_sales_summary(store: Store, day: date) -> SalesSummary:
    start = datetime.combine(day, time.min)
    return sales_summary(store, start=start, end=start + timedelta(days=1))


def product_ledger(store: Store, product_id: str) -> List[StockMovementRow]:
    """Movement history of one product in the order it was recorded.

    Raises:
        NotFound: If the product does not exist.
    """

    store.get_product(product_id)
    return store.list_movements(product_id=product_id)
