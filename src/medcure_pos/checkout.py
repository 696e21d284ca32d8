"""Sale commit protocol.

:func:`commit_sale` turns a cart into a persisted sale. Everything that can be
checked without writing (cart contents, payment, live stock) is checked first;
only then are the transaction header, its line items, the stock decrements and
their ledger entries written, line by line in cart order. When a write fails
part way, the decrements already applied are reversed, the header is marked
``cancelled``, and the original error is re-raised with ``compensated`` set.
If a reversal fails too, the header stays ``completed`` and ``compensated``
stays ``False``; cancelling the sale later returns what is still missing.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from . import log
from .cancellation import restore_line_item
from .cart import Cart, CartLine
from .constants import MovementType, PaymentMethod, ReferenceType, TransactionStatus
from .data_manager import ConfigSettings, SaleLineItemRow, SaleTransactionRow
from .errors import (
    DuplicateTransactionNumber,
    EmptyCart,
    InsufficientPayment,
    InsufficientStock,
    InvalidQuantity,
    Notifier,
    Outcome,
    ProductExpired,
    ProductInactive,
    SaleEngineError,
    StoreUnavailable,
    TransactionNumberExhausted,
)
from .identifiers import generate_identifier, generate_transaction_number, resolve_timestamp
from .inventory import is_expired
from .ledger import apply_stock_delta, record_movement
from .pricing import CartTotals, compute_change
from .receipt import Receipt, ReceiptConsumer, ReceiptProfile, build_receipt
from .stores import Store


@dataclass(frozen=True)
class CheckoutPolicy:
    """Retry limits and numbering used by :func:`commit_sale`."""

    transaction_prefix: str = "TXN"
    max_number_attempts: int = 5
    max_stock_retries: int = 3

    @classmethod
    def from_settings(cls, settings: ConfigSettings) -> "CheckoutPolicy":
        return cls(
            transaction_prefix=settings.transaction_prefix,
            max_number_attempts=settings.max_number_attempts,
            max_stock_retries=settings.max_stock_retries,
        )


@dataclass(frozen=True)
class PaymentDetails:
    """Tender information; an omitted ``amount_paid`` means exact payment."""

    amount_paid: Optional[Decimal] = None
    payment_method: PaymentMethod = PaymentMethod.CASH


@dataclass(frozen=True)
class CommitResult:
    transaction: SaleTransactionRow
    line_items: List[SaleLineItemRow]
    receipt: Receipt


@dataclass
class _AppliedLine:
    line_item: SaleLineItemRow
    decremented: bool = False
    logged: bool = False


@dataclass
class _WriteProgress:
    transaction: Optional[SaleTransactionRow] = None
    applied: List[_AppliedLine] = field(default_factory=list)


def validate_cart(cart: Cart) -> None:
    """Reject carts that can never be committed.

    Raises:
        EmptyCart: If the cart has no lines.
        InvalidQuantity: If a line resolves to zero or fewer pieces.
    """

    if cart.is_empty():
        log.warning("Checkout rejected: cart is empty")
        raise EmptyCart("Cart is empty")
    for line in cart.lines:
        if line.total_pieces <= 0:
            log.warning("Checkout rejected: non-positive quantity for '%s'", line.product_id)
            raise InvalidQuantity(
                f"Quantity for '{line.product.name}' must be greater than zero",
                product_id=line.product_id,
            )


def _check_payment(totals: CartTotals, payment: PaymentDetails) -> tuple[Decimal, Decimal]:
    amount_paid, change = compute_change(totals.total, payment.amount_paid)
    if change < 0:
        log.warning("Checkout rejected: paid %s against total %s", amount_paid, totals.total)
        raise InsufficientPayment(f"Amount paid {amount_paid} does not cover total {totals.total}")
    return amount_paid, change


def _recheck_stock(store: Store, cart: Cart, today: date) -> None:
    # Read-only pass against the live store; nothing is written before it succeeds.
    for line in cart.lines:
        product = store.get_product(line.product_id)
        if not product.is_active:
            log.warning("Checkout rejected: '%s' was archived", product.product_id)
            raise ProductInactive(f"Product '{product.name}' is archived", product_id=product.product_id)
        if is_expired(product, today=today):
            log.warning("Checkout rejected: '%s' expired on %s", product.product_id, product.expiry_date)
            raise ProductExpired(
                f"Product '{product.name}' expired on {product.expiry_date.isoformat()}",
                product_id=product.product_id,
            )
        if line.total_pieces > product.total_stock:
            log.warning(
                "Checkout rejected: '%s' needs %d, store has %d",
                product.product_id,
                line.total_pieces,
                product.total_stock,
            )
            raise InsufficientStock(
                f"Insufficient stock for '{product.name}'. Available: {product.total_stock}, requested: {line.total_pieces}",
                product_id=product.product_id,
                requested=line.total_pieces,
                available=product.total_stock,
            )


def _build_transaction(
    cart: Cart,
    totals: CartTotals,
    amount_paid: Decimal,
    change: Decimal,
    payment: PaymentDetails,
    *,
    transaction_number: str,
    timestamp: datetime,
) -> SaleTransactionRow:
    return SaleTransactionRow(
        transaction_id=generate_identifier("S", when=timestamp),
        transaction_number=transaction_number,
        created_at_iso=timestamp.isoformat(),
        status=TransactionStatus.COMPLETED.value,
        subtotal=totals.subtotal,
        discount_percent=Decimal(cart.discount_percent),
        discount_amount=totals.discount_amount,
        statutory_discount_amount=totals.statutory_discount_amount,
        total_amount=totals.total,
        amount_paid=amount_paid,
        change_amount=change,
        payment_method=payment.payment_method.value,
        customer_name=cart.customer.get("name") or None,
        is_pwd_senior=cart.is_pwd_senior,
    )


def _build_line_item(transaction: SaleTransactionRow, line: CartLine, timestamp: datetime) -> SaleLineItemRow:
    return SaleLineItemRow(
        line_item_id=generate_identifier("L", when=timestamp),
        transaction_id=transaction.transaction_id,
        product_id=line.product_id,
        product_name=line.product.name,
        total_pieces=line.total_pieces,
        unit_price=line.unit_price,
        line_total=line.line_total,
        boxes=line.packaging.boxes,
        sheets=line.packaging.sheets,
        pieces=line.packaging.pieces,
    )


def _create_transaction(
    store: Store,
    record: SaleTransactionRow,
    policy: CheckoutPolicy,
    timestamp: datetime,
) -> SaleTransactionRow:
    for attempt in range(1, policy.max_number_attempts + 1):
        try:
            return store.create_transaction(record)
        except DuplicateTransactionNumber:
            log.warning(
                "Transaction number %s already taken (attempt %d/%d)",
                record.transaction_number,
                attempt,
                policy.max_number_attempts,
            )
            if attempt < policy.max_number_attempts:
                record = replace(
                    record,
                    transaction_number=generate_transaction_number(policy.transaction_prefix, when=timestamp),
                )
    log.error("Gave up allocating a transaction number after %d attempts", policy.max_number_attempts)
    raise TransactionNumberExhausted(
        f"Could not allocate a unique transaction number after {policy.max_number_attempts} attempts"
    )


def _write_sale(
    store: Store,
    cart: Cart,
    record: SaleTransactionRow,
    policy: CheckoutPolicy,
    timestamp: datetime,
    progress: _WriteProgress,
) -> List[SaleLineItemRow]:
    progress.transaction = transaction = _create_transaction(store, record, policy, timestamp)
    line_items: List[SaleLineItemRow] = []
    for line in cart.lines:
        line_item = store.create_line_item(_build_line_item(transaction, line, timestamp))
        line_items.append(line_item)
        step = _AppliedLine(line_item)
        progress.applied.append(step)
        product = apply_stock_delta(store, line.product_id, -line.total_pieces, retries=policy.max_stock_retries)
        step.decremented = True
        record_movement(
            store,
            product_id=line.product_id,
            movement_type=MovementType.OUT,
            quantity_change=-line.total_pieces,
            remaining_stock=product.total_stock,
            reference_type=ReferenceType.SALE,
            reference_id=transaction.transaction_id,
            line_item_id=line_item.line_item_id,
            notes=f"Sale {transaction.transaction_number}",
            timestamp=timestamp,
        )
        step.logged = True
    store.flush()
    return line_items


def _mark_settled(store: Store, transaction: SaleTransactionRow, line_items: List[SaleLineItemRow]) -> None:
    # Zero-quantity cancellation entries tell a later cancel_sale these lines
    # have nothing left to put back.
    for line_item in line_items:
        try:
            record_movement(
                store,
                product_id=line_item.product_id,
                movement_type=MovementType.IN,
                quantity_change=0,
                remaining_stock=store.get_product(line_item.product_id).total_stock,
                reference_type=ReferenceType.CANCELLATION,
                reference_id=transaction.transaction_id,
                line_item_id=line_item.line_item_id,
                notes=f"Rollback of sale {transaction.transaction_number}: no stock to return",
            )
        except Exception as exc:
            log.critical(
                "Could not mark line '%s' of %s as settled: %s",
                line_item.line_item_id,
                transaction.transaction_number,
                exc,
            )


def _roll_back(store: Store, progress: _WriteProgress, error: SaleEngineError, policy: CheckoutPolicy) -> bool:
    """Undo the writes recorded in ``progress``; return whether it fully succeeded.

    The sale is only marked ``cancelled`` when every decrement was reversed.
    Otherwise it stays ``completed`` so :func:`~medcure_pos.cancellation.cancel_sale`
    can put back the remaining pieces once the store recovers.
    """

    transaction = progress.transaction
    if transaction is None:
        return True

    intact = True
    settled: List[SaleLineItemRow] = []
    for step in reversed(progress.applied):
        if not step.decremented:
            settled.append(step.line_item)
            continue
        try:
            restore_line_item(
                store,
                transaction,
                step.line_item,
                log_movement=step.logged,
                retries=policy.max_stock_retries,
                notes=f"Rollback of sale {transaction.transaction_number}",
            )
        except Exception as exc:
            intact = False
            log.critical(
                "Rollback could not restore line '%s' of %s: %s",
                step.line_item.line_item_id,
                transaction.transaction_number,
                exc,
            )
            continue
        if not step.logged:
            settled.append(step.line_item)

    if not intact:
        _mark_settled(store, transaction, settled)
        try:
            store.flush()
        except SaleEngineError as exc:
            log.critical("Could not persist partial rollback of %s: %s", transaction.transaction_number, exc)
        log.critical(
            "Sale %s left completed after %s; cancel it to return the remaining stock",
            transaction.transaction_number,
            error.kind,
        )
        return False

    try:
        store.update_transaction_status(
            transaction.transaction_id,
            TransactionStatus.CANCELLED.value,
            cancelled_at_iso=resolve_timestamp().isoformat(),
            cancellation_reason=f"Checkout failed: {error.kind}",
        )
        store.flush()
    except Exception as exc:
        log.critical("Rollback could not close sale %s: %s", transaction.transaction_number, exc)
        return False

    log.warning(
        "Rolled back sale %s after %s (%d line(s) restored)",
        transaction.transaction_number,
        error.kind,
        len(progress.applied),
    )
    return True


def commit_sale(
    store: Store,
    cart: Cart,
    payment: Optional[PaymentDetails] = None,
    *,
    policy: Optional[CheckoutPolicy] = None,
    profile: Optional[ReceiptProfile] = None,
    notifier: Optional[Notifier] = None,
    receipt_consumer: Optional[ReceiptConsumer] = None,
    timestamp: Optional[datetime] = None,
) -> CommitResult:
    """Persist ``cart`` as a completed sale.

    On success the cart is cleared, the receipt is handed to
    ``receipt_consumer`` and the notifier receives a ``success`` outcome.

    Args:
        store (Store): Product, transaction, and ledger store.
        cart (Cart): Cart to commit; left untouched when the sale fails.
        payment (PaymentDetails | None): Tender details. Defaults to exact
            cash payment.
        policy (CheckoutPolicy | None): Numbering prefix and retry limits.
        profile (ReceiptProfile | None): Store details for the receipt.
        notifier (Notifier | None): Receives one :class:`Outcome` per call.
        receipt_consumer (ReceiptConsumer | None): Receives the receipt.
        timestamp (datetime | None): Sale time override.

    Returns:
        CommitResult: Stored transaction, its line items, and the receipt.

    Raises:
        EmptyCart: If the cart has no lines. Nothing is written.
        InvalidQuantity: If a line has no pieces. Nothing is written.
        InsufficientPayment: If ``amount_paid`` is below the total.
        NotFound: If a cart product no longer exists.
        ProductInactive: If a cart product was archived.
        ProductExpired: If a cart product is past its expiry date on the
            sale date.
        InsufficientStock: If the live stock no longer covers a line. When
            this happens during the writes, ``compensated`` is ``True``.
        TransactionNumberExhausted: If no unique number could be allocated.
        StoreUnavailable: If the store failed; check ``compensated``.
    """

    payment = payment or PaymentDetails()
    policy = policy or CheckoutPolicy()
    timestamp = resolve_timestamp(timestamp)
    progress = _WriteProgress()

    try:
        validate_cart(cart)
        totals = cart.totals().rounded()
        amount_paid, change = _check_payment(totals, payment)
        transaction_number = generate_transaction_number(policy.transaction_prefix, when=timestamp)
        _recheck_stock(store, cart, timestamp.date())
        record = _build_transaction(
            cart,
            totals,
            amount_paid,
            change,
            payment,
            transaction_number=transaction_number,
            timestamp=timestamp,
        )
        try:
            line_items = _write_sale(store, cart, record, policy, timestamp, progress)
        except Exception as exc:
            error = exc if isinstance(exc, SaleEngineError) else StoreUnavailable(f"Checkout aborted: {exc}")
            if progress.transaction is not None:
                error.transaction_id = progress.transaction.transaction_id
                error.compensated = _roll_back(store, progress, error, policy)
            if error is exc:
                raise
            raise error from exc
    except Exception as exc:
        error = exc if isinstance(exc, SaleEngineError) else StoreUnavailable(f"Checkout aborted: {exc}")
        if notifier is not None:
            notifier(Outcome.from_error("commit", error))
        if error is exc:
            raise
        raise error from exc

    transaction = progress.transaction
    log.info(
        "Committed sale %s: %d line(s), total %s",
        transaction.transaction_number,
        len(line_items),
        transaction.total_amount,
    )
    cart.clear()
    receipt = build_receipt(transaction, line_items, profile)
    if notifier is not None:
        notifier(
            Outcome(
                operation="commit",
                kind="success",
                transaction_id=transaction.transaction_id,
                detail=transaction.transaction_number,
            )
        )
    if receipt_consumer is not None:
        receipt_consumer(receipt)
    return CommitResult(transaction=transaction, line_items=line_items, receipt=receipt)
