"""Application layer for MedCure POS.

Builds the runtime context (settings plus the configured store) and exposes
the sale and cancellation workflows in the shape the command-line front-end
needs. The rules themselves live in :mod:`medcure_pos.checkout`,
:mod:`medcure_pos.cancellation`, and :mod:`medcure_pos.inventory`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import List, Optional, Sequence

from . import data_manager, log, redirect_log_file
from .cancellation import CancellationResult, cancel_sale
from .cart import Cart
from .checkout import CheckoutPolicy, CommitResult, PaymentDetails, commit_sale
from .constants import EXPECTED_SCHEMA_VERSION, Backend, PaymentMethod
from .errors import Outcome
from .packaging import PackagingQuantity
from .receipt import ReceiptConsumer, ReceiptProfile
from .stores import InMemoryStore, Store, WorkbookStore


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the store used by the workflows."""

    settings: data_manager.ConfigSettings
    store: Store


@dataclass(frozen=True)
class SaleItem:
    product_id: str
    quantity: PackagingQuantity


@dataclass(frozen=True)
class SaleCommand:
    """User intent for ringing up a sale."""

    items: Sequence[SaleItem]
    discount_percent: Decimal = Decimal("0")
    is_pwd_senior: bool = False
    amount_paid: Optional[Decimal] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    customer_name: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass
class OutcomeLog:
    """Notifier that logs every outcome and keeps them for inspection."""

    outcomes: List[Outcome] = field(default_factory=list)

    def __call__(self, outcome: Outcome) -> None:
        self.outcomes.append(outcome)
        if outcome.succeeded:
            log.info("%s succeeded for %s", outcome.operation, outcome.detail or outcome.transaction_id)
        else:
            log.error(
                "%s failed with %s (transaction=%s, product=%s, compensated=%s): %s",
                outcome.operation,
                outcome.kind,
                outcome.transaction_id,
                outcome.product_id,
                outcome.compensated,
                outcome.detail,
            )


def _build_store(settings: data_manager.ConfigSettings) -> Store:
    if settings.backend is Backend.MEMORY:
        # Seed from the workbook when one exists; nothing is written back.
        products = []
        if settings.data_file.exists():
            products = list(data_manager.iter_products(data_manager.open_workbook(settings.data_file)))
        log.info("Using in-memory store seeded with %d product(s)", len(products))
        return InMemoryStore(products)
    workbook = data_manager.open_workbook(settings.data_file)
    return WorkbookStore(workbook, settings.data_file)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and build the configured store.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Context ready for the workflow functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    if settings.log_dir is not None:
        redirect_log_file(settings.log_dir)
    store = _build_store(settings)
    log.info("Loaded runtime context (%s backend, data file '%s')", settings.backend.value, settings.data_file)
    return RuntimeContext(settings=settings, store=store)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the configured schema version differs from
            ``EXPECTED_SCHEMA_VERSION`` or the workbook lacks a managed sheet.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    if isinstance(context.store, WorkbookStore):
        missing = data_manager.missing_sheets(context.store.workbook)
        if missing:
            log.error("Workbook '%s' is missing sheets: %s", context.settings.data_file, ", ".join(missing))
            raise RuntimeError(f"Workbook is missing sheets: {', '.join(missing)}")

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Rebuild the store from disk, discarding unsaved modifications.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    store = _build_store(context.settings)
    log.info("Reloaded store for '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, store=store)


def build_cart(context: RuntimeContext, command: SaleCommand) -> Cart:
    """Fill a fresh cart from ``command`` using live product rows.

    Raises:
        NotFound: If an item names an unknown product.
        InvalidQuantity, InsufficientStock, ProductInactive: From
            :meth:`Cart.add`.
        ValueError: If the discount is outside 0-100.
    """
    cart = Cart()
    for item in command.items:
        result = cart.add(context.store.get_product(item.product_id), item.quantity)
        if result.was_capped:
            log.warning(
                "Quantity for '%s' capped at %d pieces",
                item.product_id,
                result.line.total_pieces,
            )
    cart.set_discount(command.discount_percent)
    cart.is_pwd_senior = command.is_pwd_senior
    if command.customer_name:
        cart.customer = {"name": command.customer_name}
    return cart


def record_sale(
    context: RuntimeContext,
    command: SaleCommand,
    *,
    notifier: Optional[OutcomeLog] = None,
    receipt_consumer: Optional[ReceiptConsumer] = None,
) -> CommitResult:
    """Build a cart from ``command`` and commit it with the configured policy."""
    cart = build_cart(context, command)
    return commit_sale(
        context.store,
        cart,
        PaymentDetails(amount_paid=command.amount_paid, payment_method=command.payment_method),
        policy=CheckoutPolicy.from_settings(context.settings),
        profile=ReceiptProfile.from_settings(context.settings),
        notifier=notifier if notifier is not None else OutcomeLog(),
        receipt_consumer=receipt_consumer,
        timestamp=command.timestamp,
    )


def cancel_transaction(
    context: RuntimeContext,
    transaction_id: str,
    reason: str,
    *,
    notifier: Optional[OutcomeLog] = None,
) -> CancellationResult:
    """Cancel a sale by id or by its human-readable transaction number."""
    target = resolve_transaction_id(context, transaction_id)
    return cancel_sale(
        context.store,
        target,
        reason,
        notifier=notifier if notifier is not None else OutcomeLog(),
        max_stock_retries=context.settings.max_stock_retries,
    )


def resolve_transaction_id(context: RuntimeContext, reference: str) -> str:
    """Map a transaction number to its id; ids are returned unchanged."""
    for transaction in context.store.list_transactions():
        if transaction.transaction_number == reference:
            return transaction.transaction_id
    return reference
