"""Command-line entry points for the MedCure POS toolkit.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the requests consumed by the application layer,
and printing results. Keeping the CLI thin ensures the same parser
configuration can be reused by tests, scripts, or any alternative front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, inventory, log, reports
from .constants import EXPIRY_WARNING_DAYS, PaymentMethod, TransactionStatus
from .data_manager import ProductRow
from .errors import SaleEngineError
from .packaging import PackagingQuantity, describe_pieces
from .receipt import render_receipt


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="medcure-pos",
        description="Point-of-sale and inventory tools for the MedCure workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and restocks."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "restock": register_restock_command(subparsers),
        "adjust-stock": register_adjust_stock_command(subparsers),
        "archive": register_archive_command(subparsers),
        "restore": register_restore_command(subparsers),
        "sale": register_sale_command(subparsers),
        "cancel": register_cancel_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "low-stock": register_low_stock_command(subparsers),
        "expiring": register_expiring_command(subparsers),
        "ledger": register_ledger_command(subparsers),
        "history": register_history_command(subparsers),
        "summary": register_summary_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def parse_item(raw: str) -> core_logic.SaleItem:
    """Parse ``PRODUCT:PIECES`` or ``PRODUCT:BOXES:SHEETS:PIECES``."""
    parts = raw.split(":")
    if len(parts) not in (2, 4) or not parts[0]:
        raise argparse.ArgumentTypeError(
            f"Invalid item '{raw}': use PRODUCT:PIECES or PRODUCT:BOXES:SHEETS:PIECES"
        )
    try:
        counts = [int(part) for part in parts[1:]]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid item '{raw}': counts must be whole numbers") from exc
    if len(counts) == 1:
        quantity = PackagingQuantity(pieces=counts[0])
    else:
        quantity = PackagingQuantity(boxes=counts[0], sheets=counts[1], pieces=counts[2])
    return core_logic.SaleItem(product_id=parts[0], quantity=quantity)


def parse_money(raw: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Invalid amount: {raw}") from exc


def parse_day(raw: str) -> date:
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date '{raw}': use YYYY-MM-DD") from exc


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product with its opening stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", default=None, help="Generated when omitted.")
        parser.add_argument("--name", required=True)
        parser.add_argument("--category", default="")
        parser.add_argument("--pieces-per-sheet", type=int, default=1)
        parser.add_argument("--sheets-per-box", type=int, default=1)
        parser.add_argument("--stock", type=int, default=0, help="Opening stock in pieces.")
        parser.add_argument("--cost-price", type=parse_money, default=Decimal("0.00"))
        parser.add_argument("--selling-price", type=parse_money, required=True)
        parser.add_argument("--critical-level", type=int, default=0)
        parser.add_argument("--expiry", type=parse_day, default=None, help="Expiry date, YYYY-MM-DD.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_restock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``restock``."""
    name = "restock"
    help_text = "Receive pieces of a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", type=int, required=True, help="Pieces received.")
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_restock)


def register_adjust_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``adjust-stock``."""
    name = "adjust-stock"
    help_text = "Correct a product's stock to a physical count."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--count", type=int, required=True, help="Counted pieces on hand.")
        parser.add_argument("--reason", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_adjust_stock)


def register_archive_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``archive``."""
    name = "archive"
    help_text = "Archive a product so it can no longer be sold."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--reason", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_archive)


def register_restore_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``restore``."""
    name = "restore"
    help_text = "Return an archived product to sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_restore)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Ring up a sale and print the receipt."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            type=parse_item,
            action="append",
            required=True,
            help="PRODUCT:PIECES or PRODUCT:BOXES:SHEETS:PIECES; repeat for more lines.",
        )
        parser.add_argument("--discount", type=parse_money, default=Decimal("0"), help="Promotional percent.")
        parser.add_argument("--pwd-senior", action="store_true", help="Apply the PWD/Senior discount.")
        parser.add_argument("--amount-paid", type=parse_money, default=None, help="Defaults to exact payment.")
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            default=PaymentMethod.CASH.value,
        )
        parser.add_argument("--customer", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_cancel_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``cancel``."""
    name = "cancel"
    help_text = "Cancel a completed sale and return its stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction", required=True, help="Transaction id or number.")
        parser.add_argument("--reason", default="Cancelled by cashier")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_cancel)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--all", dest="include_inactive", action="store_true", help="Include archived products.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_low_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``low-stock``."""
    name = "low-stock"
    help_text = "List products at or below their critical level."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_low_stock_report)


def register_expiring_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``expiring``."""
    name = "expiring"
    help_text = "List products that are expired or expire soon."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--days", type=int, default=EXPIRY_WARNING_DAYS, help="Look-ahead window in days.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_expiring_report)


def register_ledger_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``ledger``."""
    name = "ledger"
    help_text = "Display the stock movements of one product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_ledger_report)


def register_history_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``history``."""
    name = "history"
    help_text = "Display past sales, newest first."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--status", choices=[member.value for member in TransactionStatus], default=None)
        parser.add_argument("--search", default=None, help="Match transaction number or customer.")
        parser.add_argument("--limit", type=int, default=20)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_history_report)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Display the sales summary of one day."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", dest="day", type=parse_day, default=None, help="YYYY-MM-DD, defaults to today (UTC).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    context = core_logic.load_runtime_context(target)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_add_product(args: argparse.Namespace) -> ProductRow:
    """Translate CLI args into a product row."""
    return ProductRow(
        product_id=args.product_id or inventory.new_product_id(),
        name=args.name,
        category=args.category,
        pieces_per_sheet=args.pieces_per_sheet,
        sheets_per_box=args.sheets_per_box,
        total_stock=args.stock,
        cost_price=args.cost_price,
        selling_price=args.selling_price,
        critical_level=args.critical_level,
        expiry_date=args.expiry,
    )


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        items=list(args.items),
        discount_percent=args.discount,
        is_pwd_senior=args.pwd_senior,
        amount_paid=args.amount_paid,
        payment_method=PaymentMethod(args.payment_method),
        customer_name=args.customer,
    )


def format_product(product: ProductRow) -> str:
    status = inventory.stock_status(product).value
    archived = " [archived]" if not product.is_active else ""
    return (
        f"{product.product_id}  {product.name}{archived}  "
        f"{product.total_stock} pcs ({describe_pieces(product.total_stock, product)})  "
        f"{product.selling_price}/pc  {status}"
    )


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow."""
    product = inventory.register_product(context.store, translate_add_product(args))
    print(f"Added {format_product(product)}")
    return 0


def run_restock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the restock workflow."""
    product = inventory.restock(context.store, args.product_id, args.quantity, args.notes)
    print(f"Restocked {format_product(product)}")
    return 0


def run_adjust_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock count correction workflow."""
    product = inventory.adjust_stock(context.store, args.product_id, args.count, args.reason)
    print(f"Adjusted {format_product(product)}")
    return 0


def run_archive(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the archive workflow."""
    product = inventory.archive_product(context.store, args.product_id, args.reason)
    print(f"Archived {product.product_id} ({product.name})")
    return 0


def run_restore(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the restore workflow."""
    product = inventory.restore_product(context.store, args.product_id)
    print(f"Restored {product.product_id} ({product.name})")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow and print the receipt."""
    command = translate_sale(args)
    core_logic.record_sale(context, command, receipt_consumer=lambda receipt: print(render_receipt(receipt)))
    return 0


def run_cancel(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the cancellation workflow."""
    result = core_logic.cancel_transaction(context, args.transaction, args.reason)
    print(
        f"Cancelled {result.transaction.transaction_number}: "
        f"{len(result.restored)} line(s) restored, {len(result.skipped)} already restored"
    )
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock reporting workflow."""
    products = context.store.list_products(include_inactive=args.include_inactive)
    for product in sorted(products, key=lambda p: p.name):
        print(format_product(product))
    print(f"{len(products)} product(s), stock value {inventory.inventory_value(context.store)}")
    return 0


def run_low_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the low-stock reporting workflow."""
    products = inventory.low_stock_products(context.store)
    for product in products:
        print(f"{format_product(product)}  (critical level {product.critical_level})")
    if not products:
        print("No products at or below their critical level.")
    return 0


def run_expiring_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the expiry reporting workflow."""
    products = inventory.expiring_products(context.store, args.days)
    for product in products:
        status = inventory.expiry_status(product).value
        print(f"{format_product(product)}  expires {product.expiry_date.isoformat()} ({status})")
    if not products:
        print(f"No products expire within {args.days} day(s).")
    return 0


def run_ledger_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the product ledger reporting workflow."""
    for entry in reports.product_ledger(context.store, args.product_id):
        reference = f"{entry.reference_type}:{entry.reference_id}" if entry.reference_id else entry.reference_type
        print(
            f"{entry.created_at_iso}  {entry.movement_type:<10} {entry.quantity_change:+6d}  "
            f"-> {entry.remaining_stock:<6d} {reference}  {entry.notes or ''}".rstrip()
        )
    return 0


def run_history_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the transaction history reporting workflow."""
    status = TransactionStatus(args.status) if args.status else None
    history = reports.transaction_history(context.store, status=status, search=args.search)
    for transaction in history[: max(args.limit, 0)]:
        print(
            f"{transaction.created_at_iso}  {transaction.transaction_number}  {transaction.status:<9}  "
            f"{transaction.total_amount:>10}  {transaction.payment_method}  {transaction.customer_name or ''}".rstrip()
        )
    return 0


def run_summary_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the daily sales summary workflow."""
    day = args.day or datetime.now(UTC).date()
    summary = reports.daily_sales_summary(context.store, day)
    print(f"Sales summary for {day.isoformat()}")
    print(f"  Transactions: {summary.transaction_count} ({summary.cancelled_count} cancelled)")
    print(f"  Revenue:      {summary.revenue}")
    print(f"  Average sale: {summary.average_sale}")
    print(f"  Discounts:    {summary.total_discounts}")
    print(f"  Items sold:   {summary.items_sold}")
    print(f"  PWD/Senior:   {summary.pwd_senior_count}")
    for method, amount in summary.by_payment_method.items():
        print(f"  {method:<13} {amount}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, (SaleEngineError, ValueError)):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
