"""Data access layer for MedCure POS.

This module provides low-level helpers that read from and write to the
pharmacy master workbook. Business rules belong elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending or updating
   individual rows.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import Backend, SheetName


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
TRANSACTIONS_SHEET = SheetName.SALE_TRANSACTIONS.value
LINE_ITEMS_SHEET = SheetName.SALE_LINE_ITEMS.value
MOVEMENTS_SHEET = SheetName.STOCK_MOVEMENTS.value

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    PRODUCTS_SHEET: [
        "ProductID",
        "Name",
        "Category",
        "PiecesPerSheet",
        "SheetsPerBox",
        "TotalStock",
        "CostPrice",
        "SellingPrice",
        "CriticalLevel",
        "IsActive",
        "ExpiryDate",
    ],
    TRANSACTIONS_SHEET: [
        "TransactionID",
        "TransactionNumber",
        "CreatedAt",
        "Status",
        "Subtotal",
        "DiscountPercent",
        "DiscountAmount",
        "StatutoryDiscountAmount",
        "TotalAmount",
        "AmountPaid",
        "ChangeAmount",
        "PaymentMethod",
        "CustomerName",
        "IsPwdSenior",
        "CancelledAt",
        "CancellationReason",
    ],
    LINE_ITEMS_SHEET: [
        "LineItemID",
        "TransactionID",
        "ProductID",
        "ProductName",
        "TotalPieces",
        "UnitPrice",
        "LineTotal",
        "Boxes",
        "Sheets",
        "Pieces",
    ],
    MOVEMENTS_SHEET: [
        "MovementID",
        "CreatedAt",
        "ProductID",
        "MovementType",
        "QuantityChange",
        "RemainingStock",
        "ReferenceType",
        "ReferenceID",
        "LineItemID",
        "Notes",
    ],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    pharmacy_name: str
    schema_version: str
    backend: Backend = Backend.WORKBOOK
    address: str = ""
    phone: str = ""
    cashier: str = "POS System"
    transaction_prefix: str = "TXN"
    max_number_attempts: int = 5
    max_stock_retries: int = 3
    log_dir: Optional[Path] = None


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    name: str
    pieces_per_sheet: int = 1
    sheets_per_box: int = 1
    total_stock: int = 0
    cost_price: Decimal = Decimal("0.00")
    selling_price: Decimal = Decimal("0.00")
    critical_level: int = 0
    is_active: bool = True
    category: str = ""
    expiry_date: Optional[date] = None

    @property
    def pieces_per_box(self) -> int:
        return self.pieces_per_sheet * self.sheets_per_box


@dataclass(frozen=True)
class SaleTransactionRow:
    """In-memory view of a row from the ``SaleTransactions`` sheet."""

    transaction_id: str
    transaction_number: str
    created_at_iso: str
    status: str
    subtotal: Decimal
    discount_percent: Decimal
    discount_amount: Decimal
    statutory_discount_amount: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    change_amount: Decimal
    payment_method: str
    customer_name: Optional[str] = None
    is_pwd_senior: bool = False
    cancelled_at_iso: Optional[str] = None
    cancellation_reason: Optional[str] = None


@dataclass(frozen=True)
class SaleLineItemRow:
    """In-memory view of a row from the ``SaleLineItems`` sheet."""

    line_item_id: str
    transaction_id: str
    product_id: str
    product_name: str
    total_pieces: int
    unit_price: Decimal
    line_total: Decimal
    boxes: int = 0
    sheets: int = 0
    pieces: int = 0


@dataclass(frozen=True)
class StockMovementRow:
    """In-memory view of a row from the ``StockMovements`` sheet."""

    movement_id: str
    created_at_iso: str
    product_id: str
    movement_type: str
    quantity_change: int
    remaining_stock: int
    reference_type: str
    reference_id: Optional[str] = None
    line_item_id: Optional[str] = None
    notes: Optional[str] = None


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The ``[System]`` section is mandatory. ``[Receipt]`` and ``[Checkout]`` are
    optional and fall back to the dataclass defaults. Relative ``DataFile``
    and ``LogDirectory`` entries are anchored to ``base_path`` (or the current
    working directory) and resolved to an absolute path.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to anchor relative paths.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required option is missing or ``Backend`` names an
            unknown store implementation.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        pharmacy_name = parser.get("System", "PharmacyName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    backend_raw = parser.get("System", "Backend", fallback=Backend.WORKBOOK.value)
    try:
        backend = Backend(backend_raw.strip().lower())
    except ValueError as exc:
        raise KeyError(f"Unknown backend in configuration: {backend_raw}") from exc

    if base_path is None:
        base_path = Path.cwd()
    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (base_path / data_file_path).resolve()

    log_dir_raw = parser.get("System", "LogDirectory", fallback="").strip()
    log_dir = (base_path / log_dir_raw).resolve() if log_dir_raw else None

    defaults = ConfigSettings(data_file=data_file_path, pharmacy_name=pharmacy_name, schema_version=schema_version)
    return ConfigSettings(
        data_file=data_file_path,
        pharmacy_name=pharmacy_name,
        schema_version=schema_version,
        backend=backend,
        address=parser.get("Receipt", "Address", fallback=defaults.address),
        phone=parser.get("Receipt", "Phone", fallback=defaults.phone),
        cashier=parser.get("Receipt", "Cashier", fallback=defaults.cashier),
        transaction_prefix=parser.get("Checkout", "TransactionPrefix", fallback=defaults.transaction_prefix),
        max_number_attempts=parser.getint("Checkout", "MaxNumberAttempts", fallback=defaults.max_number_attempts),
        max_stock_retries=parser.getint("Checkout", "MaxStockRetries", fallback=defaults.max_stock_retries),
        log_dir=log_dir,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def missing_sheets(workbook: Workbook) -> list[str]:
    """Return the managed sheet names absent from ``workbook``."""

    return [name for name in SHEET_COLUMNS if name not in workbook.sheetnames]


def _iter_sheet(workbook: Workbook, sheet_name: str, deserializer: Callable[[Sequence[object]], Any]) -> Iterable[Any]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield deserializer(raw)


def _header_map(workbook: Workbook, sheet_name: str) -> dict[str, int]:
    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def _update_row(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: str,
    field_values: Mapping[str, Any],
    *,
    label: str,
) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{label} not found: {key_value}")

    sheet = workbook[sheet_name]
    header_map = _header_map(workbook, sheet_name)
    for field, value in field_values.items():
        if field not in header_map:
            raise KeyError(f"Unknown {sheet_name} field: {field}")
        sheet.cell(row=row_index, column=header_map[field], value=value)


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet."""

    return _iter_sheet(workbook, PRODUCTS_SHEET, deserialize_product)


def iter_transactions(workbook: Workbook) -> Iterable[SaleTransactionRow]:
    """Stream sale headers from the ``SaleTransactions`` worksheet."""

    return _iter_sheet(workbook, TRANSACTIONS_SHEET, deserialize_transaction)


def iter_line_items(workbook: Workbook) -> Iterable[SaleLineItemRow]:
    """Stream sale lines from the ``SaleLineItems`` worksheet."""

    return _iter_sheet(workbook, LINE_ITEMS_SHEET, deserialize_line_item)


def iter_movements(workbook: Workbook) -> Iterable[StockMovementRow]:
    """Stream the stock ledger in append order.

    Quantity columns come back as ``int`` and blank optional columns stay
    ``None`` so ledger replays can sum ``quantity_change`` directly.
    """

    return _iter_sheet(workbook, MOVEMENTS_SHEET, deserialize_movement)


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def append_transaction(workbook: Workbook, record: SaleTransactionRow) -> None:
    """Append a sale header to the ``SaleTransactions`` worksheet."""

    workbook[TRANSACTIONS_SHEET].append(serialize_transaction(record))


def append_line_item(workbook: Workbook, record: SaleLineItemRow) -> None:
    """Append a sale line to the ``SaleLineItems`` worksheet."""

    workbook[LINE_ITEMS_SHEET].append(serialize_line_item(record))


def append_movement(workbook: Workbook, record: StockMovementRow) -> None:
    """Append a ledger entry to the ``StockMovements`` worksheet.

    The ledger sheet is append-only: there is deliberately no update helper
    for it in this module.
    """

    workbook[MOVEMENTS_SHEET].append(serialize_movement(record))


def update_product(workbook: Workbook, product_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing product.

    Args:
        workbook (Workbook): Workbook containing the products sheet.
        product_id (str): Identifier used to locate the target row.
        field_values (dict[str, Any]): Mapping of column names to replacement
            values.

    Raises:
        KeyError: If the product or any referenced column cannot be found.
    """

    _update_row(workbook, PRODUCTS_SHEET, "ProductID", product_id, field_values, label="Product")


def update_transaction(workbook: Workbook, transaction_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing sale header.

    Raises:
        KeyError: If the transaction or any referenced column is missing.
    """

    _update_row(workbook, TRANSACTIONS_SHEET, "TransactionID", transaction_id, field_values, label="Transaction")


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the lookup column.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    header_map = _header_map(workbook, sheet_name)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]
    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the worksheet column ordering."""

    return [
        record.product_id,
        record.name,
        record.category,
        record.pieces_per_sheet,
        record.sheets_per_box,
        record.total_stock,
        record.cost_price,
        record.selling_price,
        record.critical_level,
        record.is_active,
        record.expiry_date,
    ]


def serialize_transaction(record: SaleTransactionRow) -> list[object]:
    """Convert a sale header into the ``SaleTransactions`` column order."""

    return [
        record.transaction_id,
        record.transaction_number,
        record.created_at_iso,
        record.status,
        record.subtotal,
        record.discount_percent,
        record.discount_amount,
        record.statutory_discount_amount,
        record.total_amount,
        record.amount_paid,
        record.change_amount,
        record.payment_method,
        record.customer_name,
        record.is_pwd_senior,
        record.cancelled_at_iso,
        record.cancellation_reason,
    ]


def serialize_line_item(record: SaleLineItemRow) -> list[object]:
    """Convert a sale line into the ``SaleLineItems`` column order."""

    return [
        record.line_item_id,
        record.transaction_id,
        record.product_id,
        record.product_name,
        record.total_pieces,
        record.unit_price,
        record.line_total,
        record.boxes,
        record.sheets,
        record.pieces,
    ]


def serialize_movement(record: StockMovementRow) -> list[object]:
    """Convert a ledger entry into the ``StockMovements`` column order."""

    return [
        record.movement_id,
        record.created_at_iso,
        record.product_id,
        record.movement_type,
        record.quantity_change,
        record.remaining_stock,
        record.reference_type,
        record.reference_id,
        record.line_item_id,
        record.notes,
    ]


def _to_decimal(raw: object, default: str = "0.00") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _to_int(raw: object, default: int = 0) -> int:
    return int(raw) if raw is not None else default


def _to_optional_str(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def _to_date(raw: object) -> Optional[date]:
    # openpyxl hands date cells back as datetime
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw).strip()[:10])


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Identifier and name cells are coerced to ``str`` to avoid surprises caused
    by Excel interpreting numeric identifiers, prices become
    :class:`~decimal.Decimal`, and packaging multipliers default to ``1``.
    Rows saved before the ``ExpiryDate`` column existed load without an
    expiry date.
    """

    (
        product_id,
        name,
        category,
        pieces_per_sheet,
        sheets_per_box,
        total_stock,
        cost_price,
        selling_price,
        critical_level,
        is_active,
        *extra,
    ) = raw_row

    return ProductRow(
        product_id=str(product_id),
        name=str(name) if name is not None else "",
        category=str(category) if category is not None else "",
        pieces_per_sheet=_to_int(pieces_per_sheet, 1),
        sheets_per_box=_to_int(sheets_per_box, 1),
        total_stock=_to_int(total_stock),
        cost_price=_to_decimal(cost_price),
        selling_price=_to_decimal(selling_price),
        critical_level=_to_int(critical_level),
        is_active=bool(is_active),
        expiry_date=_to_date(extra[0] if extra else None),
    )


def deserialize_transaction(raw_row: Sequence[object]) -> SaleTransactionRow:
    """Convert a raw worksheet row into a strongly typed sale header."""

    (
        transaction_id,
        transaction_number,
        created_at_iso,
        status,
        subtotal,
        discount_percent,
        discount_amount,
        statutory_discount_amount,
        total_amount,
        amount_paid,
        change_amount,
        payment_method,
        customer_name,
        is_pwd_senior,
        cancelled_at_iso,
        cancellation_reason,
    ) = raw_row

    return SaleTransactionRow(
        transaction_id=str(transaction_id),
        transaction_number=str(transaction_number),
        created_at_iso=str(created_at_iso) if created_at_iso is not None else "",
        status=str(status) if status is not None else "",
        subtotal=_to_decimal(subtotal),
        discount_percent=_to_decimal(discount_percent, "0"),
        discount_amount=_to_decimal(discount_amount),
        statutory_discount_amount=_to_decimal(statutory_discount_amount),
        total_amount=_to_decimal(total_amount),
        amount_paid=_to_decimal(amount_paid),
        change_amount=_to_decimal(change_amount),
        payment_method=str(payment_method) if payment_method is not None else "",
        customer_name=_to_optional_str(customer_name),
        is_pwd_senior=bool(is_pwd_senior),
        cancelled_at_iso=_to_optional_str(cancelled_at_iso),
        cancellation_reason=_to_optional_str(cancellation_reason),
    )


def deserialize_line_item(raw_row: Sequence[object]) -> SaleLineItemRow:
    """Convert a raw worksheet row into a strongly typed sale line."""

    (
        line_item_id,
        transaction_id,
        product_id,
        product_name,
        total_pieces,
        unit_price,
        line_total,
        boxes,
        sheets,
        pieces,
    ) = raw_row

    return SaleLineItemRow(
        line_item_id=str(line_item_id),
        transaction_id=str(transaction_id),
        product_id=str(product_id),
        product_name=str(product_name) if product_name is not None else "",
        total_pieces=_to_int(total_pieces),
        unit_price=_to_decimal(unit_price),
        line_total=_to_decimal(line_total),
        boxes=_to_int(boxes),
        sheets=_to_int(sheets),
        pieces=_to_int(pieces),
    )


def deserialize_movement(raw_row: Sequence[object]) -> StockMovementRow:
    """Convert a raw worksheet row into a strongly typed ledger entry."""

    (
        movement_id,
        created_at_iso,
        product_id,
        movement_type,
        quantity_change,
        remaining_stock,
        reference_type,
        reference_id,
        line_item_id,
        notes,
    ) = raw_row

    return StockMovementRow(
        movement_id=str(movement_id),
        created_at_iso=str(created_at_iso) if created_at_iso is not None else "",
        product_id=str(product_id),
        movement_type=str(movement_type) if movement_type is not None else "",
        quantity_change=_to_int(quantity_change),
        remaining_stock=_to_int(remaining_stock),
        reference_type=str(reference_type) if reference_type is not None else "",
        reference_id=_to_optional_str(reference_id),
        line_item_id=_to_optional_str(line_item_id),
        notes=_to_optional_str(notes),
    )
