"""Enumerations and fixed values shared across the MedCure POS modules.

Centralises domain constants so that the data access layer, the sale engine,
and the command-line front-end rely on a single source of truth for status
codes, ledger vocabularies, and workbook sheet names.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.1.0"

# Mandated PWD/Senior reduction, applied to the undiscounted subtotal.
STATUTORY_DISCOUNT_RATE = Decimal("0.20")

CENT = Decimal("0.01")

# Days before the expiry date at which a product is flagged.
EXPIRY_CRITICAL_DAYS = 7
EXPIRY_WARNING_DAYS = 30


class TransactionStatus(str, Enum):
    """Lifecycle states of a committed sale."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    """Enumerate supported payment mechanisms for sales."""

    CASH = "cash"
    CARD = "card"
    GCASH = "gcash"


class MovementType(str, Enum):
    """Direction of a stock movement recorded in the ledger."""

    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"
    ARCHIVED = "archived"


class ReferenceType(str, Enum):
    """What caused a stock movement."""

    SALE = "sale"
    CANCELLATION = "cancellation"
    IMPORT = "import"
    INITIAL_STOCK = "initial_stock"
    RESTOCK = "restock"
    ADJUSTMENT = "adjustment"
    ARCHIVE = "archive"
    RESTORE = "restore"


class StockStatus(str, Enum):
    """Coarse stock classification used by low-stock listings."""

    OUT_OF_STOCK = "out_of_stock"
    LOW = "low"
    IN_STOCK = "in_stock"


class ExpiryStatus(str, Enum):
    """Shelf-life classification derived from a product's expiry date."""

    UNKNOWN = "unknown"
    EXPIRED = "expired"
    CRITICAL = "critical"
    WARNING = "warning"
    GOOD = "good"


class Backend(str, Enum):
    """Store implementations selectable from ``config.ini``."""

    WORKBOOK = "workbook"
    MEMORY = "memory"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the data layer."""

    PRODUCTS = "Products"
    SALE_TRANSACTIONS = "SaleTransactions"
    SALE_LINE_ITEMS = "SaleLineItems"
    STOCK_MOVEMENTS = "StockMovements"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "STATUTORY_DISCOUNT_RATE",
    "CENT",
    "EXPIRY_CRITICAL_DAYS",
    "EXPIRY_WARNING_DAYS",
    "TransactionStatus",
    "PaymentMethod",
    "MovementType",
    "ReferenceType",
    "StockStatus",
    "ExpiryStatus",
    "Backend",
    "SheetName",
]
