"""Store interface consumed by the sale engine, with two implementations.

:class:`InMemoryStore` keeps everything in dictionaries and serves tests and
throwaway sessions; :class:`WorkbookStore` persists to the master workbook via
:mod:`medcure_pos.data_manager`. Which one is used is decided once, when the
runtime context is built from ``config.ini``; business logic only ever sees
the :class:`Store` interface.

Both implementations enforce the invariant that stock never goes negative and
support a compare-and-set form of :meth:`Store.set_stock` so concurrent
terminals cannot silently overwrite each other's decrements.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from openpyxl.workbook import Workbook

from . import data_manager, log
from .errors import (
    DuplicateRecord,
    DuplicateTransactionNumber,
    InsufficientStock,
    NotFound,
    StockConflict,
    StoreUnavailable,
)


class Store(ABC):
    """Product, transaction, and ledger access used by the engine."""

    # -- products -------------------------------------------------------

    @abstractmethod
    def get_product(self, product_id: str) -> data_manager.ProductRow:
        """Return the live product row or raise :class:`NotFound`."""

    @abstractmethod
    def list_products(self, *, include_inactive: bool = False) -> List[data_manager.ProductRow]:
        ...

    @abstractmethod
    def add_product(self, product: data_manager.ProductRow) -> data_manager.ProductRow:
        """Insert a new product; duplicate identifiers raise ``ValueError``."""

    @abstractmethod
    def update_product(self, product: data_manager.ProductRow) -> data_manager.ProductRow:
        """Replace the catalog fields of an existing product.

        The stock counter is left untouched; it only changes through
        :meth:`set_stock`.
        """

    @abstractmethod
    def set_active(self, product_id: str, is_active: bool) -> data_manager.ProductRow:
        ...

    @abstractmethod
    def set_stock(
        self,
        product_id: str,
        new_total: int,
        *,
        expected_stock: Optional[int] = None,
    ) -> data_manager.ProductRow:
        """Overwrite the stock counter of ``product_id``.

        Raises:
            InsufficientStock: If ``new_total`` is negative.
            StockConflict: If ``expected_stock`` is given and no longer matches
                the stored value.
            NotFound: If the product does not exist.
        """

    # -- transactions ---------------------------------------------------

    @abstractmethod
    def create_transaction(self, record: data_manager.SaleTransactionRow) -> data_manager.SaleTransactionRow:
        """Insert a sale header.

        Raises:
            DuplicateTransactionNumber: If the number is already taken.
            DuplicateRecord: If the transaction id is already taken.
        """

    @abstractmethod
    def create_line_item(self, record: data_manager.SaleLineItemRow) -> data_manager.SaleLineItemRow:
        """Insert a line item; a reused ``line_item_id`` raises :class:`DuplicateRecord`."""

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> data_manager.SaleTransactionRow:
        ...

    @abstractmethod
    def get_line_items(self, transaction_id: str) -> List[data_manager.SaleLineItemRow]:
        ...

    @abstractmethod
    def update_transaction_status(
        self,
        transaction_id: str,
        status: str,
        *,
        cancelled_at_iso: Optional[str] = None,
        cancellation_reason: Optional[str] = None,
    ) -> data_manager.SaleTransactionRow:
        ...

    @abstractmethod
    def list_transactions(self) -> List[data_manager.SaleTransactionRow]:
        ...

    # -- ledger ---------------------------------------------------------

    @abstractmethod
    def append_movement(self, entry: data_manager.StockMovementRow) -> data_manager.StockMovementRow:
        ...

    @abstractmethod
    def _all_movements(self) -> Iterable[data_manager.StockMovementRow]:
        ...

    def list_movements(
        self,
        *,
        product_id: Optional[str] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> List[data_manager.StockMovementRow]:
        """Return ledger entries in append order, optionally filtered."""

        return [
            entry
            for entry in self._all_movements()
            if (product_id is None or entry.product_id == product_id)
            and (reference_type is None or entry.reference_type == reference_type)
            and (reference_id is None or entry.reference_id == reference_id)
        ]

    def flush(self) -> None:
        """Make every write so far durable. No-op for volatile stores."""


def _check_stock_update(product: data_manager.ProductRow, new_total: int, expected_stock: Optional[int]) -> None:
    if new_total < 0:
        log.error(
            "Store rejected negative stock for '%s': %d -> %d",
            product.product_id,
            product.total_stock,
            new_total,
        )
        raise InsufficientStock(
            f"Stock for '{product.name}' cannot go below zero",
            product_id=product.product_id,
            requested=product.total_stock - new_total,
            available=product.total_stock,
        )
    if expected_stock is not None and product.total_stock != expected_stock:
        log.warning(
            "Stock conflict for '%s': expected %d, found %d",
            product.product_id,
            expected_stock,
            product.total_stock,
        )
        raise StockConflict(
            f"Stock for '{product.product_id}' changed concurrently",
            product_id=product.product_id,
            current_stock=product.total_stock,
        )


class InMemoryStore(Store):
    """Volatile store backed by dictionaries; row updates are serialized."""

    def __init__(self, products: Iterable[data_manager.ProductRow] = ()) -> None:
        self._lock = threading.RLock()
        self._products: Dict[str, data_manager.ProductRow] = {}
        self._transactions: Dict[str, data_manager.SaleTransactionRow] = {}
        self._line_items: List[data_manager.SaleLineItemRow] = []
        self._movements: List[data_manager.StockMovementRow] = []
        for product in products:
            self.add_product(product)

    def get_product(self, product_id: str) -> data_manager.ProductRow:
        try:
            return self._products[product_id]
        except KeyError as exc:
            raise NotFound(f"Unknown product id: {product_id}", product_id=product_id) from exc

    def list_products(self, *, include_inactive: bool = False) -> List[data_manager.ProductRow]:
        return [p for p in self._products.values() if include_inactive or p.is_active]

    def add_product(self, product: data_manager.ProductRow) -> data_manager.ProductRow:
        with self._lock:
            if product.product_id in self._products:
                raise ValueError(f"Duplicate product id: {product.product_id}")
            self._products[product.product_id] = product
        return product

    def update_product(self, product: data_manager.ProductRow) -> data_manager.ProductRow:
        with self._lock:
            current = self.get_product(product.product_id)
            updated = replace(product, total_stock=current.total_stock)
            self._products[product.product_id] = updated
        return updated

    def set_active(self, product_id: str, is_active: bool) -> data_manager.ProductRow:
        with self._lock:
            updated = replace(self.get_product(product_id), is_active=is_active)
            self._products[product_id] = updated
        return updated

    def set_stock(self, product_id: str, new_total: int, *, expected_stock: Optional[int] = None) -> data_manager.ProductRow:
        with self._lock:
            product = self.get_product(product_id)
            _check_stock_update(product, new_total, expected_stock)
            updated = replace(product, total_stock=new_total)
            self._products[product_id] = updated
        return updated

    def create_transaction(self, record: data_manager.SaleTransactionRow) -> data_manager.SaleTransactionRow:
        with self._lock:
            if record.transaction_id in self._transactions:
                raise DuplicateRecord(
                    f"Transaction id already used: {record.transaction_id}",
                    transaction_id=record.transaction_id,
                )
            if any(t.transaction_number == record.transaction_number for t in self._transactions.values()):
                raise DuplicateTransactionNumber(
                    f"Transaction number already used: {record.transaction_number}",
                    transaction_id=record.transaction_id,
                )
            self._transactions[record.transaction_id] = record
        return record

    def create_line_item(self, record: data_manager.SaleLineItemRow) -> data_manager.SaleLineItemRow:
        with self._lock:
            if any(item.line_item_id == record.line_item_id for item in self._line_items):
                raise DuplicateRecord(
                    f"Line item id already used: {record.line_item_id}",
                    transaction_id=record.transaction_id,
                )
            self._line_items.append(record)
        return record

    def get_transaction(self, transaction_id: str) -> data_manager.SaleTransactionRow:
        try:
            return self._transactions[transaction_id]
        except KeyError as exc:
            raise NotFound(f"Unknown transaction id: {transaction_id}", transaction_id=transaction_id) from exc

    def get_line_items(self, transaction_id: str) -> List[data_manager.SaleLineItemRow]:
        return [item for item in self._line_items if item.transaction_id == transaction_id]

    def update_transaction_status(
        self,
        transaction_id: str,
        status: str,
        *,
        cancelled_at_iso: Optional[str] = None,
        cancellation_reason: Optional[str] = None,
    ) -> data_manager.SaleTransactionRow:
        with self._lock:
            updated = replace(
                self.get_transaction(transaction_id),
                status=status,
                cancelled_at_iso=cancelled_at_iso,
                cancellation_reason=cancellation_reason,
            )
            self._transactions[transaction_id] = updated
        return updated

    def list_transactions(self) -> List[data_manager.SaleTransactionRow]:
        return list(self._transactions.values())

    def append_movement(self, entry: data_manager.StockMovementRow) -> data_manager.StockMovementRow:
        with self._lock:
            self._movements.append(entry)
        return entry

    def _all_movements(self) -> Iterable[data_manager.StockMovementRow]:
        return list(self._movements)


class WorkbookStore(Store):
    """Store persisted to the master workbook through ``openpyxl``.

    Writes land in the live workbook immediately; :meth:`flush` saves the file
    to ``data_file``. Stock is re-read from the sheet on every call and never
    cached between operations.
    """

    def __init__(self, workbook: Workbook, data_file: Path) -> None:
        self.workbook = workbook
        self.data_file = Path(data_file)
        self._lock = threading.RLock()

    def get_product(self, product_id: str) -> data_manager.ProductRow:
        for product in data_manager.iter_products(self.workbook):
            if product.product_id == product_id:
                return product
        log.warning("Product lookup failed for id '%s'", product_id)
        raise NotFound(f"Unknown product id: {product_id}", product_id=product_id)

    def list_products(self, *, include_inactive: bool = False) -> List[data_manager.ProductRow]:
        return [p for p in data_manager.iter_products(self.workbook) if include_inactive or p.is_active]

    def add_product(self, product: data_manager.ProductRow) -> data_manager.ProductRow:
        with self._lock:
            if data_manager.locate_row(self.workbook, data_manager.PRODUCTS_SHEET, "ProductID", product.product_id):
                raise ValueError(f"Duplicate product id: {product.product_id}")
            data_manager.append_product(self.workbook, product)
        return product

    def update_product(self, product: data_manager.ProductRow) -> data_manager.ProductRow:
        with self._lock:
            current = self.get_product(product.product_id)
            data_manager.update_product(
                self.workbook,
                product.product_id,
                field_values={
                    "Name": product.name,
                    "Category": product.category,
                    "PiecesPerSheet": product.pieces_per_sheet,
                    "SheetsPerBox": product.sheets_per_box,
                    "CostPrice": product.cost_price,
                    "SellingPrice": product.selling_price,
                    "CriticalLevel": product.critical_level,
                    "IsActive": product.is_active,
                    "ExpiryDate": product.expiry_date,
                },
            )
        return replace(product, total_stock=current.total_stock)

    def set_active(self, product_id: str, is_active: bool) -> data_manager.ProductRow:
        with self._lock:
            product = self.get_product(product_id)
            data_manager.update_product(self.workbook, product_id, field_values={"IsActive": is_active})
        return replace(product, is_active=is_active)

    def set_stock(self, product_id: str, new_total: int, *, expected_stock: Optional[int] = None) -> data_manager.ProductRow:
        with self._lock:
            product = self.get_product(product_id)
            _check_stock_update(product, new_total, expected_stock)
            data_manager.update_product(self.workbook, product_id, field_values={"TotalStock": new_total})
        return replace(product, total_stock=new_total)

    def create_transaction(self, record: data_manager.SaleTransactionRow) -> data_manager.SaleTransactionRow:
        with self._lock:
            if data_manager.locate_row(
                self.workbook, data_manager.TRANSACTIONS_SHEET, "TransactionID", record.transaction_id
            ):
                raise DuplicateRecord(
                    f"Transaction id already used: {record.transaction_id}",
                    transaction_id=record.transaction_id,
                )
            number_taken = data_manager.locate_row(
                self.workbook,
                data_manager.TRANSACTIONS_SHEET,
                "TransactionNumber",
                record.transaction_number,
            )
            if number_taken is not None:
                raise DuplicateTransactionNumber(
                    f"Transaction number already used: {record.transaction_number}",
                    transaction_id=record.transaction_id,
                )
            data_manager.append_transaction(self.workbook, record)
        return record

    def create_line_item(self, record: data_manager.SaleLineItemRow) -> data_manager.SaleLineItemRow:
        with self._lock:
            if data_manager.locate_row(self.workbook, data_manager.LINE_ITEMS_SHEET, "LineItemID", record.line_item_id):
                raise DuplicateRecord(
                    f"Line item id already used: {record.line_item_id}",
                    transaction_id=record.transaction_id,
                )
            data_manager.append_line_item(self.workbook, record)
        return record

    def get_transaction(self, transaction_id: str) -> data_manager.SaleTransactionRow:
        for transaction in data_manager.iter_transactions(self.workbook):
            if transaction.transaction_id == transaction_id:
                return transaction
        log.warning("Transaction lookup failed for id '%s'", transaction_id)
        raise NotFound(f"Unknown transaction id: {transaction_id}", transaction_id=transaction_id)

    def get_line_items(self, transaction_id: str) -> List[data_manager.SaleLineItemRow]:
        return [item for item in data_manager.iter_line_items(self.workbook) if item.transaction_id == transaction_id]

    def update_transaction_status(
        self,
        transaction_id: str,
        status: str,
        *,
        cancelled_at_iso: Optional[str] = None,
        cancellation_reason: Optional[str] = None,
    ) -> data_manager.SaleTransactionRow:
        with self._lock:
            transaction = self.get_transaction(transaction_id)
            data_manager.update_transaction(
                self.workbook,
                transaction_id,
                field_values={
                    "Status": status,
                    "CancelledAt": cancelled_at_iso,
                    "CancellationReason": cancellation_reason,
                },
            )
        return replace(
            transaction,
            status=status,
            cancelled_at_iso=cancelled_at_iso,
            cancellation_reason=cancellation_reason,
        )

    def list_transactions(self) -> List[data_manager.SaleTransactionRow]:
        return list(data_manager.iter_transactions(self.workbook))

    def append_movement(self, entry: data_manager.StockMovementRow) -> data_manager.StockMovementRow:
        with self._lock:
            data_manager.append_movement(self.workbook, entry)
        return entry

    def _all_movements(self) -> Iterable[data_manager.StockMovementRow]:
        return list(data_manager.iter_movements(self.workbook))

    def flush(self) -> None:
        try:
            data_manager.save_workbook(self.workbook, destination=self.data_file)
        except OSError as exc:
            log.error("Unable to persist workbook '%s': %s", self.data_file, exc)
            raise StoreUnavailable(f"Unable to persist workbook: {exc}") from exc
        log.info("Persisted workbook '%s'", self.data_file)
