"""Error taxonomy for the sale engine.

Every failure surfaced by the cart, checkout, cancellation, and store layers
derives from :class:`SaleEngineError`. Each subclass carries a stable ``kind``
string plus the affected product or transaction identifier so collaborators can
render an actionable message without parsing exception text.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional


class SaleEngineError(Exception):
    """Base class for failures raised by the sale engine."""

    kind = "SaleEngineError"

    def __init__(
        self,
        message: str,
        *,
        product_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.product_id = product_id
        self.transaction_id = transaction_id
        # Set by the commit protocol once a mid-sequence failure was rolled back.
        self.compensated = False


class EmptyCart(SaleEngineError):
    """Raised when checkout is attempted on a cart without lines."""

    kind = "EmptyCart"


class InvalidQuantity(SaleEngineError):
    """Raised when a resolved piece count is zero or negative."""

    kind = "InvalidQuantity"


class InsufficientStock(SaleEngineError):
    """Raised when a requested quantity exceeds the available stock."""

    kind = "InsufficientStock"

    def __init__(
        self,
        message: str,
        *,
        product_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
        requested: int = 0,
        available: int = 0,
    ) -> None:
        super().__init__(message, product_id=product_id, transaction_id=transaction_id)
        self.requested = requested
        self.available = available


class TransactionNumberExhausted(SaleEngineError):
    """Raised when no unique transaction number could be allocated."""

    kind = "TransactionNumberExhausted"


class NotFound(SaleEngineError):
    """Raised when a product or transaction identifier is unknown."""

    kind = "NotFound"


class AlreadyCancelled(SaleEngineError):
    """Raised when cancelling a transaction that is already cancelled."""

    kind = "AlreadyCancelled"


class StoreUnavailable(SaleEngineError):
    """Raised when the backing store cannot be read or written."""

    kind = "StoreUnavailable"


class ProductInactive(SaleEngineError):
    """Raised when an archived product is sold."""

    kind = "ProductInactive"


class ProductExpired(SaleEngineError):
    """Raised when a product past its expiry date is sold."""

    kind = "ProductExpired"


class InsufficientPayment(SaleEngineError):
    """Raised when the amount tendered does not cover the sale total."""

    kind = "InsufficientPayment"


class StockConflict(SaleEngineError):
    """Raised by a store when a conditional stock update loses a race."""

    kind = "StockConflict"

    def __init__(self, message: str, *, product_id: Optional[str] = None, current_stock: int = 0) -> None:
        super().__init__(message, product_id=product_id)
        self.current_stock = current_stock


class DuplicateTransactionNumber(SaleEngineError):
    """Raised by a store when a transaction number is already taken."""

    kind = "DuplicateTransactionNumber"


class DuplicateRecord(SaleEngineError):
    """Raised by a store when a row identifier is already in use."""

    kind = "DuplicateRecord"


@dataclass(frozen=True)
class Outcome:
    """Terminal result of a commit or cancellation, handed to notifiers.

    ``kind`` is ``"success"`` or the ``kind`` of the error that ended the
    operation.
    """

    operation: str
    kind: str
    transaction_id: Optional[str] = None
    product_id: Optional[str] = None
    detail: str = ""
    compensated: bool = False

    @property
    def succeeded(self) -> bool:
        return self.kind == "success"

    @classmethod
    def from_error(cls, operation: str, error: SaleEngineError) -> "Outcome":
        return cls(
            operation=operation,
            kind=error.kind,
            transaction_id=error.transaction_id,
            product_id=error.product_id,
            detail=str(error),
            compensated=error.compensated,
        )


Notifier = Callable[[Outcome], None]


__all__ = [
    "SaleEngineError",
    "EmptyCart",
    "InvalidQuantity",
    "InsufficientStock",
    "TransactionNumberExhausted",
    "NotFound",
    "AlreadyCancelled",
    "StoreUnavailable",
    "ProductInactive",
    "ProductExpired",
    "InsufficientPayment",
    "StockConflict",
    "DuplicateTransactionNumber",
    "DuplicateRecord",
    "Outcome",
    "Notifier",
]
