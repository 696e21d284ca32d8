"""In-memory checkout cart.

A :class:`Cart` lives for the duration of one checkout session and is never
persisted. Stock ceilings are checked against the product snapshot the cart
was handed at mutation time; the authoritative re-check against the live store
happens at commit in :mod:`medcure_pos.checkout`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Dict, List, Optional

from . import log
from .data_manager import ProductRow
from .errors import InsufficientStock, InvalidQuantity, ProductInactive
from .packaging import PackagingQuantity, from_pieces, to_pieces
from .pricing import CartTotals, compute_totals


@dataclass(frozen=True)
class CartLine:
    """One product in the cart with its resolved piece count."""

    product: ProductRow
    packaging: PackagingQuantity
    total_pieces: int
    unit_price: Decimal

    @property
    def product_id(self) -> str:
        return self.product.product_id

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.total_pieces


@dataclass(frozen=True)
class AddResult:
    """Outcome of :meth:`Cart.add`.

    ``capped_pieces`` is non-zero when a merge would have exceeded the known
    stock and the line was limited to the ceiling instead.
    """

    line: CartLine
    requested_pieces: int
    added_pieces: int
    capped_pieces: int = 0
    merged: bool = False

    @property
    def was_capped(self) -> bool:
        return self.capped_pieces > 0


def _breakdown(total_pieces: int, candidate: PackagingQuantity, product: ProductRow) -> PackagingQuantity:
    # Keep the cashier's own breakdown whenever it still adds up.
    if to_pieces(candidate, product) == total_pieces:
        return candidate
    return from_pieces(total_pieces, product)


@dataclass
class Cart:
    """Ordered, product-unique collection of cart lines plus discount state."""

    lines: List[CartLine] = field(default_factory=list)
    discount_percent: Decimal = Decimal("0")
    is_pwd_senior: bool = False
    customer: Dict[str, Any] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.lines

    def get_line(self, product_id: str) -> Optional[CartLine]:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    def _index_of(self, product_id: str) -> Optional[int]:
        for index, line in enumerate(self.lines):
            if line.product_id == product_id:
                return index
        return None

    def add(self, product: ProductRow, quantity: PackagingQuantity) -> AddResult:
        """Add ``quantity`` of ``product``, merging with an existing line.

        Raises:
            InvalidQuantity: If the quantity resolves to zero pieces. The cart
                is left untouched.
            InsufficientStock: If the requested pieces alone exceed the stock
                known for ``product``.
            ProductInactive: If ``product`` is archived.
        """

        requested = to_pieces(quantity, product)
        if requested <= 0:
            log.warning("Rejected cart add for '%s': quantity resolves to 0 pieces", product.product_id)
            raise InvalidQuantity("Quantity must be greater than zero", product_id=product.product_id)
        if not product.is_active:
            log.warning("Rejected cart add for archived product '%s'", product.product_id)
            raise ProductInactive(f"Product '{product.name}' is archived", product_id=product.product_id)
        if requested > product.total_stock:
            log.warning(
                "Rejected cart add for '%s': requested %d, available %d",
                product.product_id,
                requested,
                product.total_stock,
            )
            raise InsufficientStock(
                f"Only {product.total_stock} pieces of '{product.name}' available",
                product_id=product.product_id,
                requested=requested,
                available=product.total_stock,
            )

        index = self._index_of(product.product_id)
        if index is None:
            line = CartLine(
                product=product,
                packaging=quantity,
                total_pieces=requested,
                unit_price=product.selling_price,
            )
            self.lines.append(line)
            return AddResult(line=line, requested_pieces=requested, added_pieces=requested)

        existing = self.lines[index]
        wanted = existing.total_pieces + requested
        new_total = min(wanted, product.total_stock)
        merged_packaging = PackagingQuantity(
            boxes=existing.packaging.boxes + quantity.boxes,
            sheets=existing.packaging.sheets + quantity.sheets,
            pieces=existing.packaging.pieces + quantity.pieces,
        )
        line = replace(
            existing,
            product=product,
            total_pieces=new_total,
            packaging=_breakdown(new_total, merged_packaging, product),
        )
        self.lines[index] = line
        capped = wanted - new_total
        if capped:
            log.info(
                "Capped cart line for '%s' at %d pieces (%d over stock)",
                product.product_id,
                new_total,
                capped,
            )
        return AddResult(
            line=line,
            requested_pieces=requested,
            added_pieces=new_total - existing.total_pieces,
            capped_pieces=capped,
            merged=True,
        )

    def update_quantity(self, product_id: str, new_total_pieces: int) -> Optional[CartLine]:
        """Replace a line's piece count, clamped to the product's stock.

        A non-positive count removes the line. Returns the updated line, or
        ``None`` when the line was removed or never existed.
        """

        if new_total_pieces <= 0:
            self.remove(product_id)
            return None

        index = self._index_of(product_id)
        if index is None:
            return None

        existing = self.lines[index]
        clamped = min(int(new_total_pieces), existing.product.total_stock)
        line = replace(
            existing,
            total_pieces=clamped,
            packaging=from_pieces(clamped, existing.product),
        )
        self.lines[index] = line
        return line

    def remove(self, product_id: str) -> None:
        self.lines = [line for line in self.lines if line.product_id != product_id]

    def set_discount(self, percent: Decimal) -> None:
        """Set the promotional discount percentage.

        Raises:
            ValueError: If ``percent`` falls outside 0–100.
        """

        percent = Decimal(percent)
        if percent < Decimal("0") or percent > Decimal("100"):
            raise ValueError("Discount percent must be between 0 and 100")
        self.discount_percent = percent

    def clear(self) -> None:
        """Empty the cart and reset discount, PWD/Senior flag, and customer."""

        self.lines = []
        self.discount_percent = Decimal("0")
        self.is_pwd_senior = False
        self.customer = {}

    def totals(self) -> CartTotals:
        return compute_totals(self)
