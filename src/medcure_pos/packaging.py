"""Box/sheet/piece packaging arithmetic.

Stock is always counted in pieces. Cashiers, however, pick quantities the way
medicine is packed: whole boxes, loose sheets (blister strips), and single
pieces. The helpers here translate between the two views and never touch the
store.
"""

from __future__ import annotations

from dataclasses import dataclass

from .data_manager import ProductRow


@dataclass(frozen=True)
class PackagingQuantity:
    """A quantity expressed as boxes, sheets, and loose pieces."""

    boxes: int = 0
    sheets: int = 0
    pieces: int = 0

    def is_empty(self) -> bool:
        return self.boxes <= 0 and self.sheets <= 0 and self.pieces <= 0


def _clamp(value: int) -> int:
    return max(0, int(value))


def to_pieces(quantity: PackagingQuantity, product: ProductRow) -> int:
    """Flatten ``quantity`` into a piece count for ``product``.

    Negative components are clamped to zero instead of raising; a result of
    ``0`` means nothing has been selected yet.
    """

    boxes = _clamp(quantity.boxes)
    sheets = _clamp(quantity.sheets)
    pieces = _clamp(quantity.pieces)
    return (
        boxes * product.sheets_per_box * product.pieces_per_sheet
        + sheets * product.pieces_per_sheet
        + pieces
    )


def from_pieces(total_pieces: int, product: ProductRow) -> PackagingQuantity:
    """Decompose a piece count into the largest boxes, then sheets, then pieces.

    Used for display only. The sheet and piece remainders are each strictly
    smaller than their multiplier, which makes the decomposition unique.
    """

    remaining = _clamp(total_pieces)
    boxes, remaining = divmod(remaining, product.pieces_per_box)
    sheets, pieces = divmod(remaining, product.pieces_per_sheet)
    return PackagingQuantity(boxes=boxes, sheets=sheets, pieces=pieces)


def _label(count: int, singular: str, plural: str) -> str:
    return f"{count} {singular if count == 1 else plural}"


def format_quantity(quantity: PackagingQuantity) -> str:
    """Render a human label such as ``"2 boxes, 1 sheet, 3 pieces"``."""

    parts = []
    if quantity.boxes > 0:
        parts.append(_label(quantity.boxes, "box", "boxes"))
    if quantity.sheets > 0:
        parts.append(_label(quantity.sheets, "sheet", "sheets"))
    if quantity.pieces > 0:
        parts.append(_label(quantity.pieces, "piece", "pieces"))
    return ", ".join(parts) or "0 pieces"


def describe_pieces(total_pieces: int, product: ProductRow) -> str:
    """Shortcut for ``format_quantity(from_pieces(...))``."""

    return format_quantity(from_pieces(total_pieces, product))
