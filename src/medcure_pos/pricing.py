"""Subtotal, discount, and change calculations for a cart.

Amounts accumulate at full :class:`~decimal.Decimal` precision and are only
rounded to cents by :func:`round_money`, which callers apply when displaying or
persisting a figure.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Optional

from .constants import CENT, STATUTORY_DISCOUNT_RATE

if TYPE_CHECKING:
    from .cart import Cart


@dataclass(frozen=True)
class CartTotals:
    """Unrounded totals derived from the current cart state."""

    subtotal: Decimal
    discount_amount: Decimal
    statutory_discount_amount: Decimal
    total_discount: Decimal
    total: Decimal
    item_count: int

    def rounded(self) -> "CartTotals":
        """Return a copy with every monetary field rounded to cents."""

        return CartTotals(
            subtotal=round_money(self.subtotal),
            discount_amount=round_money(self.discount_amount),
            statutory_discount_amount=round_money(self.statutory_discount_amount),
            total_discount=round_money(self.total_discount),
            total=round_money(self.total),
            item_count=self.item_count,
        )


def round_money(amount: Decimal) -> Decimal:
    """Round ``amount`` to two decimal places, half away from zero."""

    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_totals(cart: "Cart") -> CartTotals:
    """Compute subtotal, promotional and statutory discounts, and the total.

    The promotional percentage and the PWD/Senior discount are both taken
    from the original subtotal and then added together; they never compound.
    The total is floored at zero when the discounts exceed the subtotal.
    """

    subtotal = sum((line.unit_price * line.total_pieces for line in cart.lines), Decimal("0"))
    discount_amount = subtotal * Decimal(cart.discount_percent) / Decimal("100")
    statutory = subtotal * STATUTORY_DISCOUNT_RATE if cart.is_pwd_senior else Decimal("0")
    total_discount = discount_amount + statutory
    total = max(Decimal("0"), subtotal - total_discount)
    item_count = sum(line.total_pieces for line in cart.lines)
    return CartTotals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        statutory_discount_amount=statutory,
        total_discount=total_discount,
        total=total,
        item_count=item_count,
    )


def compute_change(total: Decimal, amount_paid: Optional[Decimal]) -> tuple[Decimal, Decimal]:
    """Resolve the tendered amount and change due, both rounded to cents.

    An omitted ``amount_paid`` is treated as exact payment.
    """

    total = round_money(total)
    paid = total if amount_paid is None else round_money(amount_paid)
    return paid, paid - total
