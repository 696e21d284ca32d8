"""Receipt projection of a committed sale."""

from __future__ import annotations

import textwrap
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence

from .data_manager import ConfigSettings, SaleLineItemRow, SaleTransactionRow
from .packaging import PackagingQuantity, format_quantity
from .pricing import round_money


WALK_IN_CUSTOMER = "Walk-in Customer"


@dataclass(frozen=True)
class ReceiptProfile:
    """Store details printed in the receipt header."""

    pharmacy_name: str = "MedCure Pharmacy"
    address: str = ""
    phone: str = ""
    cashier: str = "POS System"

    @classmethod
    def from_settings(cls, settings: ConfigSettings) -> "ReceiptProfile":
        return cls(
            pharmacy_name=settings.pharmacy_name,
            address=settings.address,
            phone=settings.phone,
            cashier=settings.cashier,
        )


@dataclass(frozen=True)
class ReceiptItem:
    name: str
    total_pieces: int
    packaging: str
    unit_price: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class Receipt:
    """Display-ready view of a sale: header, customer, items, totals, footer."""

    header: Dict[str, str]
    customer: Dict[str, Any]
    items: List[ReceiptItem] = field(default_factory=list)
    totals: Dict[str, Any] = field(default_factory=dict)
    footer: Dict[str, str] = field(default_factory=dict)


ReceiptConsumer = Callable[[Receipt], None]


def build_receipt(
    transaction: SaleTransactionRow,
    line_items: Sequence[SaleLineItemRow],
    profile: Optional[ReceiptProfile] = None,
) -> Receipt:
    """Project a persisted sale and its lines into a :class:`Receipt`."""

    profile = profile or ReceiptProfile()
    created_at = datetime.fromisoformat(transaction.created_at_iso)
    items = [
        ReceiptItem(
            name=item.product_name or "Unknown Item",
            total_pieces=item.total_pieces,
            packaging=format_quantity(PackagingQuantity(item.boxes, item.sheets, item.pieces)),
            unit_price=round_money(item.unit_price),
            line_total=round_money(item.line_total),
        )
        for item in line_items
    ]
    return Receipt(
        header={
            "pharmacy_name": profile.pharmacy_name,
            "address": profile.address,
            "phone": profile.phone,
            "transaction_number": transaction.transaction_number,
            "date": created_at.strftime("%Y-%m-%d"),
            "time": created_at.strftime("%H:%M:%S"),
            "cashier": profile.cashier,
        },
        customer={
            "name": transaction.customer_name or WALK_IN_CUSTOMER,
            "is_pwd_senior": transaction.is_pwd_senior,
        },
        items=items,
        totals={
            "subtotal": transaction.subtotal,
            "discount_percent": transaction.discount_percent,
            "discount_amount": transaction.discount_amount,
            "statutory_discount_amount": transaction.statutory_discount_amount,
            "total_amount": transaction.total_amount,
            "amount_paid": transaction.amount_paid,
            "change_amount": transaction.change_amount,
            "payment_method": transaction.payment_method,
        },
        footer={
            "thank_you": "Thank you for your business!",
            "disclaimer": "Please keep this receipt for your records.",
            "return_policy": "Returns accepted within 7 days with receipt.",
        },
    )


def render_receipt(receipt: Receipt, *, width: int = 42) -> str:
    """Format ``receipt`` as fixed-width plain text for a terminal or printer."""

    def row(label: str, value: object) -> str:
        text = str(value)
        return f"{label}{text.rjust(max(1, width - len(label)))}"

    header = receipt.header
    lines = [header["pharmacy_name"].center(width)]
    for key in ("address", "phone"):
        if header[key]:
            lines.append(header[key].center(width))
    lines.append("-" * width)
    lines.append(row("Receipt #", header["transaction_number"]))
    lines.append(row("Date", f"{header['date']} {header['time']}"))
    lines.append(row("Cashier", header["cashier"]))
    lines.append(row("Customer", receipt.customer["name"]))
    if receipt.customer["is_pwd_senior"]:
        lines.append(row("PWD/Senior", "Yes"))
    lines.append("-" * width)
    for item in receipt.items:
        lines.append(item.name[:width])
        lines.append(row(f"  {item.total_pieces} x {item.unit_price}", item.line_total))
        lines.append(f"  ({item.packaging})")
    lines.append("-" * width)

    totals = receipt.totals
    lines.append(row("Subtotal", totals["subtotal"]))
    if totals["discount_amount"]:
        lines.append(row(f"Discount ({totals['discount_percent']}%)", f"-{totals['discount_amount']}"))
    if totals["statutory_discount_amount"]:
        lines.append(row("PWD/Senior (20%)", f"-{totals['statutory_discount_amount']}"))
    lines.append(row("TOTAL", totals["total_amount"]))
    lines.append(row(f"Paid ({totals['payment_method']})", totals["amount_paid"]))
    lines.append(row("Change", totals["change_amount"]))
    lines.append("-" * width)
    for message in receipt.footer.values():
        lines.extend(part.center(width) for part in textwrap.wrap(message, width))
    return "\n".join(lines)
