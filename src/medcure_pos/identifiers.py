"""Timestamp and identifier helpers shared by the engine modules."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from typing import Optional


def resolve_timestamp(candidate: Optional[datetime] = None) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def generate_identifier(prefix: str, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable row identifier: prefix, timestamp, 16 hex digits.

    Microsecond timestamps keep identifiers in chronological order; the random
    64-bit suffix keeps rows stamped with the same instant apart, which
    happens for every line and ledger entry of one sale.
    """

    when = resolve_timestamp(when)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}{secrets.token_hex(8).upper()}"


def generate_transaction_number(prefix: str = "TXN", *, when: Optional[datetime] = None) -> str:
    """Generate a human-readable sale number, e.g. ``TXN-20250101120000123456-9F3A1C``."""

    when = resolve_timestamp(when)
    return f"{prefix}-{when.strftime('%Y%m%d%H%M%S%f')}-{secrets.token_hex(3).upper()}"
