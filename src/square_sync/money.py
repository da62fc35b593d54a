"""Decimal <-> minor-unit conversion."""

from __future__ import annotations

from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Coerce a caller-supplied amount to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid amount: {value!r}") from e


def quantize(amount: Any) -> Decimal:
    """Round to whole cents, half-to-even."""
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_EVEN)


def to_minor_units(amount: Any) -> int:
    """12.345 -> 1234, 12.355 -> 1236."""
    return int(quantize(amount) * 100)


def from_minor_units(minor: int | str) -> Decimal:
    """5000 -> Decimal('50.00')."""
    return (Decimal(int(minor)) / 100).quantize(CENT)
