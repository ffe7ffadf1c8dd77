# Overview: Conversion between wire amounts (decimal, 2 places) and stored integer cents.

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")

# Maximum amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT_CENTS = 999_999_999
MAX_AMOUNT = Decimal(MAX_AMOUNT_CENTS) / 100


class AmountError(ValueError):
    """Raised when a wire amount cannot be represented in cents."""


def amount_to_cents(value: Any, field: str = "amount") -> int:
    """
    Convert a JSON number or numeric string to integer cents.

    Floats go through their shortest repr so 19.99 becomes 1999, not 1998.
    More than two fractional digits is rejected rather than rounded.
    """
    if value is None or isinstance(value, bool):
        raise AmountError(f"{field} must be a number")

    try:
        if isinstance(value, float):
            amount = Decimal(repr(value))
        elif isinstance(value, (int, Decimal)):
            amount = Decimal(value)
        elif isinstance(value, str) and value.strip():
            amount = Decimal(value.strip())
        else:
            raise AmountError(f"{field} must be a number")
    except InvalidOperation:
        raise AmountError(f"{field} must be a number")

    if not amount.is_finite():
        raise AmountError(f"{field} must be a number")

    # quantize raises InvalidOperation past the context precision, so bound first
    if abs(amount) > MAX_AMOUNT:
        raise AmountError(f"{field} cannot exceed {MAX_AMOUNT:,.2f}")

    if amount != amount.quantize(CENT):
        raise AmountError(f"{field} must have at most 2 decimal places")

    return int(amount.quantize(CENT) * 100)


def cents_to_amount(cents: int | None) -> float | None:
    if cents is None:
        return None
    return float(Decimal(cents) / 100)
