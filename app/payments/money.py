"""
Decimal money helpers.

Ledger amounts are ``Decimal`` in settlement-currency units with two
decimal places. Cents exist only at the Stripe boundary.

Usage:
    from payments.money import quantize_money, to_cents, from_cents

    quantize_money(Decimal("143.3888"))  # Decimal("143.39")
    to_cents(Decimal("155.00"))          # 15500
    from_cents(500)                      # Decimal("5.00")
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Decimal | int | float | str | None) -> Decimal:
    """
    Coerce a value to Decimal without going through binary floats.

    Floats are converted via ``str`` so 0.1 stays 0.1.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def quantize_money(value: Decimal | int | float | str) -> Decimal:
    """Round to cents, half away from zero."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Decimal | int | float | str) -> int:
    """Convert a currency amount to integer minor units for Stripe."""
    return int((quantize_money(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    """Convert Stripe minor units back to a currency amount."""
    return quantize_money(Decimal(cents) / 100)
