"""Money conversion between decimal strings and integer cents"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

CENT = Decimal("0.01")

MoneyInput = Union[str, int, Decimal]


def to_cents(amount: MoneyInput) -> int:
    """
    Convert a decimal amount to integer cents.

    Accepts "100", "100.5", "100.50", Decimal("100.50") or an int number of whole units.
    Strings with more than two fractional digits are rejected rather than rounded so an
    amount never silently drifts.

    Raises:
        ValueError: If the amount cannot be parsed or has sub-cent precision
    """
    if isinstance(amount, bool):
        raise ValueError(f"Invalid amount: {amount!r}")
    if isinstance(amount, float):
        raise ValueError("Float amounts are not accepted; pass a string or Decimal")

    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount).strip())
    except InvalidOperation as e:
        raise ValueError(f"Could not parse amount '{amount}'") from e

    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    if value != value.quantize(CENT):
        raise ValueError(f"Amount '{amount}' has more than two decimal places")

    return int((value * 100).to_integral_value())


def from_cents(cents: int) -> Decimal:
    """Integer cents to a two-place Decimal"""
    return (Decimal(cents) / 100).quantize(CENT)


def format_cents(cents: int) -> str:
    """Format cents as a fixed two-decimal string, e.g. 7500 -> "75.00" """
    return str(from_cents(cents))


def format_dollars(cents: int) -> str:
    """Human-facing amount used in blocker and warning messages, e.g. "$150.00" """
    return f"${format_cents(cents)}"


def proportional_share(amount_cents: int, weight: int, total_weight: int) -> int:
    """amount * weight / total_weight rounded half-up to the cent"""
    if total_weight <= 0:
        raise ValueError("total_weight must be positive")
    share = Decimal(amount_cents) * Decimal(weight) / Decimal(total_weight)
    return int(share.quantize(Decimal(1), rounding=ROUND_HALF_UP))
