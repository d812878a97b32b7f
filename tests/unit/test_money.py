"""Unit tests for money conversion"""

from decimal import Decimal

import pytest

from tabs_billing.domain.money import format_cents, format_dollars, from_cents, proportional_share, to_cents


@pytest.mark.parametrize(
    "amount, expected",
    [
        ("100", 10000),
        ("100.5", 10050),
        ("100.50", 10050),
        ("0.01", 1),
        (" 75.00 ", 7500),
        (Decimal("33.33"), 3333),
        (12, 1200),
        ("-5.25", -525),
    ],
)
def test_to_cents(amount, expected):
    assert to_cents(amount) == expected


@pytest.mark.parametrize("amount", ["1.005", "abc", "", "NaN", "Infinity", True])
def test_to_cents_rejects_invalid(amount):
    with pytest.raises(ValueError):
        to_cents(amount)


def test_to_cents_rejects_float():
    """Binary floats are refused rather than rounded"""
    with pytest.raises(ValueError, match="Float"):
        to_cents(0.1)


def test_format_cents_always_two_places():
    assert format_cents(7500) == "75.00"
    assert format_cents(1) == "0.01"
    assert format_cents(0) == "0.00"
    assert format_cents(-250) == "-2.50"


def test_format_dollars():
    assert format_dollars(15000) == "$150.00"


def test_from_cents_is_exact():
    assert from_cents(3334) == Decimal("33.34")


def test_proportional_share_rounds_half_up():
    assert proportional_share(1, 1, 2) == 1
    assert proportional_share(10000, 1, 3) == 3333
    assert proportional_share(10000, 2, 3) == 6667


def test_proportional_share_requires_weight():
    with pytest.raises(ValueError):
        proportional_share(100, 1, 0)
