"""Unit tests for currency helpers."""
from decimal import Decimal

import pytest

from roombook.utils.currency import format_amount, from_minor_units, to_minor_units


@pytest.mark.parametrize(
    "value,expected",
    [
        (90, 9000),
        (90.0, 9000),
        ("90.00", 9000),
        (Decimal("49.99"), 4999),
        (90.1, 9010),
        (0.29, 29),
        ("49.995", 5000),
        (0, 0),
    ],
)
def test_to_minor_units(value, expected):
    assert to_minor_units(value) == expected


@pytest.mark.parametrize("value", [None, True, "abc", "", float("nan")])
def test_to_minor_units_invalid(value):
    assert to_minor_units(value) is None


def test_from_minor_units():
    assert from_minor_units(9010) == Decimal("90.10")


def test_format_amount():
    assert format_amount(500000) == "R$5,000.00 BRL"
    assert format_amount(100, "usd") == "$1.00 USD"
