"""
Test suite for currency and money handling

Tests precision, rounding and input parsing. Floats must never reach an
amount.
"""

import pytest
from decimal import Decimal

from lending_circle.currency import Currency, Money, quantize, to_decimal


class TestQuantize:
    """Test half-up rounding"""

    @pytest.mark.parametrize("value,expected", [
        (Decimal('113.4705'), Decimal('113.47')),
        (Decimal('0.005'), Decimal('0.01')),
        (Decimal('22.2106'), Decimal('22.21')),
        (Decimal('2.675'), Decimal('2.68')),
    ])
    def test_two_places(self, value, expected):
        """Test rounding to two places"""
        assert quantize(value) == expected

    def test_zero_places(self):
        """Test rounding to whole units"""
        assert quantize(Decimal('1500.5'), 0) == Decimal('1501')


class TestToDecimal:
    """Test conversion of user input"""

    def test_accepts_strings_ints_and_decimals(self):
        """Test valid input conversion"""
        assert to_decimal("1,200.50") == Decimal('1200.50')
        assert to_decimal("S/ 350.00") == Decimal('350.00')
        assert to_decimal(5) == Decimal('5')
        assert to_decimal(Decimal('0.02')) == Decimal('0.02')

    @pytest.mark.parametrize("value", [0.1, True, "", "abc"])
    def test_rejects_invalid(self, value):
        """Test floats and garbage are rejected"""
        with pytest.raises(ValueError):
            to_decimal(value)


class TestMoney:
    """Test Money value semantics"""

    def test_rounds_to_currency_precision(self):
        """Test money rounds to currency precision"""
        assert Money(Decimal('10.005'), Currency.PEN).amount == Decimal('10.01')
        assert Money(Decimal('1500.4'), Currency.CLP).amount == Decimal('1500')

    def test_to_string(self):
        """Test money formatting"""
        assert Money(Decimal('1200'), Currency.PEN).to_string() == "PEN 1,200.00"
        assert Money(Decimal('1500'), Currency.CLP).to_string() == "CLP 1,500"
