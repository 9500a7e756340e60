"""
Test suite for currency module

Tests Money arithmetic, rounding and Decimal conversion.
All monetary calculations must use Decimal precision.
"""

import pytest
from decimal import Decimal

from namma_paisa.currency import Money, Currency, to_decimal


class TestMoney:
    """Test Money class operations"""

    def test_money_creation(self):
        """Test Money object creation and rounding"""
        money = Money(Decimal('100.50'))
        assert money.amount == Decimal('100.50')
        assert money.currency == Currency.INR

        assert Money(Decimal('100.555')).amount == Decimal('100.56')
        assert Money(Decimal('100.7'), Currency.JPY).amount == Decimal('101')

    def test_float_goes_through_text(self):
        """0.1 + 0.2 style float noise never reaches the amount"""
        assert Money(0.1).amount == Decimal('0.10')
        assert Money(1234.565).amount == Decimal('1234.57')

    def test_money_arithmetic(self):
        """Test Money arithmetic operations"""
        a = Money(Decimal('100.50'))
        b = Money(Decimal('50.25'))
        assert (a + b).amount == Decimal('150.75')
        assert (a - b).amount == Decimal('50.25')
        assert (a * 3).amount == Decimal('301.50')
        assert (-a).amount == Decimal('-100.50')
        assert abs(Money(Decimal('-5'))).amount == Decimal('5.00')

    def test_currency_mismatch(self):
        """Test operations on different currencies fail"""
        with pytest.raises(ValueError):
            Money(Decimal('1'), Currency.INR) + Money(Decimal('1'), Currency.USD)
        with pytest.raises(ValueError):
            Money(Decimal('1'), Currency.INR) < Money(Decimal('1'), Currency.USD)

    def test_floor_zero(self):
        """Test clamping negative amounts to zero"""
        assert Money(Decimal('-0.01')).floor_zero() == Money.zero()
        assert Money(Decimal('3')).floor_zero() == Money(Decimal('3'))

    def test_total(self):
        """Test summing amounts"""
        amounts = [Money(Decimal('1.10')), Money(Decimal('2.20')), Money(Decimal('3.30'))]
        assert Money.total(amounts) == Money(Decimal('6.60'))
        assert Money.total([]) == Money.zero()

    def test_predicates_and_output(self):
        """Test predicates and formatting"""
        money = Money(Decimal('1234.5'))
        assert money.is_positive()
        assert not money.is_zero()
        assert money.to_number() == 1234.5
        assert money.to_string() == "INR 1,234.50"


class TestConversion:
    """Test Decimal conversion and currency lookup"""

    def test_to_decimal(self):
        """Test Decimal conversion"""
        assert to_decimal("12.50") == Decimal('12.50')
        assert to_decimal(3) == Decimal('3')

    def test_to_decimal_rejects_junk(self):
        """Test non-numeric input is rejected"""
        for value in ("abc", True, float('nan'), "Infinity"):
            with pytest.raises(ValueError):
                to_decimal(value)

    def test_from_code(self):
        """Test currency lookup by code"""
        assert Currency.from_code("inr") == Currency.INR
        with pytest.raises(ValueError):
            Currency.from_code("XYZ")
