"""
Tests for the EMI calculator
"""

from decimal import Decimal

from namma_paisa.calculator import (
    auto_calculate, calculate_emi, calculate_tenure, calculate_total_interest, rate_per_period
)
from namma_paisa.currency import Money
from namma_paisa.schedule import EMIFrequency


class TestCalculateEMI:
    """Test EMI from tenure"""

    def test_standard_monthly_emi(self):
        """1,00,000 at 12% over 12 months"""
        emi = calculate_emi(Money(Decimal('100000')), Decimal('12'), 12)
        assert emi == Money(Decimal('8884.88'))

    def test_zero_rate_divides_evenly(self):
        """Test zero-rate EMI is principal over tenure"""
        emi = calculate_emi(Money(Decimal('12000')), Decimal('0'), 12)
        assert emi == Money(Decimal('1000.00'))

    def test_non_positive_tenure(self):
        """Test a non-positive tenure is rejected"""
        assert calculate_emi(Money(Decimal('12000')), Decimal('10'), 0).is_zero()

    def test_quarterly_uses_quarterly_rate(self):
        """Test quarterly EMIs use a quarterly rate"""
        assert rate_per_period(Decimal('12'), EMIFrequency.QUARTERLY) == Decimal('0.03')
        quarterly = calculate_emi(Money(Decimal('100000')), Decimal('12'), 4, EMIFrequency.QUARTERLY)
        monthly = calculate_emi(Money(Decimal('100000')), Decimal('12'), 4, EMIFrequency.MONTHLY)
        assert quarterly > monthly


class TestCalculateTenure:
    """Test tenure from EMI"""

    def test_round_trip_with_emi(self):
        """Test tenure from the calculated EMI matches the original tenure"""
        principal = Money(Decimal('100000'))
        emi = calculate_emi(principal, Decimal('12'), 24)
        assert calculate_tenure(principal, Decimal('12'), emi) == 24

    def test_partial_last_installment_rounds_up(self):
        """Test a partial last installment counts as one more"""
        assert calculate_tenure(Money(Decimal('10000')), Decimal('0'), Money(Decimal('3000'))) == 4

    def test_emi_below_interest_gives_zero(self):
        """1000/month never covers 1% of 1,00,000"""
        assert calculate_tenure(Money(Decimal('100000')), Decimal('12'), Money(Decimal('1000'))) == 0

    def test_non_positive_emi(self):
        """Test a non-positive EMI gives no tenure"""
        assert calculate_tenure(Money(Decimal('100000')), Decimal('12'), Money(Decimal('0'))) == 0


class TestAutoCalculate:
    """Test filling in the missing term"""

    def test_derives_emi(self):
        """Test EMI is derived from tenure"""
        quote = auto_calculate(Money(Decimal('12000')), Decimal('0'), EMIFrequency.MONTHLY, tenure=12)
        assert quote.emi_amount == Money(Decimal('1000.00'))
        assert quote.total_interest.is_zero()
        assert quote.total_payment == Money(Decimal('12000.00'))

    def test_derives_tenure(self):
        """Test tenure is derived from EMI"""
        quote = auto_calculate(
            Money(Decimal('12000')), Decimal('0'), EMIFrequency.MONTHLY, emi_amount=Money(Decimal('1000'))
        )
        assert quote.tenure == 12

    def test_keeps_both_when_given(self):
        """Test given tenure and EMI are kept as they are"""
        quote = auto_calculate(
            Money(Decimal('10000')), Decimal('10'), EMIFrequency.MONTHLY,
            tenure=10, emi_amount=Money(Decimal('1100'))
        )
        assert quote.tenure == 10
        assert quote.emi_amount == Money(Decimal('1100'))
        assert quote.total_interest == Money(Decimal('1000'))

    def test_nothing_given(self):
        """Test missing tenure and EMI is rejected"""
        quote = auto_calculate(Money(Decimal('10000')), Decimal('10'), EMIFrequency.MONTHLY)
        assert quote.tenure == 0
        assert quote.emi_amount.is_zero()

    def test_total_interest(self):
        """Test total interest over the tenure"""
        total = calculate_total_interest(Money(Decimal('100000')), Money(Decimal('8884.88')), 12)
        assert total == Money(Decimal('6618.56'))
