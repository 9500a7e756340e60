"""
EMI Calculator Module

Derives the installment amount from the tenure or the tenure from the
installment amount, using the standard reducing-balance formula:

    EMI = P * r * (1 + r)^n / ((1 + r)^n - 1)

where r is the annual rate divided by payments per year and by 100.
"""

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING
from typing import Optional

from .currency import Money
from .schedule import EMIFrequency, PAYMENTS_PER_YEAR


@dataclass(frozen=True)
class LoanQuote:
    """EMI and tenure pair with the totals they imply"""
    emi_amount: Money
    tenure: int
    total_interest: Money
    total_payment: Money


def rate_per_period(annual_rate_percent: Decimal, frequency: EMIFrequency) -> Decimal:
    return annual_rate_percent / Decimal(PAYMENTS_PER_YEAR[frequency]) / Decimal('100')


def calculate_emi(
    principal: Money,
    annual_rate_percent: Decimal,
    tenure: int,
    frequency: EMIFrequency = EMIFrequency.MONTHLY
) -> Money:
    """Installment amount for a tenure; zero when the tenure is not positive"""
    if tenure <= 0:
        return Money.zero(principal.currency)

    if annual_rate_percent == 0:
        return Money(principal.amount / Decimal(tenure), principal.currency)

    rate = rate_per_period(annual_rate_percent, frequency)
    growth = (Decimal('1') + rate) ** tenure
    emi = principal.amount * rate * growth / (growth - Decimal('1'))
    return Money(emi, principal.currency)


def calculate_tenure(
    principal: Money,
    annual_rate_percent: Decimal,
    emi_amount: Money,
    frequency: EMIFrequency = EMIFrequency.MONTHLY
) -> int:
    """
    Installments needed to repay principal at a given EMI

    Returns 0 when the EMI is not positive or never covers the first
    period's interest.
    """
    if not emi_amount.is_positive():
        return 0

    if annual_rate_percent == 0:
        return int((principal.amount / emi_amount.amount).to_integral_value(rounding=ROUND_CEILING))

    rate = rate_per_period(annual_rate_percent, frequency)
    first_interest = principal.amount * rate
    if emi_amount.amount <= first_interest:
        return 0

    # N = log(EMI / (EMI - P*r)) / log(1 + r)
    numerator = math.log(float(emi_amount.amount / (emi_amount.amount - first_interest)))
    denominator = math.log(float(Decimal('1') + rate))
    # Shave float noise so an exact tenure is not pushed up by one
    return math.ceil(round(numerator / denominator, 9))


def calculate_total_interest(principal: Money, emi_amount: Money, tenure: int) -> Money:
    return emi_amount * tenure - principal


def auto_calculate(
    principal: Money,
    annual_rate_percent: Decimal,
    frequency: EMIFrequency,
    tenure: Optional[int] = None,
    emi_amount: Optional[Money] = None
) -> LoanQuote:
    """
    Fill in whichever of tenure / EMI is missing

    When both are given they are used as-is; when neither is given the
    quote is all zeros.
    """
    has_tenure = bool(tenure)
    has_emi = emi_amount is not None and emi_amount.is_positive()

    if has_tenure and not has_emi:
        emi_amount = calculate_emi(principal, annual_rate_percent, tenure, frequency)
    elif has_emi and not has_tenure:
        tenure = calculate_tenure(principal, annual_rate_percent, emi_amount, frequency)
    elif not has_tenure and not has_emi:
        zero = Money.zero(principal.currency)
        return LoanQuote(emi_amount=zero, tenure=0, total_interest=zero, total_payment=zero)

    return LoanQuote(
        emi_amount=emi_amount,
        tenure=tenure,
        total_interest=calculate_total_interest(principal, emi_amount, tenure),
        total_payment=emi_amount * tenure
    )
