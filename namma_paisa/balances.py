"""
Loan balance arithmetic.

Every path that moves a loan's aggregates (recording, editing and reversing
a payment, and early closure) goes through these pure functions, so the
floor-at-zero rules live in one place.
"""

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence

from .currency import Money


@dataclass(frozen=True)
class LoanBalance:
    """Aggregate fields of a loan"""
    principal_amount: Money
    current_outstanding: Money
    total_paid: Money
    is_closed: bool = False
    is_active: bool = True
    closed_at: Optional[date] = None


@dataclass(frozen=True)
class ClosureSplit:
    """Principal/interest allocation for one installment settled at closure"""
    principal: Money
    interest: Money


def apply_payment(balance: LoanBalance, paid_amount: Money, principal_paid: Money) -> LoanBalance:
    """Outstanding drops by the principal portion, total paid grows by the full amount"""
    return replace(
        balance,
        current_outstanding=(balance.current_outstanding - principal_paid).floor_zero(),
        total_paid=balance.total_paid + paid_amount
    )


def reverse_payment(balance: LoanBalance, paid_amount: Money) -> LoanBalance:
    """Undo a payment: total paid shrinks (not below zero), outstanding grows back"""
    return replace(
        balance,
        current_outstanding=balance.current_outstanding + paid_amount,
        total_paid=(balance.total_paid - paid_amount).floor_zero()
    )


def adjust_payment(balance: LoanBalance, old_paid: Money, new_paid: Money) -> LoanBalance:
    """Apply the difference between an edited payment and the original one"""
    delta = new_paid - old_paid
    return replace(
        balance,
        current_outstanding=(balance.current_outstanding - delta).floor_zero(),
        total_paid=balance.total_paid + delta
    )


def mark_closed(balance: LoanBalance, closed_on: date) -> LoanBalance:
    """A closed loan has nothing outstanding, whatever principal the payments covered"""
    return replace(
        balance,
        current_outstanding=Money.zero(balance.current_outstanding.currency),
        is_closed=True,
        is_active=False,
        closed_at=closed_on
    )



def reopen(balance: LoanBalance) -> LoanBalance:
    return replace(balance, is_closed=False, is_active=True, closed_at=None)


def should_auto_close(balance: LoanBalance, unpaid_remaining: int) -> bool:
    """A payment closes the loan once nothing is outstanding or nothing is left to pay"""
    return not balance.current_outstanding.is_positive() or unpaid_remaining == 0


def split_closure(
    current_outstanding: Money,
    annual_rate_percent: Decimal,
    installment_amounts: Sequence[Money]
) -> List[ClosureSplit]:
    """
    Allocate each unpaid installment between principal and interest

    Walks installments in due-date order with a monthly rate of
    annual_rate / 100 / 12, charging interest on the principal still
    remaining before each one.

    Args:
        current_outstanding: Principal outstanding before closure
        annual_rate_percent: Annual interest rate, e.g. Decimal('12') for 12%
        installment_amounts: Scheduled amounts, ascending by due date

    Returns:
        One ClosureSplit per installment, in the same order
    """
    monthly_rate = annual_rate_percent / Decimal('100') / Decimal('12')
    remaining = current_outstanding
    splits = []
    for amount in installment_amounts:
        interest = remaining * monthly_rate
        principal = amount - interest
        remaining = (remaining - principal).floor_zero()
        splits.append(ClosureSplit(principal=principal, interest=interest))
    return splits


def close_early(
    balance: LoanBalance,
    paid_amount: Money,
    preclosure_charges: Money,
    additional_interest: Money,
    closed_on: date
) -> LoanBalance:
    """
    Final aggregates after an early closure

    The charges are folded into the principal so the loan's recorded cost
    reflects what was actually paid.
    """
    closed = replace(
        balance,
        principal_amount=balance.principal_amount + preclosure_charges + additional_interest,
        current_outstanding=Money.zero(balance.current_outstanding.currency),
        total_paid=balance.total_paid + paid_amount
    )
    return mark_closed(closed, closed_on)
