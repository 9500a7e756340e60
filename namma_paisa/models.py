"""
Loan Records Module

Stored shapes for loans, their installments (EMIs) and gold-loan collateral.
Money is persisted as Decimal strings alongside the loan's currency code.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .balances import LoanBalance
from .currency import Currency, Money
from .schedule import EMIFrequency, PaymentSchedule, ScheduleDate
from .storage import StorageRecord


LOANS_TABLE = "loans"
EMIS_TABLE = "emis"
GOLD_ITEMS_TABLE = "gold_loan_items"


class LoanType(Enum):
    HOME_LOAN = "HOME_LOAN"
    CAR_LOAN = "CAR_LOAN"
    PERSONAL_LOAN = "PERSONAL_LOAN"
    EDUCATION_LOAN = "EDUCATION_LOAN"
    BUSINESS_LOAN = "BUSINESS_LOAN"
    GOLD_LOAN = "GOLD_LOAN"
    CREDIT_CARD = "CREDIT_CARD"
    OTHER = "OTHER"


class PaymentMethod(Enum):
    CASH = "CASH"
    CARD = "CARD"
    UPI = "UPI"
    NET_BANKING = "NET_BANKING"
    OTHER = "OTHER"


def _money(value: Optional[str], currency: Currency) -> Optional[Money]:
    if value is None:
        return None
    return Money(Decimal(value), currency)


def _money_str(value: Optional[Money]) -> Optional[str]:
    return str(value.amount) if value is not None else None


def _date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _date_str(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _timestamps(data: Dict[str, Any]) -> Dict[str, datetime]:
    return {
        'created_at': datetime.fromisoformat(data['created_at']),
        'updated_at': datetime.fromisoformat(data['updated_at']),
    }


@dataclass
class Loan(StorageRecord):
    """A borrower's loan with its current aggregates"""
    user_id: str
    loan_type: LoanType
    institution: str
    principal_amount: Money
    interest_rate: Decimal              # annual percentage, e.g. 12 for 12%
    tenure: int                         # total installment count
    emi_amount: Money                   # default installment amount
    start_date: date
    current_outstanding: Money
    emi_frequency: EMIFrequency = EMIFrequency.MONTHLY
    payment_schedule: List[ScheduleDate] = field(default_factory=list)
    account_holder_name: str = ""
    total_paid: Optional[Money] = None  # zero when omitted
    is_closed: bool = False
    closed_at: Optional[date] = None
    is_active: bool = True
    preclosure_charges: Optional[Money] = None
    additional_interest: Optional[Money] = None
    account_number: Optional[str] = None
    description: Optional[str] = None

    def __post_init__(self):
        if self.total_paid is None:
            self.total_paid = Money.zero(self.currency)

    @property
    def currency(self) -> Currency:
        return self.principal_amount.currency

    @property
    def schedule(self) -> PaymentSchedule:
        return PaymentSchedule.for_frequency(self.emi_frequency, self.payment_schedule)

    @property
    def balance(self) -> LoanBalance:
        return LoanBalance(
            principal_amount=self.principal_amount,
            current_outstanding=self.current_outstanding,
            total_paid=self.total_paid,
            is_closed=self.is_closed,
            is_active=self.is_active,
            closed_at=self.closed_at
        )

    def apply_balance(self, balance: LoanBalance) -> None:
        """Copy reducer output back onto the record"""
        self.principal_amount = balance.principal_amount
        self.current_outstanding = balance.current_outstanding
        self.total_paid = balance.total_paid
        self.is_closed = balance.is_closed
        self.is_active = balance.is_active
        self.closed_at = balance.closed_at
        self.touch()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'user_id': self.user_id,
            'loan_type': self.loan_type.value,
            'institution': self.institution,
            'account_holder_name': self.account_holder_name,
            'currency': self.currency.code,
            'principal_amount': _money_str(self.principal_amount),
            'interest_rate': str(self.interest_rate),
            'tenure': self.tenure,
            'emi_amount': _money_str(self.emi_amount),
            'emi_frequency': self.emi_frequency.value,
            'payment_schedule': [d.to_dict() for d in self.payment_schedule],
            'start_date': self.start_date.isoformat(),
            'current_outstanding': _money_str(self.current_outstanding),
            'total_paid': _money_str(self.total_paid),
            'is_closed': self.is_closed,
            'closed_at': _date_str(self.closed_at),
            'is_active': self.is_active,
            'preclosure_charges': _money_str(self.preclosure_charges),
            'additional_interest': _money_str(self.additional_interest),
            'account_number': self.account_number,
            'description': self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        currency = Currency.from_code(data['currency'])
        return cls(
            id=data['id'],
            **_timestamps(data),
            user_id=data['user_id'],
            loan_type=LoanType(data['loan_type']),
            institution=data['institution'],
            account_holder_name=data.get('account_holder_name', ''),
            principal_amount=_money(data['principal_amount'], currency),
            interest_rate=Decimal(data['interest_rate']),
            tenure=data['tenure'],
            emi_amount=_money(data['emi_amount'], currency),
            emi_frequency=EMIFrequency(data['emi_frequency']),
            payment_schedule=[ScheduleDate(**d) for d in data.get('payment_schedule') or []],
            start_date=date.fromisoformat(data['start_date']),
            current_outstanding=_money(data['current_outstanding'], currency),
            total_paid=_money(data['total_paid'], currency),
            is_closed=data['is_closed'],
            closed_at=_date(data.get('closed_at')),
            is_active=data['is_active'],
            preclosure_charges=_money(data.get('preclosure_charges'), currency),
            additional_interest=_money(data.get('additional_interest'), currency),
            account_number=data.get('account_number'),
            description=data.get('description'),
        )


PAYMENT_FIELDS = (
    'paid_amount', 'paid_date', 'principal_paid', 'interest_paid',
    'late_fee', 'payment_method', 'payment_notes'
)


@dataclass
class Installment(StorageRecord):
    """
    One scheduled EMI of a loan

    Payment fields are populated only while is_paid is True.
    """
    loan_id: str
    installment_number: int
    due_date: date
    emi_amount: Money
    is_paid: bool = False
    paid_amount: Optional[Money] = None
    paid_date: Optional[date] = None
    principal_paid: Optional[Money] = None
    interest_paid: Optional[Money] = None
    late_fee: Optional[Money] = None
    payment_method: Optional[PaymentMethod] = None
    payment_notes: Optional[str] = None

    def __post_init__(self):
        if not self.is_paid:
            carried = [name for name in PAYMENT_FIELDS if getattr(self, name) is not None]
            if carried:
                raise ValueError(f"Unpaid installment cannot carry payment fields: {', '.join(carried)}")

    @property
    def currency(self) -> Currency:
        return self.emi_amount.currency

    def mark_paid(
        self,
        paid_amount: Money,
        paid_date: date,
        principal_paid: Money,
        interest_paid: Money,
        payment_method: PaymentMethod,
        late_fee: Optional[Money] = None,
        payment_notes: Optional[str] = None
    ) -> None:
        self.is_paid = True
        self.paid_amount = paid_amount
        self.paid_date = paid_date
        self.principal_paid = principal_paid
        self.interest_paid = interest_paid
        self.late_fee = late_fee
        self.payment_method = payment_method
        self.payment_notes = payment_notes
        self.touch()

    def clear_payment(self) -> None:
        """Return the installment to unpaid, dropping every payment field"""
        self.is_paid = False
        for name in PAYMENT_FIELDS:
            setattr(self, name, None)
        self.touch()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'loan_id': self.loan_id,
            'installment_number': self.installment_number,
            'due_date': self.due_date.isoformat(),
            'currency': self.currency.code,
            'emi_amount': _money_str(self.emi_amount),
            'is_paid': self.is_paid,
            'paid_amount': _money_str(self.paid_amount),
            'paid_date': _date_str(self.paid_date),
            'principal_paid': _money_str(self.principal_paid),
            'interest_paid': _money_str(self.interest_paid),
            'late_fee': _money_str(self.late_fee),
            'payment_method': self.payment_method.value if self.payment_method else None,
            'payment_notes': self.payment_notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Installment':
        currency = Currency.from_code(data['currency'])
        method = data.get('payment_method')
        return cls(
            id=data['id'],
            **_timestamps(data),
            loan_id=data['loan_id'],
            installment_number=data['installment_number'],
            due_date=date.fromisoformat(data['due_date']),
            emi_amount=_money(data['emi_amount'], currency),
            is_paid=data['is_paid'],
            paid_amount=_money(data.get('paid_amount'), currency),
            paid_date=_date(data.get('paid_date')),
            principal_paid=_money(data.get('principal_paid'), currency),
            interest_paid=_money(data.get('interest_paid'), currency),
            late_fee=_money(data.get('late_fee'), currency),
            payment_method=PaymentMethod(method) if method else None,
            payment_notes=data.get('payment_notes'),
        )


@dataclass
class GoldLoanItem(StorageRecord):
    """Pledged gold item backing a GOLD_LOAN"""
    loan_id: str
    title: str
    carat: int
    quantity: int
    gross_weight: Decimal   # grams
    net_weight: Decimal     # grams
    loan_amount: Optional[Money] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'loan_id': self.loan_id,
            'title': self.title,
            'carat': self.carat,
            'quantity': self.quantity,
            'gross_weight': str(self.gross_weight),
            'net_weight': str(self.net_weight),
            'currency': self.loan_amount.currency.code if self.loan_amount else None,
            'loan_amount': _money_str(self.loan_amount),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GoldLoanItem':
        loan_amount = None
        if data.get('loan_amount') is not None:
            loan_amount = Money(Decimal(data['loan_amount']), Currency.from_code(data['currency']))
        return cls(
            id=data['id'],
            **_timestamps(data),
            loan_id=data['loan_id'],
            title=data['title'],
            carat=data['carat'],
            quantity=data['quantity'],
            gross_weight=Decimal(data['gross_weight']),
            net_weight=Decimal(data['net_weight']),
            loan_amount=loan_amount,
        )
