"""
Pydantic schemas for API requests and JSON shapes for responses

Request bodies use camelCase names on the wire. Responses surface money as
plain numbers.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..calculator import LoanQuote
from ..currency import Money
from ..loans import ClosureRequest, GoldItemInput, LoanCreate, LoanUpdate, PaymentEdit, PaymentRequest
from ..models import GoldLoanItem, Installment, Loan, LoanType, PaymentMethod
from ..month_locks import MonthlySnapshot
from ..schedule import EMIFrequency, ScheduleDate


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def floats_as_text(cls, data: Any) -> Any:
        # JSON numbers reach Decimal fields through their text form, never binary float
        if isinstance(data, dict):
            return {k: str(v) if isinstance(v, float) else v for k, v in data.items()}
        return data


_timestamp = TypeAdapter(datetime)


def _date_part(value: Any) -> Any:
    """
    Reduce a full ISO timestamp to a calendar date

    The date is read in the timestamp's own offset, so
    "2025-04-01T00:00:00+05:30" is 1 April. Naive and "Z" timestamps are
    taken as written, in UTC. Date-only strings pass through unchanged.
    """
    if isinstance(value, str) and len(value) > 10:
        try:
            return _timestamp.validate_python(value).date()
        except ValidationError:
            raise ValueError("Invalid date or timestamp")
    return value


class ScheduleDateModel(CamelModel):
    month: int = Field(..., ge=1, le=12)
    day: int = Field(..., ge=1, le=31)


class PaymentScheduleModel(CamelModel):
    dates: List[ScheduleDateModel] = Field(default_factory=list)


class GoldItemModel(CamelModel):
    title: str = Field(..., min_length=1)
    carat: int = Field(..., gt=0, le=24)
    quantity: int = Field(1, gt=0)
    gross_weight: Decimal = Field(..., ge=0, description="Grams")
    net_weight: Decimal = Field(..., ge=0, description="Grams")
    loan_amount: Optional[Decimal] = Field(None, ge=0)

    def to_input(self) -> GoldItemInput:
        return GoldItemInput(
            title=self.title,
            carat=self.carat,
            quantity=self.quantity,
            gross_weight=self.gross_weight,
            net_weight=self.net_weight,
            loan_amount=self.loan_amount
        )


class CustomEMIModel(CamelModel):
    installment_number: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0)


class LoanCreateRequest(CamelModel):
    loan_type: LoanType
    institution: str = Field(..., min_length=1)
    account_holder_name: str = ""
    principal_amount: Decimal = Field(..., gt=0)
    interest_rate: Decimal = Field(..., ge=0, le=100)
    tenure: Optional[int] = Field(None, gt=0)
    emi_amount: Optional[Decimal] = Field(None, gt=0)
    emi_frequency: EMIFrequency = EMIFrequency.MONTHLY
    start_date: date
    payment_schedule: Optional[PaymentScheduleModel] = None
    account_number: Optional[str] = None
    description: Optional[str] = None
    currency: str = "INR"
    gold_items: Optional[List[GoldItemModel]] = None
    custom_emis: Optional[List[CustomEMIModel]] = Field(None, alias="customEMIs")

    @field_validator("start_date", mode="before")
    @classmethod
    def start_date_only(cls, value: Any) -> Any:
        return _date_part(value)

    def _fields(self) -> Dict[str, Any]:
        dates = self.payment_schedule.dates if self.payment_schedule else []
        return dict(
            loan_type=self.loan_type,
            institution=self.institution,
            principal_amount=self.principal_amount,
            interest_rate=self.interest_rate,
            start_date=self.start_date,
            tenure=self.tenure,
            emi_amount=self.emi_amount,
            emi_frequency=self.emi_frequency,
            payment_schedule=[ScheduleDate(d.month, d.day) for d in dates],
            account_holder_name=self.account_holder_name,
            account_number=self.account_number,
            description=self.description,
            currency=self.currency,
            gold_items=[item.to_input() for item in self.gold_items] if self.gold_items is not None else None,
            custom_emis={e.installment_number: e.amount for e in self.custom_emis or []}
        )

    def to_create(self) -> LoanCreate:
        return LoanCreate(**self._fields())


class LoanUpdateRequest(LoanCreateRequest):
    is_active: Optional[bool] = None

    def to_update(self) -> LoanUpdate:
        return LoanUpdate(**self._fields(), is_active=self.is_active)


class PaymentRequestModel(CamelModel):
    paid_amount: Decimal = Field(..., gt=0)
    paid_date: date
    principal_paid: Optional[Decimal] = Field(None, ge=0)
    interest_paid: Optional[Decimal] = Field(None, ge=0)
    late_fee: Optional[Decimal] = Field(None, ge=0)
    payment_method: PaymentMethod
    payment_notes: Optional[str] = None

    @field_validator("paid_date", mode="before")
    @classmethod
    def paid_date_only(cls, value: Any) -> Any:
        return _date_part(value)

    def to_payment(self, request_type=PaymentRequest) -> PaymentRequest:
        return request_type(
            paid_amount=self.paid_amount,
            paid_date=self.paid_date,
            payment_method=self.payment_method,
            principal_paid=self.principal_paid,
            interest_paid=self.interest_paid,
            late_fee=self.late_fee,
            payment_notes=self.payment_notes
        )

    def to_edit(self) -> PaymentEdit:
        return self.to_payment(PaymentEdit)


class ClosureRequestModel(CamelModel):
    paid_amount: Decimal = Field(..., gt=0)
    paid_date: date
    payment_method: PaymentMethod
    payment_notes: Optional[str] = None
    preclosure_charges: Decimal = Field(Decimal('0'), ge=0)
    additional_interest: Decimal = Field(Decimal('0'), ge=0)

    @field_validator("paid_date", mode="before")
    @classmethod
    def paid_date_only(cls, value: Any) -> Any:
        return _date_part(value)

    def to_closure(self) -> ClosureRequest:
        return ClosureRequest(
            paid_amount=self.paid_amount,
            paid_date=self.paid_date,
            payment_method=self.payment_method,
            payment_notes=self.payment_notes,
            preclosure_charges=self.preclosure_charges,
            additional_interest=self.additional_interest
        )


class CalculatorRequest(CamelModel):
    principal_amount: Decimal = Field(..., gt=0)
    interest_rate: Decimal = Field(..., ge=0, le=100)
    emi_frequency: EMIFrequency = EMIFrequency.MONTHLY
    tenure: Optional[int] = Field(None, gt=0)
    emi_amount: Optional[Decimal] = Field(None, gt=0)
    currency: str = "INR"


class MonthRequest(CamelModel):
    year: int = Field(..., ge=1900, le=9999)
    month: int = Field(..., ge=1, le=12)


class ReopenMonthRequest(MonthRequest):
    user_id: str = Field(..., min_length=1)


# Response shapes

def _num(value: Optional[Money]) -> Optional[float]:
    return value.to_number() if value is not None else None


def _iso(value: Optional[Any]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def installment_json(emi: Installment) -> Dict[str, Any]:
    return {
        "id": emi.id,
        "loanId": emi.loan_id,
        "installmentNumber": emi.installment_number,
        "dueDate": emi.due_date.isoformat(),
        "emiAmount": _num(emi.emi_amount),
        "isPaid": emi.is_paid,
        "paidAmount": _num(emi.paid_amount),
        "paidDate": _iso(emi.paid_date),
        "principalPaid": _num(emi.principal_paid),
        "interestPaid": _num(emi.interest_paid),
        "lateFee": _num(emi.late_fee),
        "paymentMethod": emi.payment_method.value if emi.payment_method else None,
        "paymentNotes": emi.payment_notes,
    }


def gold_item_json(item: GoldLoanItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "title": item.title,
        "carat": item.carat,
        "quantity": item.quantity,
        "grossWeight": float(item.gross_weight),
        "netWeight": float(item.net_weight),
        "loanAmount": _num(item.loan_amount),
    }


def loan_json(
    loan: Loan,
    emis: Optional[List[Installment]] = None,
    gold_items: Optional[List[GoldLoanItem]] = None
) -> Dict[str, Any]:
    result = {
        "id": loan.id,
        "userId": loan.user_id,
        "loanType": loan.loan_type.value,
        "institution": loan.institution,
        "accountHolderName": loan.account_holder_name,
        "currency": loan.currency.code,
        "principalAmount": _num(loan.principal_amount),
        "interestRate": float(loan.interest_rate),
        "tenure": loan.tenure,
        "emiAmount": _num(loan.emi_amount),
        "emiFrequency": loan.emi_frequency.value,
        "paymentSchedule": {"dates": [d.to_dict() for d in loan.payment_schedule]} if loan.payment_schedule else None,
        "startDate": loan.start_date.isoformat(),
        "currentOutstanding": _num(loan.current_outstanding),
        "totalPaid": _num(loan.total_paid),
        "isClosed": loan.is_closed,
        "closedAt": _iso(loan.closed_at),
        "isActive": loan.is_active,
        "preclosureCharges": _num(loan.preclosure_charges),
        "additionalInterest": _num(loan.additional_interest),
        "accountNumber": loan.account_number,
        "description": loan.description,
        "createdAt": loan.created_at.isoformat(),
        "updatedAt": loan.updated_at.isoformat(),
    }
    if emis is not None:
        result["emis"] = [installment_json(emi) for emi in emis]
    if gold_items is not None:
        result["goldItems"] = [gold_item_json(item) for item in gold_items]
    return result


def snapshot_json(snapshot: MonthlySnapshot) -> Dict[str, Any]:
    return {
        "id": snapshot.id,
        "userId": snapshot.user_id,
        "year": snapshot.year,
        "month": snapshot.month,
        "totalEmiDue": _num(snapshot.total_emi_due),
        "totalEmiPaid": _num(snapshot.total_emi_paid),
        "emisPaidCount": snapshot.emis_paid_count,
        "totalOutstanding": _num(snapshot.total_outstanding),
        "isClosed": snapshot.is_closed,
        "closedAt": _iso(snapshot.closed_at),
    }


def quote_json(quote: LoanQuote) -> Dict[str, Any]:
    return {
        "emiAmount": _num(quote.emi_amount),
        "tenure": quote.tenure,
        "totalInterest": _num(quote.total_interest),
        "totalPayment": _num(quote.total_payment),
    }
