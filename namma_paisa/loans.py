"""
Loan Management Module

Loan lifecycle on top of the schedule and balance modules: creation with a
generated EMI schedule, edits that regenerate the unpaid tail, single EMI
payments (record, edit, reverse) and early closure.

Every operation takes the caller's RequestContext. A loan the caller cannot
access is reported exactly like a missing one.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .audit import AuditEventType, AuditTrail
from .balances import (
    adjust_payment, apply_payment, close_early, mark_closed, reopen,
    reverse_payment, should_auto_close, split_closure
)
from .calculator import auto_calculate
from .context import RequestContext, Role
from .currency import Currency, Money
from .errors import (
    InstallmentStateError, LoanClosedError, NoUnpaidInstallmentsError,
    NotFoundError, ValidationError
)
from .logging_config import get_logger, log_action
from .models import (
    EMIS_TABLE, GOLD_ITEMS_TABLE, LOANS_TABLE,
    GoldLoanItem, Installment, Loan, LoanType, PaymentMethod
)
from .month_locks import MonthLockManager
from .schedule import EMIFrequency, PaymentSchedule, ScheduleDate, build_installments, schedule_changed
from .storage import StorageInterface


logger = get_logger("namma_paisa.loans")


@dataclass
class GoldItemInput:
    title: str
    carat: int
    quantity: int
    gross_weight: Decimal
    net_weight: Decimal
    loan_amount: Optional[Decimal] = None


@dataclass
class LoanCreate:
    """Fields accepted when creating a loan; tenure or emi_amount may be derived"""
    loan_type: LoanType
    institution: str
    principal_amount: Decimal
    interest_rate: Decimal
    start_date: date
    tenure: Optional[int] = None
    emi_amount: Optional[Decimal] = None
    emi_frequency: EMIFrequency = EMIFrequency.MONTHLY
    payment_schedule: List[ScheduleDate] = field(default_factory=list)
    account_holder_name: str = ""
    account_number: Optional[str] = None
    description: Optional[str] = None
    currency: str = "INR"
    gold_items: Optional[List[GoldItemInput]] = None
    custom_emis: Dict[int, Decimal] = field(default_factory=dict)  # installment number -> amount


@dataclass
class LoanUpdate(LoanCreate):
    """Full replacement of a loan's editable fields (currency is fixed at creation)"""
    is_active: Optional[bool] = None


@dataclass
class PaymentRequest:
    paid_amount: Decimal
    paid_date: date
    payment_method: PaymentMethod
    principal_paid: Optional[Decimal] = None   # defaults to the full paid amount
    interest_paid: Optional[Decimal] = None
    late_fee: Optional[Decimal] = None
    payment_notes: Optional[str] = None


@dataclass
class PaymentEdit(PaymentRequest):
    """Replacement payment details for an already-paid installment"""


@dataclass
class ClosureRequest:
    paid_amount: Decimal
    paid_date: date
    payment_method: PaymentMethod
    payment_notes: Optional[str] = None
    preclosure_charges: Decimal = Decimal('0')
    additional_interest: Decimal = Decimal('0')


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _new_id() -> str:
    return str(uuid.uuid4())


def _non_negative(value: Optional[Decimal], name: str) -> None:
    if value is not None and value < 0:
        raise ValidationError(f"{name} cannot be negative")


class LoanManager:
    """
    Manages loans, their installments and gold collateral
    """

    def __init__(
        self,
        storage: StorageInterface,
        month_locks: MonthLockManager,
        audit_trail: AuditTrail,
        closure_tolerance: Decimal = Decimal('0.01')
    ):
        self.storage = storage
        self.month_locks = month_locks
        self.audit = audit_trail
        self.closure_tolerance = closure_tolerance

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def get_loan(self, ctx: RequestContext, loan_id: str) -> Loan:
        """
        Raises:
            NotFoundError: If the loan does not exist or belongs to someone else
        """
        data = self.storage.load(LOANS_TABLE, loan_id)
        if data is None:
            raise NotFoundError("Loan not found")
        loan = Loan.from_dict(data)
        if not ctx.can_access(loan.user_id):
            raise NotFoundError("Loan not found")
        return loan

    def list_loans(self, ctx: RequestContext, owner_id: Optional[str] = None) -> List[Loan]:
        """A user's loans, newest first; other owners need SUPER_ADMIN"""
        owner = owner_id or ctx.user_id
        if owner != ctx.user_id:
            ctx.require_role(Role.SUPER_ADMIN)
        loans = [Loan.from_dict(d) for d in self.storage.find(LOANS_TABLE, {'user_id': owner})]
        loans.sort(key=lambda loan: loan.created_at, reverse=True)
        return loans

    def get_installments(self, loan_id: str, unpaid_only: bool = False) -> List[Installment]:
        """Installments of a loan in due-date order"""
        filters = {'loan_id': loan_id}
        if unpaid_only:
            filters['is_paid'] = False
        installments = [Installment.from_dict(d) for d in self.storage.find(EMIS_TABLE, filters)]
        installments.sort(key=lambda emi: (emi.due_date, emi.installment_number))
        return installments

    def next_installments(self, loan_id: str, count: int = 3) -> List[Installment]:
        return self.get_installments(loan_id, unpaid_only=True)[:count]

    def get_gold_items(self, loan_id: str) -> List[GoldLoanItem]:
        items = [GoldLoanItem.from_dict(d) for d in self.storage.find(GOLD_ITEMS_TABLE, {'loan_id': loan_id})]
        items.sort(key=lambda item: item.created_at)
        return items

    def _get_installment(self, loan: Loan, emi_id: str) -> Installment:
        data = self.storage.load(EMIS_TABLE, emi_id)
        if data is None or data['loan_id'] != loan.id:
            raise NotFoundError("EMI not found")
        return Installment.from_dict(data)

    def upcoming_installments(self, ctx: RequestContext, limit: int = 5) -> List[Tuple[Loan, Installment]]:
        """Earliest unpaid installments across the caller's active loans"""
        upcoming = []
        for loan in self.list_loans(ctx):
            if loan.is_closed or not loan.is_active:
                continue
            upcoming.extend((loan, emi) for emi in self.get_installments(loan.id, unpaid_only=True))
        upcoming.sort(key=lambda pair: (pair[1].due_date, pair[1].installment_number))
        return upcoming[:limit]

    # ------------------------------------------------------------------
    # Create / update / delete
    # ------------------------------------------------------------------

    def _resolve_terms(self, details: LoanCreate, currency: Currency) -> Tuple[int, Money]:
        """Validate the loan's numeric terms and derive tenure or EMI when one is missing"""
        if not details.institution or not details.institution.strip():
            raise ValidationError("Institution is required")
        if details.principal_amount <= 0:
            raise ValidationError("Principal amount must be positive")
        if not Decimal('0') <= details.interest_rate <= Decimal('100'):
            raise ValidationError("Interest rate must be between 0 and 100")
        if details.tenure is not None and details.tenure <= 0:
            raise ValidationError("Tenure must be a positive number of installments")
        if details.emi_amount is not None and details.emi_amount <= 0:
            raise ValidationError("EMI amount must be positive")
        if details.tenure is None and details.emi_amount is None:
            raise ValidationError("Either tenure or EMI amount is required")
        for number, amount in details.custom_emis.items():
            if number <= 0:
                raise ValidationError("Installment numbers start at 1")
            if amount <= 0:
                raise ValidationError("Custom EMI amounts must be positive")
        for item in details.gold_items or []:
            if not item.title or not item.title.strip():
                raise ValidationError("Gold item title is required")
            if item.quantity <= 0:
                raise ValidationError("Gold item quantity must be positive")
            _non_negative(item.gross_weight, "Gross weight")
            _non_negative(item.net_weight, "Net weight")
            _non_negative(item.loan_amount, "Gold item loan amount")

        principal = Money(details.principal_amount, currency)
        emi = Money(details.emi_amount, currency) if details.emi_amount is not None else None
        quote = auto_calculate(
            principal, details.interest_rate, details.emi_frequency,
            tenure=details.tenure, emi_amount=emi
        )
        if quote.tenure <= 0:
            raise ValidationError("EMI amount does not cover the interest for one period")
        return quote.tenure, quote.emi_amount

    def _build_schedule(self, details: LoanCreate) -> PaymentSchedule:
        try:
            return PaymentSchedule.for_frequency(details.emi_frequency, details.payment_schedule)
        except ValueError as e:
            raise ValidationError(str(e))

    def _save_installments(
        self,
        loan: Loan,
        paid_numbers: List[int],
        overrides: Dict[int, Money]
    ) -> int:
        plans = build_installments(
            loan.schedule, loan.start_date, loan.tenure, loan.emi_amount,
            paid_count=len(paid_numbers), overrides=overrides, paid_numbers=paid_numbers
        )
        now = datetime.now(timezone.utc)
        for plan in plans:
            emi = Installment(
                id=_new_id(),
                created_at=now,
                updated_at=now,
                loan_id=loan.id,
                installment_number=plan.installment_number,
                due_date=plan.due_date,
                emi_amount=plan.amount
            )
            self.storage.save(EMIS_TABLE, emi.id, emi.to_dict())
        return len(plans)

    def _replace_gold_items(self, loan: Loan, items: List[GoldItemInput]) -> None:
        self.storage.delete_where(GOLD_ITEMS_TABLE, {'loan_id': loan.id})
        now = datetime.now(timezone.utc)
        for item in items:
            record = GoldLoanItem(
                id=_new_id(),
                created_at=now,
                updated_at=now,
                loan_id=loan.id,
                title=item.title.strip(),
                carat=item.carat,
                quantity=item.quantity,
                gross_weight=item.gross_weight,
                net_weight=item.net_weight,
                loan_amount=Money(item.loan_amount, loan.currency) if item.loan_amount is not None else None
            )
            self.storage.save(GOLD_ITEMS_TABLE, record.id, record.to_dict())

    def create_loan(self, ctx: RequestContext, details: LoanCreate) -> Loan:
        """
        Create a loan and its full EMI schedule

        Args:
            ctx: Caller; becomes the loan's owner
            details: Loan fields, with optional per-installment amount overrides

        Returns:
            The stored Loan

        Raises:
            ValidationError: If any field is out of range
        """
        try:
            currency = Currency.from_code(details.currency)
        except ValueError as e:
            raise ValidationError(str(e))
        tenure, emi_amount = self._resolve_terms(details, currency)
        schedule = self._build_schedule(details)

        now = datetime.now(timezone.utc)
        principal = Money(details.principal_amount, currency)
        loan = Loan(
            id=_new_id(),
            created_at=now,
            updated_at=now,
            user_id=ctx.user_id,
            loan_type=details.loan_type,
            institution=details.institution.strip(),
            account_holder_name=details.account_holder_name,
            principal_amount=principal,
            interest_rate=details.interest_rate,
            tenure=tenure,
            emi_amount=emi_amount,
            emi_frequency=details.emi_frequency,
            payment_schedule=list(schedule.dates),
            start_date=details.start_date,
            current_outstanding=principal,
            account_number=details.account_number,
            description=details.description
        )
        overrides = {n: Money(a, currency) for n, a in details.custom_emis.items()}

        with self.storage.atomic():
            self.storage.save(LOANS_TABLE, loan.id, loan.to_dict())
            created = self._save_installments(loan, [], overrides)
            if details.gold_items:
                self._replace_gold_items(loan, details.gold_items)
            self.audit.log_event(
                AuditEventType.LOAN_CREATED,
                "loan",
                loan.id,
                {
                    'loan_type': loan.loan_type.value,
                    'principal_amount': loan.principal_amount.amount,
                    'tenure': loan.tenure,
                    'emi_amount': loan.emi_amount.amount,
                    'installments': created,
                },
                user_id=ctx.user_id
            )

        log_action(
            logger, "info", f"Created {loan.loan_type.value} loan with {created} installments",
            user_id=ctx.user_id, action="create_loan", resource=loan.id
        )
        return loan

    def update_loan(self, ctx: RequestContext, loan_id: str, details: LoanUpdate) -> Loan:
        """
        Replace a loan's fields, regenerating the unpaid schedule when needed

        A change to the frequency, start date or custom dates deletes every
        unpaid installment and rebuilds the tail after the paid ones. Without
        such a change, custom_emis only re-price matching unpaid installments.
        Paid installments are never touched. Closed loans keep their schedule.
        """
        loan = self.get_loan(ctx, loan_id)
        tenure, emi_amount = self._resolve_terms(details, loan.currency)
        schedule = self._build_schedule(details)
        new_dates = list(schedule.dates)

        regenerate = schedule_changed(
            loan.emi_frequency, loan.start_date, loan.payment_schedule,
            details.emi_frequency, details.start_date, new_dates
        )
        overrides = {n: Money(a, loan.currency) for n, a in details.custom_emis.items()}

        # Outstanding follows a principal correction but never goes negative
        new_principal = Money(details.principal_amount, loan.currency)
        if not loan.is_closed:
            loan.current_outstanding = (
                loan.current_outstanding + (new_principal - loan.principal_amount)
            ).floor_zero()

        loan.loan_type = details.loan_type
        loan.institution = details.institution.strip()
        loan.account_holder_name = details.account_holder_name
        loan.principal_amount = new_principal
        loan.interest_rate = details.interest_rate
        loan.tenure = tenure
        loan.emi_amount = emi_amount
        loan.emi_frequency = details.emi_frequency
        loan.payment_schedule = new_dates
        loan.start_date = details.start_date
        loan.account_number = details.account_number
        loan.description = details.description
        if details.is_active is not None and not loan.is_closed:
            loan.is_active = details.is_active
        loan.touch()

        with self.storage.atomic():
            self.storage.save(LOANS_TABLE, loan.id, loan.to_dict())
            if details.gold_items is not None:
                self._replace_gold_items(loan, details.gold_items)

            if loan.is_closed:
                regenerate = False
            elif regenerate:
                self._regenerate_schedule(ctx, loan, overrides)
            elif overrides:
                self._reprice_unpaid(loan, overrides)

            self.audit.log_event(
                AuditEventType.LOAN_UPDATED,
                "loan",
                loan.id,
                {'schedule_regenerated': regenerate, 'tenure': loan.tenure},
                user_id=ctx.user_id
            )

        log_action(
            logger, "info", "Updated loan",
            user_id=ctx.user_id, action="update_loan", resource=loan.id,
            extra={'schedule_regenerated': regenerate}
        )
        return loan

    def _regenerate_schedule(self, ctx: RequestContext, loan: Loan, overrides: Dict[int, Money]) -> None:
        paid_numbers = [
            d['installment_number']
            for d in self.storage.find(EMIS_TABLE, {'loan_id': loan.id, 'is_paid': True})
        ]
        paid_count = len(paid_numbers)
        removed = self.storage.delete_where(EMIS_TABLE, {'loan_id': loan.id, 'is_paid': False})
        created = self._save_installments(loan, paid_numbers, overrides)
        self.audit.log_event(
            AuditEventType.SCHEDULE_REGENERATED,
            "loan",
            loan.id,
            {'paid_count': paid_count, 'removed': removed, 'created': created},
            user_id=ctx.user_id
        )
        log_action(
            logger, "info", f"Regenerated schedule: {removed} removed, {created} created",
            user_id=ctx.user_id, action="regenerate_schedule", resource=loan.id
        )

    def _reprice_unpaid(self, loan: Loan, overrides: Dict[int, Money]) -> None:
        for emi in self.get_installments(loan.id, unpaid_only=True):
            amount = overrides.get(emi.installment_number)
            if amount is not None and amount != emi.emi_amount:
                emi.emi_amount = amount
                emi.touch()
                self.storage.save(EMIS_TABLE, emi.id, emi.to_dict())

    def delete_loan(self, ctx: RequestContext, loan_id: str) -> None:
        """Delete a loan with its installments and gold items"""
        loan = self.get_loan(ctx, loan_id)
        with self.storage.atomic():
            removed = self.storage.delete_where(EMIS_TABLE, {'loan_id': loan.id})
            self.storage.delete_where(GOLD_ITEMS_TABLE, {'loan_id': loan.id})
            self.storage.delete(LOANS_TABLE, loan.id)
            self.audit.log_event(
                AuditEventType.LOAN_DELETED,
                "loan",
                loan.id,
                {'installments_removed': removed, 'owner_id': loan.user_id},
                user_id=ctx.user_id
            )
        log_action(
            logger, "info", "Deleted loan",
            user_id=ctx.user_id, action="delete_loan", resource=loan.id
        )

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    @staticmethod
    def _payment_split(payment: PaymentRequest, currency: Currency) -> Tuple[Money, Money, Money, Optional[Money]]:
        if payment.paid_amount <= 0:
            raise ValidationError("Paid amount must be positive")
        _non_negative(payment.principal_paid, "Principal paid")
        _non_negative(payment.interest_paid, "Interest paid")
        _non_negative(payment.late_fee, "Late fee")

        paid = Money(payment.paid_amount, currency)
        principal = paid if payment.principal_paid is None else Money(payment.principal_paid, currency)
        interest = Money(payment.interest_paid or Decimal('0'), currency)
        late_fee = Money(payment.late_fee, currency) if payment.late_fee is not None else None
        return paid, principal, interest, late_fee

    def record_payment(
        self,
        ctx: RequestContext,
        loan_id: str,
        emi_id: str,
        payment: PaymentRequest
    ) -> Tuple[Installment, Loan]:
        """
        Mark one installment paid and fold it into the loan's aggregates

        The loan closes itself when nothing is outstanding or this was the
        last unpaid installment.

        Returns:
            (updated installment, updated loan)

        Raises:
            NotFoundError: If the loan or installment is missing
            InstallmentStateError: If the installment is already paid
            MonthLockedError: If the payment date is in a closed month
        """
        loan = self.get_loan(ctx, loan_id)
        emi = self._get_installment(loan, emi_id)
        if emi.is_paid:
            raise InstallmentStateError("EMI already paid")
        paid, principal, interest, late_fee = self._payment_split(payment, loan.currency)
        self.month_locks.validate_month_not_closed(loan.user_id, payment.paid_date, "record this EMI payment")

        emi.mark_paid(
            paid_amount=paid,
            paid_date=payment.paid_date,
            principal_paid=principal,
            interest_paid=interest,
            payment_method=payment.payment_method,
            late_fee=late_fee,
            payment_notes=payment.payment_notes
        )
        unpaid_remaining = len(self.storage.find(EMIS_TABLE, {'loan_id': loan.id, 'is_paid': False})) - 1

        balance = apply_payment(loan.balance, paid, principal)
        if should_auto_close(balance, unpaid_remaining):
            balance = mark_closed(balance, _today())
        else:
            balance = reopen(balance)
        loan.apply_balance(balance)

        with self.storage.atomic():
            self.storage.save(EMIS_TABLE, emi.id, emi.to_dict())
            self.storage.save(LOANS_TABLE, loan.id, loan.to_dict())
            self.audit.log_event(
                AuditEventType.EMI_PAID,
                "emi",
                emi.id,
                {
                    'loan_id': loan.id,
                    'installment_number': emi.installment_number,
                    'paid_amount': paid.amount,
                    'principal_paid': principal.amount,
                    'loan_closed': loan.is_closed,
                },
                user_id=ctx.user_id
            )

        log_action(
            logger, "info", f"Recorded payment of {paid.to_string()} for EMI #{emi.installment_number}",
            user_id=ctx.user_id, action="record_payment", resource=emi.id,
            extra={'loan_id': loan.id, 'loan_closed': loan.is_closed}
        )
        return emi, loan

    def edit_payment(
        self,
        ctx: RequestContext,
        loan_id: str,
        emi_id: str,
        edit: PaymentEdit
    ) -> Tuple[Installment, Loan]:
        """
        Replace the payment details of a paid installment

        The loan moves by the difference between the new and old paid amounts.
        Both the original and the new payment dates must be in open months.
        """
        loan = self.get_loan(ctx, loan_id)
        emi = self._get_installment(loan, emi_id)
        if not emi.is_paid:
            raise InstallmentStateError("Cannot edit unpaid EMI. Use the pay EMI feature instead.")
        paid, principal, interest, late_fee = self._payment_split(edit, loan.currency)
        self.month_locks.validate_month_not_closed(loan.user_id, emi.paid_date, "edit this EMI payment")
        self.month_locks.validate_month_not_closed(loan.user_id, edit.paid_date, "record this EMI payment")

        old_paid = emi.paid_amount
        emi.mark_paid(
            paid_amount=paid,
            paid_date=edit.paid_date,
            principal_paid=principal,
            interest_paid=interest,
            payment_method=edit.payment_method,
            late_fee=late_fee,
            payment_notes=edit.payment_notes
        )
        loan.apply_balance(adjust_payment(loan.balance, old_paid, paid))

        with self.storage.atomic():
            self.storage.save(EMIS_TABLE, emi.id, emi.to_dict())
            self.storage.save(LOANS_TABLE, loan.id, loan.to_dict())
            self.audit.log_event(
                AuditEventType.EMI_PAYMENT_EDITED,
                "emi",
                emi.id,
                {'loan_id': loan.id, 'old_paid_amount': old_paid.amount, 'new_paid_amount': paid.amount},
                user_id=ctx.user_id
            )

        log_action(
            logger, "info", f"Edited payment for EMI #{emi.installment_number}",
            user_id=ctx.user_id, action="edit_payment", resource=emi.id,
            extra={'loan_id': loan.id}
        )
        return emi, loan

    def reverse_payment(self, ctx: RequestContext, loan_id: str, emi_id: str) -> Tuple[Installment, Loan]:
        """
        Return a paid installment to unpaid and back its amount out of the loan

        A loan that was closed is reopened, since it has an unpaid installment again.

        Raises:
            InstallmentStateError: If the installment is not paid
        """
        loan = self.get_loan(ctx, loan_id)
        emi = self._get_installment(loan, emi_id)
        if not emi.is_paid:
            raise InstallmentStateError("EMI is not paid. Cannot delete payment that doesn't exist.")

        paid = emi.paid_amount or Money.zero(loan.currency)
        emi.clear_payment()
        balance = reverse_payment(loan.balance, paid)
        was_closed = balance.is_closed
        if was_closed:
            balance = reopen(balance)
        loan.apply_balance(balance)

        with self.storage.atomic():
            self.storage.save(EMIS_TABLE, emi.id, emi.to_dict())
            self.storage.save(LOANS_TABLE, loan.id, loan.to_dict())
            self.audit.log_event(
                AuditEventType.EMI_PAYMENT_REVERSED,
                "emi",
                emi.id,
                {'loan_id': loan.id, 'reversed_amount': paid.amount, 'loan_reopened': was_closed},
                user_id=ctx.user_id
            )

        log_action(
            logger, "info", f"Reversed payment of {paid.to_string()} for EMI #{emi.installment_number}",
            user_id=ctx.user_id, action="reverse_payment", resource=emi.id,
            extra={'loan_id': loan.id, 'loan_reopened': was_closed}
        )
        return emi, loan

    # ------------------------------------------------------------------
    # Early closure
    # ------------------------------------------------------------------

    def close_loan(self, ctx: RequestContext, loan_id: str, request: ClosureRequest) -> Loan:
        """
        Settle every unpaid installment with one lump payment and close the loan

        Each unpaid installment is marked paid at its scheduled amount, split
        into principal and interest against the remaining principal. A paid
        amount that differs from the unpaid total plus charges is logged and
        accepted. All writes happen in one transaction.

        Args:
            ctx: Caller
            loan_id: Loan to close
            request: Lump payment, date, method and any charges

        Returns:
            The closed Loan

        Raises:
            NotFoundError: If the loan is missing
            LoanClosedError: If the loan is already closed
            MonthLockedError: If the paid date is in a closed month
            NoUnpaidInstallmentsError: If there is nothing left to settle
        """
        if request.paid_amount <= 0:
            raise ValidationError("Paid amount must be positive")
        _non_negative(request.preclosure_charges, "Preclosure charges")
        _non_negative(request.additional_interest, "Additional interest")

        loan = self.get_loan(ctx, loan_id)
        if loan.is_closed:
            raise LoanClosedError("Loan is already closed")
        self.month_locks.validate_month_not_closed(loan.user_id, request.paid_date, "close this loan")

        unpaid = self.get_installments(loan.id, unpaid_only=True)
        if not unpaid:
            raise NoUnpaidInstallmentsError("No unpaid EMIs to close")

        currency = loan.currency
        paid = Money(request.paid_amount, currency)
        preclosure = Money(request.preclosure_charges, currency)
        additional = Money(request.additional_interest, currency)

        expected = Money.total((emi.emi_amount for emi in unpaid), currency) + preclosure + additional
        if abs(paid - expected).amount > self.closure_tolerance:
            log_action(
                logger, "warning",
                f"Closure amount {paid.to_string()} differs from expected {expected.to_string()}",
                user_id=ctx.user_id, action="close_loan", resource=loan.id
            )

        splits = split_closure(loan.current_outstanding, loan.interest_rate, [emi.emi_amount for emi in unpaid])
        notes = f"Loan closed early. {request.payment_notes or ''}".strip()

        with self.storage.atomic():
            for emi, split in zip(unpaid, splits):
                emi.mark_paid(
                    paid_amount=emi.emi_amount,
                    paid_date=request.paid_date,
                    principal_paid=split.principal,
                    interest_paid=split.interest,
                    payment_method=request.payment_method,
                    late_fee=Money.zero(currency),
                    payment_notes=notes
                )
                self.storage.save(EMIS_TABLE, emi.id, emi.to_dict())

            loan.apply_balance(close_early(loan.balance, paid, preclosure, additional, request.paid_date))
            if preclosure.is_positive():
                loan.preclosure_charges = preclosure
            if additional.is_positive():
                loan.additional_interest = additional
            self.storage.save(LOANS_TABLE, loan.id, loan.to_dict())

            self.audit.log_event(
                AuditEventType.LOAN_CLOSED,
                "loan",
                loan.id,
                {
                    'paid_amount': paid.amount,
                    'installments_settled': len(unpaid),
                    'preclosure_charges': preclosure.amount,
                    'additional_interest': additional.amount,
                    'closed_at': request.paid_date,
                },
                user_id=ctx.user_id
            )

        log_action(
            logger, "info", f"Closed loan early, settling {len(unpaid)} EMIs",
            user_id=ctx.user_id, action="close_loan", resource=loan.id,
            extra={'paid_amount': str(paid.amount)}
        )
        return loan
