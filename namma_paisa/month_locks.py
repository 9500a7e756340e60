"""
Month Lock Module

A closed month freezes a user's financial entries for that calendar month:
payments and closures dated inside it are rejected. Closing a month also
records a snapshot of the month's EMI figures.
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from .audit import AuditEventType, AuditTrail
from .context import RequestContext, Role
from .currency import Currency, Money
from .errors import BusinessRuleError, MonthLockedError, ValidationError
from .logging_config import get_logger, log_action
from .models import EMIS_TABLE, LOANS_TABLE, Installment, Loan
from .storage import StorageInterface, StorageRecord


SNAPSHOTS_TABLE = "monthly_snapshots"

logger = get_logger("namma_paisa.month_locks")


def month_label(d: date) -> str:
    """e.g. "March 2025" """
    return f"{calendar.month_name[d.month]} {d.year}"


def snapshot_id(user_id: str, year: int, month: int) -> str:
    return f"{user_id}:{year:04d}-{month:02d}"


@dataclass
class MonthlySnapshot(StorageRecord):
    """Per-user month record; is_closed locks the month"""
    user_id: str
    year: int
    month: int
    total_emi_due: Money
    total_emi_paid: Money
    emis_paid_count: int
    total_outstanding: Money
    is_closed: bool = False
    closed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'user_id': self.user_id,
            'year': self.year,
            'month': self.month,
            'currency': self.total_emi_paid.currency.code,
            'total_emi_due': str(self.total_emi_due.amount),
            'total_emi_paid': str(self.total_emi_paid.amount),
            'emis_paid_count': self.emis_paid_count,
            'total_outstanding': str(self.total_outstanding.amount),
            'is_closed': self.is_closed,
            'closed_at': self.closed_at.isoformat() if self.closed_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MonthlySnapshot':
        currency = Currency.from_code(data['currency'])
        closed_at = data.get('closed_at')
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            user_id=data['user_id'],
            year=data['year'],
            month=data['month'],
            total_emi_due=Money(data['total_emi_due'], currency),
            total_emi_paid=Money(data['total_emi_paid'], currency),
            emis_paid_count=data['emis_paid_count'],
            total_outstanding=Money(data['total_outstanding'], currency),
            is_closed=data['is_closed'],
            closed_at=datetime.fromisoformat(closed_at) if closed_at else None,
        )


class MonthLockManager:
    """
    Owns monthly snapshots and answers "is this date locked?" for the
    loan operations.
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        currency: Currency = Currency.INR
    ):
        self.storage = storage
        self.audit = audit_trail
        # Snapshot figures only sum loans held in this currency
        self.currency = currency

    @staticmethod
    def _validate_period(year: int, month: int) -> None:
        if not 1 <= month <= 12:
            raise ValidationError("Month must be between 1 and 12")
        if not 1900 <= year <= 9999:
            raise ValidationError("Year is out of range")

    def get_snapshot(self, user_id: str, year: int, month: int) -> Optional[MonthlySnapshot]:
        data = self.storage.load(SNAPSHOTS_TABLE, snapshot_id(user_id, year, month))
        return MonthlySnapshot.from_dict(data) if data else None

    def is_month_closed(self, user_id: str, d: date) -> bool:
        snapshot = self.get_snapshot(user_id, d.year, d.month)
        return snapshot is not None and snapshot.is_closed

    def validate_month_not_closed(self, user_id: str, d: date, action: str = "perform this action") -> None:
        """
        Raises:
            MonthLockedError: If d falls inside a closed month
        """
        if self.is_month_closed(user_id, d):
            raise MonthLockedError(
                f"Cannot {action} in {month_label(d)} - this month has been closed. "
                f"Please select a future month."
            )

    def calculate_month(self, user_id: str, year: int, month: int) -> MonthlySnapshot:
        """Compute (without saving) the month's EMI figures for a user"""
        zero = Money.zero(self.currency)
        due = paid = outstanding = zero
        paid_count = 0

        for loan_data in self.storage.find(LOANS_TABLE, {'user_id': user_id}):
            loan = Loan.from_dict(loan_data)
            if loan.currency != self.currency:
                continue
            if loan.is_active and not loan.is_closed:
                outstanding = outstanding + loan.current_outstanding

            for emi_data in self.storage.find(EMIS_TABLE, {'loan_id': loan.id}):
                emi = Installment.from_dict(emi_data)
                if (emi.due_date.year, emi.due_date.month) == (year, month):
                    due = due + emi.emi_amount
                if emi.is_paid and (emi.paid_date.year, emi.paid_date.month) == (year, month):
                    paid = paid + emi.paid_amount
                    paid_count += 1

        now = datetime.now(timezone.utc)
        return MonthlySnapshot(
            id=snapshot_id(user_id, year, month),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            year=year,
            month=month,
            total_emi_due=due,
            total_emi_paid=paid,
            emis_paid_count=paid_count,
            total_outstanding=outstanding
        )

    def current_snapshot(self, ctx: RequestContext, year: int, month: int) -> MonthlySnapshot:
        """Stored snapshot for the month, or live figures while it is still open"""
        self._validate_period(year, month)
        snapshot = self.get_snapshot(ctx.user_id, year, month)
        if snapshot is not None and snapshot.is_closed:
            return snapshot
        return self.calculate_month(ctx.user_id, year, month)

    def list_snapshots(self, ctx: RequestContext, user_id: Optional[str] = None) -> List[MonthlySnapshot]:
        """Stored snapshots, newest month first"""
        owner = user_id or ctx.user_id
        if owner != ctx.user_id:
            ctx.require_role(Role.SUPER_ADMIN)
        snapshots = [
            MonthlySnapshot.from_dict(data)
            for data in self.storage.find(SNAPSHOTS_TABLE, {'user_id': owner})
        ]
        snapshots.sort(key=lambda s: (s.year, s.month), reverse=True)
        return snapshots

    def close_month(self, ctx: RequestContext, year: int, month: int) -> MonthlySnapshot:
        """
        Freeze the caller's month and store its figures

        Raises:
            ValidationError: If year/month are out of range
            BusinessRuleError: If the month is already closed
        """
        self._validate_period(year, month)
        existing = self.get_snapshot(ctx.user_id, year, month)
        if existing is not None and existing.is_closed:
            raise BusinessRuleError("Month already closed")

        snapshot = self.calculate_month(ctx.user_id, year, month)
        if existing is not None:
            snapshot.created_at = existing.created_at
        snapshot.is_closed = True
        snapshot.closed_at = datetime.now(timezone.utc)

        with self.storage.atomic():
            self.storage.save(SNAPSHOTS_TABLE, snapshot.id, snapshot.to_dict())
            self.audit.log_event(
                AuditEventType.MONTH_CLOSED,
                "monthly_snapshot",
                snapshot.id,
                {
                    'year': year,
                    'month': month,
                    'total_emi_paid': snapshot.total_emi_paid.amount,
                    'emis_paid_count': snapshot.emis_paid_count,
                },
                user_id=ctx.user_id
            )

        log_action(
            logger, "info", f"Closed month {year:04d}-{month:02d}",
            user_id=ctx.user_id, action="close_month", resource=snapshot.id
        )
        return snapshot

    def reopen_month(self, ctx: RequestContext, user_id: str, year: int, month: int) -> MonthlySnapshot:
        """
        Unlock a closed month (SUPER_ADMIN only)

        Raises:
            PermissionDeniedError: If the caller is not a super admin
            BusinessRuleError: If the month is not closed
        """
        ctx.require_role(Role.SUPER_ADMIN)
        self._validate_period(year, month)
        snapshot = self.get_snapshot(user_id, year, month)
        if snapshot is None or not snapshot.is_closed:
            raise BusinessRuleError("Month is not closed")

        snapshot.is_closed = False
        snapshot.closed_at = None
        snapshot.touch()

        with self.storage.atomic():
            self.storage.save(SNAPSHOTS_TABLE, snapshot.id, snapshot.to_dict())
            self.audit.log_event(
                AuditEventType.MONTH_REOPENED,
                "monthly_snapshot",
                snapshot.id,
                {'year': year, 'month': month, 'owner_id': user_id},
                user_id=ctx.user_id
            )

        log_action(
            logger, "warning", f"Reopened month {year:04d}-{month:02d} for {user_id}",
            user_id=ctx.user_id, action="reopen_month", resource=snapshot.id
        )
        return snapshot
