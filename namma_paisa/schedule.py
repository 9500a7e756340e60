"""
EMI Schedule Module

Pure functions that turn a loan's cadence into installment due dates and
amounts. Nothing here touches storage; LoanManager persists the result.

Month arithmetic clamps to the last day of the target month
(Jan 31 + 1 month = Feb 28/29). Every due date is computed from the start
date rather than from the previous due date, so one clamp never drifts the
rest of the schedule.
"""

import calendar
import json
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .currency import Money


class EMIFrequency(Enum):
    """Installment cadence as chosen on the loan"""
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    HALF_YEARLY = "HALF_YEARLY"
    ANNUALLY = "ANNUALLY"
    CUSTOM = "CUSTOM"


class ScheduleKind(Enum):
    """Resolved scheduling strategy"""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    HALF_YEARLY = "half_yearly"
    ANNUALLY = "annually"
    CUSTOM_DATES = "custom_dates"


MONTHS_INCREMENT = {
    ScheduleKind.MONTHLY: 1,
    ScheduleKind.QUARTERLY: 3,
    ScheduleKind.HALF_YEARLY: 6,
    ScheduleKind.ANNUALLY: 12,
}

PAYMENTS_PER_YEAR = {
    EMIFrequency.MONTHLY: 12,
    EMIFrequency.QUARTERLY: 4,
    EMIFrequency.HALF_YEARLY: 2,
    EMIFrequency.ANNUALLY: 1,
    EMIFrequency.CUSTOM: 12,  # counted as monthly
}


@dataclass(frozen=True, order=True)
class ScheduleDate:
    """A recurring (month, day) payment date"""
    month: int
    day: int

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise ValueError("Month must be between 1 and 12")
        if not 1 <= self.day <= 31:
            raise ValueError("Day must be between 1 and 31")

    def in_year(self, year: int) -> date:
        """This date in a given year, clamping days past the month's end"""
        last_day = calendar.monthrange(year, self.month)[1]
        return date(year, self.month, min(self.day, last_day))

    def to_dict(self) -> Dict[str, int]:
        return {"month": self.month, "day": self.day}


@dataclass(frozen=True)
class PaymentSchedule:
    """
    Tagged variant over the supported cadences.

    Only CUSTOM_DATES carries dates; the fixed kinds advance by a whole
    number of months from the start date.
    """
    kind: ScheduleKind
    dates: Tuple[ScheduleDate, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.kind == ScheduleKind.CUSTOM_DATES and not self.dates:
            raise ValueError("A custom-dates schedule needs at least one date")
        if self.kind != ScheduleKind.CUSTOM_DATES and self.dates:
            raise ValueError(f"{self.kind.value} schedules do not take dates")

    @classmethod
    def for_frequency(
        cls,
        frequency: EMIFrequency,
        dates: Optional[Iterable[ScheduleDate]] = None
    ) -> 'PaymentSchedule':
        """
        Resolve a loan's frequency and stored dates into a strategy.

        MONTHLY always advances monthly. Any other frequency with dates uses
        those dates; without dates it falls back to a fixed increment, with
        CUSTOM falling back to one month.
        """
        dates = tuple(dates or ())
        if frequency == EMIFrequency.MONTHLY:
            return cls(ScheduleKind.MONTHLY)
        if dates:
            return cls(ScheduleKind.CUSTOM_DATES, dates)
        fallback = {
            EMIFrequency.QUARTERLY: ScheduleKind.QUARTERLY,
            EMIFrequency.HALF_YEARLY: ScheduleKind.HALF_YEARLY,
            EMIFrequency.ANNUALLY: ScheduleKind.ANNUALLY,
            EMIFrequency.CUSTOM: ScheduleKind.MONTHLY,
        }
        return cls(fallback[frequency])

    @property
    def months_increment(self) -> int:
        return MONTHS_INCREMENT[self.kind]


@dataclass(frozen=True)
class InstallmentPlan:
    """One installment to be persisted as unpaid"""
    installment_number: int
    due_date: date
    amount: Money


def add_months(start: date, months: int) -> date:
    """Add months to a date, clamping to the last day of the target month"""
    month = start.month - 1 + months
    year = start.year + month // 12
    month = month % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def first_occurrence(entry: ScheduleDate, start: date) -> date:
    """First date on or after start that falls on entry's (month, day)"""
    candidate = entry.in_year(start.year)
    if candidate < start:
        candidate = entry.in_year(start.year + 1)
    return candidate


def _custom_due_dates(dates: Sequence[ScheduleDate], start: date, first: int, last: int) -> List[date]:
    # Each entry keeps its own base year so Feb 29 style days are re-clamped every year
    anchors = sorted(
        ((first_occurrence(entry, start), entry) for entry in dates),
        key=lambda pair: pair[0]
    )
    per_year = len(anchors)
    due_dates = []
    for index in range(first, last):
        cycle, slot = divmod(index, per_year)
        anchor_date, entry = anchors[slot]
        due_dates.append(entry.in_year(anchor_date.year + cycle))
    return due_dates


def generate_due_dates(
    schedule: PaymentSchedule,
    start_date: date,
    tenure: int,
    paid_count: int = 0
) -> List[date]:
    """
    Due dates for installments paid_count .. tenure-1, ascending.

    The paid history occupies the earliest slots of the cadence, so the
    regenerated tail continues where it left off. Returns an empty list when
    the tenure is already covered.
    """
    paid_count = max(0, paid_count)
    if tenure - paid_count <= 0:
        return []

    if schedule.kind == ScheduleKind.CUSTOM_DATES:
        return _custom_due_dates(schedule.dates, start_date, paid_count, tenure)

    step = schedule.months_increment
    return [add_months(start_date, i * step) for i in range(paid_count, tenure)]


def _free_numbers(taken: Iterable[int], count: int) -> List[int]:
    """The count smallest installment numbers not already held"""
    taken = set(taken)
    numbers = []
    candidate = 1
    while len(numbers) < count:
        if candidate not in taken:
            numbers.append(candidate)
        candidate += 1
    return numbers


def build_installments(
    schedule: PaymentSchedule,
    start_date: date,
    tenure: int,
    default_amount: Money,
    paid_count: int = 0,
    overrides: Optional[Dict[int, Money]] = None,
    paid_numbers: Optional[Iterable[int]] = None
) -> List[InstallmentPlan]:
    """
    Plan the unpaid installments for the remaining tenure

    Args:
        schedule: Resolved cadence
        start_date: Loan start date
        tenure: Total installment count over the loan's life
        default_amount: Installment amount when no override exists
        paid_count: Installments already paid and kept
        overrides: installment number -> amount
        paid_numbers: Numbers held by the kept paid installments; defaults
            to 1 .. paid_count

    Returns:
        Plans in ascending due-date order, numbered with the lowest numbers
        no paid installment holds
    """
    overrides = overrides or {}
    due_dates = generate_due_dates(schedule, start_date, tenure, paid_count)
    if paid_numbers is None:
        paid_numbers = range(1, max(0, paid_count) + 1)
    numbers = _free_numbers(paid_numbers, len(due_dates))
    return [
        InstallmentPlan(
            installment_number=number,
            due_date=due_date,
            amount=overrides.get(number, default_amount)
        )
        for number, due_date in zip(numbers, due_dates)
    ]


def serialize_dates(dates: Optional[Iterable[ScheduleDate]]) -> str:
    """Stable text form of a custom date list, used for change detection"""
    return json.dumps([d.to_dict() for d in (dates or ())], separators=(',', ':'))


def schedule_changed(
    old_frequency: EMIFrequency,
    old_start: date,
    old_dates: Optional[Iterable[ScheduleDate]],
    new_frequency: EMIFrequency,
    new_start: date,
    new_dates: Optional[Iterable[ScheduleDate]]
) -> bool:
    """True when any schedule-affecting field differs"""
    return (
        serialize_dates(old_dates) != serialize_dates(new_dates)
        or old_frequency != new_frequency
        or old_start != new_start
    )
