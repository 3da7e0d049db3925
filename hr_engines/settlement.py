"""
hr_engines.settlement -- Timesheet payroll settlement calculator.

Responsibility:
    Turn the approved attendance and leave records of one period
    finalization into priced pay-element lines ready for payroll.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The settlement service
    loads inputs and persists the returned lines.

Invariants enforced:
    - Overtime banding is a fixed 4 / 4 / unbounded hour split per time
      entry.  Only the tier multipliers are configurable.
    - regular = total - overtime per entry; overtime above total is an error.
    - gross = hours x rate x multiplier, rounded half-up to cents.
    - Leave lines pass the upstream gross amount through unchanged; the
      multiplier is payment_percentage / 100.
    - Output order is deterministic: employees by id, hour elements in
      tier order, then leave lines by start date and transaction id.

Failure modes:
    - ValueError for negative hours, overtime > total, or a missing rate
      for an employee with hours.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from hr_engines.tracer import traced_engine

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")
CENTS = Decimal("0.01")

# Width of overtime tiers 1 and 2; tier 3 takes everything above.
TIER_BAND_HOURS = Decimal("4")


class PayElement(str, Enum):
    """Compensation categories written to pay element summaries."""

    REGULAR_TIME = "regular_time"
    OVERTIME_1_5X = "overtime_1_5x"
    OVERTIME_2X = "overtime_2x"
    OVERTIME_3X = "overtime_3x"
    PAID_LEAVE = "paid_leave"
    SICK_LEAVE = "sick_leave"
    UNPAID_DEDUCTION = "unpaid_deduction"
    OTHER = "other"


HOUR_ELEMENTS: tuple[PayElement, ...] = (
    PayElement.REGULAR_TIME,
    PayElement.OVERTIME_1_5X,
    PayElement.OVERTIME_2X,
    PayElement.OVERTIME_3X,
)

# Leave transaction types recognised upstream, by pay element.
_LEAVE_TYPE_ELEMENTS: dict[str, PayElement] = {
    "paid_leave": PayElement.PAID_LEAVE,
    "annual_leave": PayElement.PAID_LEAVE,
    "vacation": PayElement.PAID_LEAVE,
    "sick_leave": PayElement.SICK_LEAVE,
    "sick": PayElement.SICK_LEAVE,
    "unpaid_deduction": PayElement.UNPAID_DEDUCTION,
    "unpaid_leave": PayElement.UNPAID_DEDUCTION,
    "unpaid": PayElement.UNPAID_DEDUCTION,
}


def leave_pay_element(transaction_type: str) -> PayElement:
    """Pay element for a leave transaction type; unknown types map to OTHER."""
    return _LEAVE_TYPE_ELEMENTS.get(transaction_type.strip().lower(), PayElement.OTHER)


@dataclass(frozen=True)
class OvertimeMultipliers:
    """Per-tier overtime multipliers (company-configurable)."""

    tier1: Decimal = Decimal("1.5")
    tier2: Decimal = Decimal("2.0")
    tier3: Decimal = Decimal("3.0")

    def __post_init__(self) -> None:
        for name in ("tier1", "tier2", "tier3"):
            if getattr(self, name) <= ZERO:
                raise ValueError(f"{name} multiplier must be positive")

    def for_element(self, element: PayElement) -> Decimal:
        return {
            PayElement.REGULAR_TIME: ONE,
            PayElement.OVERTIME_1_5X: self.tier1,
            PayElement.OVERTIME_2X: self.tier2,
            PayElement.OVERTIME_3X: self.tier3,
        }[element]


DEFAULT_MULTIPLIERS = OvertimeMultipliers()


@dataclass(frozen=True)
class OvertimeSplit:
    tier1: Decimal
    tier2: Decimal
    tier3: Decimal

    @property
    def total(self) -> Decimal:
        return self.tier1 + self.tier2 + self.tier3


def split_overtime(overtime_hours: Decimal) -> OvertimeSplit:
    """Band overtime hours into 4 / 4 / rest."""
    if overtime_hours < ZERO:
        raise ValueError(f"overtime_hours must be non-negative, got {overtime_hours}")
    tier1 = min(overtime_hours, TIER_BAND_HOURS)
    tier2 = min(overtime_hours - tier1, TIER_BAND_HOURS)
    tier3 = overtime_hours - tier1 - tier2
    return OvertimeSplit(tier1=tier1, tier2=tier2, tier3=tier3)


@dataclass(frozen=True)
class TimeEntryInput:
    """One approved time-clock entry with hours already resolved."""

    entry_id: UUID
    employee_id: UUID
    work_date: date
    total_hours: Decimal
    overtime_hours: Decimal = ZERO

    def decompose(self) -> dict[PayElement, Decimal]:
        """Hours per hour element for this entry."""
        if self.total_hours < ZERO:
            raise ValueError(f"Entry {self.entry_id}: total_hours is negative")
        if self.overtime_hours > self.total_hours:
            raise ValueError(
                f"Entry {self.entry_id}: overtime {self.overtime_hours} "
                f"exceeds total {self.total_hours}"
            )
        split = split_overtime(self.overtime_hours)
        return {
            PayElement.REGULAR_TIME: self.total_hours - self.overtime_hours,
            PayElement.OVERTIME_1_5X: split.tier1,
            PayElement.OVERTIME_2X: split.tier2,
            PayElement.OVERTIME_3X: split.tier3,
        }


@dataclass(frozen=True)
class LeaveInput:
    """A pre-priced leave payroll transaction."""

    transaction_id: UUID
    employee_id: UUID
    transaction_type: str
    start_date: date
    hours: Decimal
    rate: Decimal
    payment_percentage: Decimal
    gross_amount: Decimal


@dataclass(frozen=True)
class PayElementLine:
    """One priced summary row."""

    employee_id: UUID
    pay_element: PayElement
    hours: Decimal
    rate: Decimal
    multiplier: Decimal
    gross_amount: Decimal
    source_key: str
    source_records: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class SettlementResult:
    finalization_id: UUID
    lines: tuple[PayElementLine, ...] = field(default_factory=tuple)

    @property
    def total_gross(self) -> Decimal:
        return sum((line.gross_amount for line in self.lines), ZERO)

    def lines_for(self, employee_id: UUID) -> tuple[PayElementLine, ...]:
        return tuple(line for line in self.lines if line.employee_id == employee_id)


def price(hours: Decimal, rate: Decimal, multiplier: Decimal) -> Decimal:
    return (hours * rate * multiplier).quantize(CENTS, rounding=ROUND_HALF_UP)


def _hour_lines(
    employee_id: UUID,
    entries: list[TimeEntryInput],
    rate: Decimal,
    multipliers: OvertimeMultipliers,
) -> list[PayElementLine]:
    hours: dict[PayElement, Decimal] = defaultdict(lambda: ZERO)
    sources: dict[PayElement, list[dict[str, Any]]] = defaultdict(list)

    for entry in sorted(entries, key=lambda e: (e.work_date, str(e.entry_id))):
        for element, element_hours in entry.decompose().items():
            if element_hours <= ZERO:
                continue
            hours[element] += element_hours
            sources[element].append({
                "id": str(entry.entry_id),
                "hours": str(element_hours),
                "date": entry.work_date.isoformat(),
            })

    lines = []
    for element in HOUR_ELEMENTS:
        if hours[element] <= ZERO:
            continue
        multiplier = multipliers.for_element(element)
        lines.append(PayElementLine(
            employee_id=employee_id,
            pay_element=element,
            hours=hours[element],
            rate=rate,
            multiplier=multiplier,
            gross_amount=price(hours[element], rate, multiplier),
            source_key="time_entries",
            source_records=tuple(sources[element]),
        ))
    return lines


def leave_source_key(transaction_id: UUID) -> str:
    """Summary ``source_key`` for a leave transaction; one row per transaction."""
    return f"leave:{transaction_id}"


def _leave_line(txn: LeaveInput) -> PayElementLine:
    return PayElementLine(
        employee_id=txn.employee_id,
        pay_element=leave_pay_element(txn.transaction_type),
        hours=txn.hours,
        rate=txn.rate,
        multiplier=txn.payment_percentage / HUNDRED,
        gross_amount=txn.gross_amount,
        source_key=leave_source_key(txn.transaction_id),
        source_records=({
            "id": str(txn.transaction_id),
            "hours": str(txn.hours),
            "date": txn.start_date.isoformat(),
            "transaction_type": txn.transaction_type,
        },),
    )


@traced_engine("settlement", "1.0", fingerprint_fields=("finalization_id",))
def calculate_settlement(
    *,
    finalization_id: UUID,
    entries: Iterable[TimeEntryInput],
    rates: Mapping[UUID, Decimal],
    leave_transactions: Iterable[LeaveInput] = (),
    multipliers: OvertimeMultipliers = DEFAULT_MULTIPLIERS,
) -> SettlementResult:
    """Price one finalization's entries and leave transactions.

    Args:
        finalization_id: The period finalization being settled.
        entries: Approved time entries for the covered employees and period.
        rates: Hourly rate per employee.  Required for every employee that
            has entries.
        leave_transactions: Leave payroll transactions overlapping the period.
        multipliers: Overtime tier multipliers for the company.

    Returns:
        SettlementResult with lines in deterministic order.
    """
    by_employee: dict[UUID, list[TimeEntryInput]] = defaultdict(list)
    for entry in entries:
        by_employee[entry.employee_id].append(entry)

    leave_by_employee: dict[UUID, list[LeaveInput]] = defaultdict(list)
    for txn in leave_transactions:
        leave_by_employee[txn.employee_id].append(txn)

    lines: list[PayElementLine] = []
    for employee_id in sorted(set(by_employee) | set(leave_by_employee), key=str):
        employee_entries = by_employee.get(employee_id, [])
        if employee_entries:
            rate = rates.get(employee_id)
            if rate is None:
                raise ValueError(f"No hourly rate for employee {employee_id}")
            lines.extend(_hour_lines(employee_id, employee_entries, rate, multipliers))
        for txn in sorted(
            leave_by_employee.get(employee_id, []),
            key=lambda t: (t.start_date, str(t.transaction_id)),
        ):
            lines.append(_leave_line(txn))

    return SettlementResult(finalization_id=finalization_id, lines=tuple(lines))
