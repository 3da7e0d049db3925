"""
Timesheet Domain Models.

Frozen snapshots of period finalizations, their approval history, and the
pay element summaries settlement writes for payroll.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from hr_engines.settlement import PayElement

_PENDING_PREFIX = "pending_level_"


class FinalizationStatus(str, Enum):
    """Fixed finalization statuses.  Pending statuses are per level, see ``pending_status``."""

    APPROVED_FOR_PAYROLL = "approved_for_payroll"
    REJECTED = "rejected"
    SENT_TO_PAYROLL = "sent_to_payroll"


class TimesheetAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    RETURN = "return"


class SettlementRequestStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


def pending_status(level: int) -> str:
    """Status string for a finalization waiting at ``level``."""
    if level < 1:
        raise ValueError(f"approval level must be >= 1, got {level}")
    return f"{_PENDING_PREFIX}{level}"


def is_pending_status(status: str) -> bool:
    return status.startswith(_PENDING_PREFIX)


@dataclass(frozen=True)
class PeriodFinalization:
    """A timekeeper's submission of one company pay period for approval."""

    id: UUID
    company_id: UUID
    period_start: date
    period_end: date
    employee_ids: tuple[UUID, ...]
    submitted_by: UUID
    submitted_at: datetime
    current_approval_level: int
    max_approval_levels: int
    workflow_status: str
    version: int
    current_approver_id: UUID | None = None
    rejected_by: UUID | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    approved_at: datetime | None = None
    payroll_summary_created_at: datetime | None = None
    sent_to_payroll_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return is_pending_status(self.workflow_status)

    @property
    def is_settled(self) -> bool:
        return self.payroll_summary_created_at is not None


@dataclass(frozen=True)
class ApprovalHistoryEntry:
    """One append-only row of a finalization's approval trail."""

    id: UUID
    finalization_id: UUID
    approval_level: int
    approver_id: UUID
    action: TimesheetAction
    acted_at: datetime
    sequence: int
    comment: str | None = None


@dataclass(frozen=True)
class PayElementSummaryRecord:
    """A persisted pay element line as the payroll collaborator reads it."""

    id: UUID
    finalization_id: UUID
    employee_id: UUID
    pay_element: PayElement
    hours: Decimal
    rate: Decimal
    multiplier: Decimal
    gross_amount: Decimal
    source_key: str
    source_records: tuple[dict[str, Any], ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ApprovalOutcome:
    """What ``process_approval`` did."""

    finalization: PeriodFinalization
    history_entry: ApprovalHistoryEntry
    settled: bool = False
    summary_count: int = 0
