"""
Timesheet ORM Persistence Models (``hr_modules.timesheet.orm``).

Responsibility:
    SQLAlchemy ORM models for period finalizations, their approval history,
    the approval level table, the settlement inputs (time clock entries,
    compensation, overtime rules, leave payroll transactions), settlement
    requests, and the pay element summaries handed to payroll.

Architecture position:
    **Modules layer** -- persistence companions to the DTOs in
    ``hr_modules.timesheet.models``.  Inherits ``Base``/``TrackedBase``
    from the kernel.

Invariants enforced:
    - An employee sits in at most one open finalization for any given day.
      Enforced by the approval service on submission; the
      (company, period) index only serves that lookup.
    - Finalizations are frozen once ``sent_to_payroll`` (ORM listener).
    - Approval history and pay element summaries are append-only (ORM
      listeners raise ImmutabilityViolationError).
    - One settlement request per finalization (UNIQUE(finalization_id)).
    - Summary rows are unique per (finalization, employee, pay_element,
      source_key), so a repeated settlement is a detectable conflict.
    - Hours, rates and amounts are Decimal (Numeric(38,9)), never float.

Audit relevance:
    Pay element summaries feed payroll directly; the approval history is
    the record of who released the period for payment.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.orm.attributes import get_history

from hr_kernel.db.base import Base, TrackedBase, UUIDString
from hr_kernel.exceptions import ImmutabilityViolationError


# ---------------------------------------------------------------------------
# Approval state
# ---------------------------------------------------------------------------


class TimekeeperPeriodFinalizationModel(Base):
    """
    ORM model for ``PeriodFinalization``.

    Contract:
        Mutated only through the compare-and-swap updates in the timesheet
        services, which bump ``version`` on every change.
    """

    __tablename__ = "timekeeper_period_finalizations"

    __table_args__ = (
        CheckConstraint("period_end >= period_start", name="ck_tpf_period_order"),
        CheckConstraint(
            "current_approval_level >= 1 AND current_approval_level <= max_approval_levels",
            name="ck_tpf_level_in_range",
        ),
        Index("ix_tpf_company_period", "company_id", "period_start", "period_end"),
        Index("ix_tpf_approver_status", "current_approver_id", "workflow_status"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    period_start: Mapped[date] = mapped_column(nullable=False)
    period_end: Mapped[date] = mapped_column(nullable=False)
    employee_ids: Mapped[list] = mapped_column(JSON, nullable=False)
    submitted_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    current_approval_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_approval_levels: Mapped[int] = mapped_column(Integer, nullable=False)
    workflow_status: Mapped[str] = mapped_column(String(50), nullable=False)
    current_approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejected_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payroll_summary_created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sent_to_payroll_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return (
            f"<PeriodFinalization {self.id} {self.period_start}..{self.period_end} "
            f"{self.workflow_status} v{self.version}>"
        )

    def to_dto(self):
        from hr_modules.timesheet.models import PeriodFinalization

        return PeriodFinalization(
            id=self.id,
            company_id=self.company_id,
            period_start=self.period_start,
            period_end=self.period_end,
            employee_ids=tuple(UUID(str(e)) for e in self.employee_ids),
            submitted_by=self.submitted_by,
            submitted_at=self.submitted_at,
            current_approval_level=self.current_approval_level,
            max_approval_levels=self.max_approval_levels,
            workflow_status=self.workflow_status,
            version=self.version,
            current_approver_id=self.current_approver_id,
            rejected_by=self.rejected_by,
            rejected_at=self.rejected_at,
            rejection_reason=self.rejection_reason,
            approved_at=self.approved_at,
            payroll_summary_created_at=self.payroll_summary_created_at,
            sent_to_payroll_at=self.sent_to_payroll_at,
        )


class TimesheetApprovalHistoryModel(Base):
    """Append-only approval trail for a finalization."""

    __tablename__ = "timesheet_approval_history"

    __table_args__ = (
        UniqueConstraint("finalization_id", "sequence", name="uq_timesheet_history_sequence"),
    )

    finalization_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("timekeeper_period_finalizations.id"), nullable=False,
    )
    approval_level: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    acted_at: Mapped[datetime] = mapped_column(nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    def to_dto(self):
        from hr_modules.timesheet.models import ApprovalHistoryEntry, TimesheetAction

        return ApprovalHistoryEntry(
            id=self.id,
            finalization_id=self.finalization_id,
            approval_level=self.approval_level,
            approver_id=self.approver_id,
            action=TimesheetAction(self.action),
            acted_at=self.acted_at,
            sequence=self.sequence,
            comment=self.comment,
        )


class ShiftApprovalLevelModel(TrackedBase):
    """(company, level) -> approver table.  Maintained outside this package."""

    __tablename__ = "shift_approval_levels"

    __table_args__ = (
        CheckConstraint("approval_level >= 1", name="ck_shift_approval_level_positive"),
        Index("ix_shift_approval_levels_company_level", "company_id", "approval_level"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    approval_level: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)


# ---------------------------------------------------------------------------
# Settlement inputs (read-only to this package)
# ---------------------------------------------------------------------------


class TimeClockEntryModel(TrackedBase):
    """A raw clock-in/clock-out record."""

    __tablename__ = "time_clock_entries"

    __table_args__ = (
        Index("ix_time_clock_entries_employee_date", "employee_id", "work_date"),
    )

    employee_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    work_date: Mapped[date] = mapped_column(nullable=False)
    clock_in: Mapped[datetime | None] = mapped_column(nullable=True)
    clock_out: Mapped[datetime | None] = mapped_column(nullable=True)
    total_hours: Mapped[Decimal | None] = mapped_column(nullable=True)
    overtime_hours: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="approved")


class EmployeeCompensationModel(TrackedBase):
    """Hourly rate with an effective window."""

    __tablename__ = "employee_compensation"

    __table_args__ = (
        Index("ix_employee_compensation_employee", "employee_id", "effective_from"),
    )

    employee_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    hourly_rate: Mapped[Decimal] = mapped_column(nullable=False)
    effective_from: Mapped[date] = mapped_column(nullable=False)
    effective_to: Mapped[date | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)


class OvertimeRuleModel(TrackedBase):
    """Company-specific overtime tier multipliers."""

    __tablename__ = "overtime_rules"

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    tier1_multiplier: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("1.5"))
    tier2_multiplier: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("2.0"))
    tier3_multiplier: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("3.0"))
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)


class LeavePayrollTransactionModel(TrackedBase):
    """Leave already priced upstream, waiting to be carried into payroll."""

    __tablename__ = "leave_payroll_transactions"

    __table_args__ = (
        Index("ix_leave_payroll_transactions_employee", "employee_id", "start_date"),
    )

    employee_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(50), nullable=False)
    start_date: Mapped[date] = mapped_column(nullable=False)
    end_date: Mapped[date] = mapped_column(nullable=False)
    hours: Mapped[Decimal] = mapped_column(nullable=False)
    rate: Mapped[Decimal] = mapped_column(nullable=False)
    payment_percentage: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("100"))
    gross_amount: Mapped[Decimal] = mapped_column(nullable=False)


# ---------------------------------------------------------------------------
# Settlement output
# ---------------------------------------------------------------------------


class SettlementRequestModel(Base):
    """One settlement work item per finalization."""

    __tablename__ = "settlement_requests"

    __table_args__ = (
        UniqueConstraint("finalization_id", name="uq_settlement_requests_finalization"),
        Index("ix_settlement_requests_status", "status", "requested_at"),
    )

    finalization_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("timekeeper_period_finalizations.id"), nullable=False,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    requested_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rows_written: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class PayElementSummaryModel(Base):
    """One priced pay element line.  Write-once."""

    __tablename__ = "pay_element_summaries"

    __table_args__ = (
        UniqueConstraint(
            "finalization_id", "employee_id", "pay_element", "source_key",
            name="uq_pay_element_summaries_line",
        ),
        Index("ix_pay_element_summaries_finalization", "finalization_id"),
    )

    finalization_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("timekeeper_period_finalizations.id"), nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    pay_element: Mapped[str] = mapped_column(String(30), nullable=False)
    hours: Mapped[Decimal] = mapped_column(nullable=False)
    rate: Mapped[Decimal] = mapped_column(nullable=False)
    multiplier: Mapped[Decimal] = mapped_column(nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(nullable=False)
    source_key: Mapped[str] = mapped_column(String(80), nullable=False)
    source_records: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self):
        from hr_engines.settlement import PayElement
        from hr_modules.timesheet.models import PayElementSummaryRecord

        return PayElementSummaryRecord(
            id=self.id,
            finalization_id=self.finalization_id,
            employee_id=self.employee_id,
            pay_element=PayElement(self.pay_element),
            hours=self.hours,
            rate=self.rate,
            multiplier=self.multiplier,
            gross_amount=self.gross_amount,
            source_key=self.source_key,
            source_records=tuple(self.source_records or ()),
        )

    @classmethod
    def from_line(cls, line, finalization_id: UUID, created_at: datetime) -> PayElementSummaryModel:
        return cls(
            finalization_id=finalization_id,
            employee_id=line.employee_id,
            pay_element=line.pay_element.value,
            hours=line.hours,
            rate=line.rate,
            multiplier=line.multiplier,
            gross_amount=line.gross_amount,
            source_key=line.source_key,
            source_records=list(line.source_records),
            created_at=created_at,
        )


# =============================================================================
# ORM-Level Immutability
# =============================================================================


@event.listens_for(TimekeeperPeriodFinalizationModel, "before_update")
def prevent_sent_finalization_update(mapper, connection, target):
    """Freeze a finalization once it has been sent to payroll."""
    history = get_history(target, "workflow_status")
    original = history.deleted[0] if history.deleted else target.workflow_status
    if original == "sent_to_payroll":
        raise ImmutabilityViolationError(
            entity_type="PeriodFinalization",
            entity_id=str(target.id),
            reason="Finalization was sent to payroll -- cannot modify",
        )


@event.listens_for(TimekeeperPeriodFinalizationModel, "before_delete")
def prevent_finalization_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="PeriodFinalization",
        entity_id=str(target.id),
        reason="Finalizations are retained -- cannot delete",
    )


@event.listens_for(TimesheetApprovalHistoryModel, "before_update")
def prevent_history_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="TimesheetApprovalHistory",
        entity_id=str(target.id),
        reason="Approval history is immutable -- cannot modify",
    )


@event.listens_for(TimesheetApprovalHistoryModel, "before_delete")
def prevent_history_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="TimesheetApprovalHistory",
        entity_id=str(target.id),
        reason="Approval history is immutable -- cannot delete",
    )


@event.listens_for(PayElementSummaryModel, "before_update")
def prevent_summary_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="PayElementSummary",
        entity_id=str(target.id),
        reason="Pay element summaries are write-once -- cannot modify",
    )


@event.listens_for(PayElementSummaryModel, "before_delete")
def prevent_summary_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="PayElementSummary",
        entity_id=str(target.id),
        reason="Pay element summaries are write-once -- cannot delete",
    )
