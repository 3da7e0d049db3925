"""
Payroll Settlement Service (``hr_modules.timesheet.settlement_service``).

Responsibility
--------------
Load the inputs for one approved period finalization, run the pure
``calculate_settlement`` engine, and persist the resulting pay element
summaries exactly once.

Architecture position
---------------------
**Modules layer** -- I/O shell around ``hr_engines.settlement``.
``settle`` only flushes; the caller (the approval service, or
``run_pending``) owns the transaction.

Invariants enforced
-------------------
* Exactly one settlement per finalization: a completed request or any
  existing summary row raises ``SettlementAlreadyExistsError``; the unique
  constraints turn a concurrent duplicate into the same error.
* Every employee with hours needs a compensation record effective in the
  period.
* ``payroll_summary_created_at`` is stamped in the same unit of work as the
  summary insert.

Failure modes
-------------
* ``SettlementInputError`` for missing rates, unusable entries, or a
  finalization that is not approved for payroll.
* ``SettlementAlreadyExistsError`` on a repeated settlement.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError as SAIntegrityError
from sqlalchemy.orm import Session

from hr_engines.settlement import (
    LeaveInput,
    OvertimeMultipliers,
    SettlementResult,
    TimeEntryInput,
    calculate_settlement,
    leave_source_key,
)
from hr_kernel.domain.clock import Clock, SystemClock
from hr_kernel.exceptions import (
    ConcurrentModificationError,
    FinalizationNotFoundError,
    SettlementAlreadyExistsError,
    SettlementInputError,
)
from hr_kernel.logging_config import LogContext, get_logger
from hr_modules.timesheet.config import TimesheetApprovalConfig
from hr_modules.timesheet.models import (
    FinalizationStatus,
    PayElementSummaryRecord,
    SettlementRequestStatus,
)
from hr_modules.timesheet.orm import (
    EmployeeCompensationModel,
    LeavePayrollTransactionModel,
    OvertimeRuleModel,
    PayElementSummaryModel,
    SettlementRequestModel,
    TimeClockEntryModel,
    TimekeeperPeriodFinalizationModel,
)

logger = get_logger("modules.timesheet.settlement")

_SECONDS_PER_HOUR = Decimal("3600")
_HOURS_QUANTUM = Decimal("0.01")


class PayrollSettlementService:
    """Settles approved finalizations into pay element summaries."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: TimesheetApprovalConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or TimesheetApprovalConfig()

    # =========================================================================
    # Queue
    # =========================================================================

    def enqueue(self, finalization_id: UUID) -> SettlementRequestModel:
        """Create the pending settlement request for a finalization."""
        existing = self._find_request(finalization_id)
        if existing is not None:
            if existing.status == SettlementRequestStatus.COMPLETED.value:
                raise SettlementAlreadyExistsError(str(finalization_id))
            return existing
        request = SettlementRequestModel(
            finalization_id=finalization_id,
            status=SettlementRequestStatus.PENDING.value,
            requested_at=self._clock.now(),
        )
        self._session.add(request)
        try:
            self._session.flush()
        except SAIntegrityError as exc:
            raise SettlementAlreadyExistsError(str(finalization_id)) from exc
        logger.info(
            "settlement_enqueued",
            extra={"finalization_id": str(finalization_id)},
        )
        return request

    # =========================================================================
    # Settle
    # =========================================================================

    def settle(self, finalization_id: UUID) -> SettlementResult:
        """Compute and write the pay element summaries for ``finalization_id``.

        Flushes only.  Raises SettlementAlreadyExistsError when the period
        was already settled.
        """
        with LogContext.bind(finalization_id=str(finalization_id)):
            finalization = self._session.get(TimekeeperPeriodFinalizationModel, finalization_id)
            if finalization is None:
                raise FinalizationNotFoundError(str(finalization_id))
            if finalization.workflow_status != FinalizationStatus.APPROVED_FOR_PAYROLL.value:
                raise SettlementInputError(
                    str(finalization_id),
                    f"finalization is {finalization.workflow_status}, not approved for payroll",
                )
            if self._summary_count(finalization_id):
                raise SettlementAlreadyExistsError(str(finalization_id))

            request = self.enqueue(finalization_id)
            result = self._calculate(finalization)

            now = self._clock.now()
            for line in result.lines:
                self._session.add(PayElementSummaryModel.from_line(line, finalization_id, now))
            try:
                self._session.flush()
            except SAIntegrityError as exc:
                raise SettlementAlreadyExistsError(str(finalization_id)) from exc

            self._session.execute(
                update(SettlementRequestModel)
                .where(
                    SettlementRequestModel.id == request.id,
                    SettlementRequestModel.status == SettlementRequestStatus.PENDING.value,
                )
                .values(
                    status=SettlementRequestStatus.COMPLETED.value,
                    completed_at=now,
                    rows_written=len(result.lines),
                )
                .execution_options(synchronize_session=False)
            )
            stamped = self._session.execute(
                update(TimekeeperPeriodFinalizationModel)
                .where(
                    TimekeeperPeriodFinalizationModel.id == finalization_id,
                    TimekeeperPeriodFinalizationModel.version == finalization.version,
                    TimekeeperPeriodFinalizationModel.workflow_status
                    == FinalizationStatus.APPROVED_FOR_PAYROLL.value,
                )
                .values(
                    payroll_summary_created_at=now,
                    version=finalization.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if stamped.rowcount != 1:
                raise ConcurrentModificationError(
                    "PeriodFinalization", str(finalization_id), finalization.version,
                )
            self._session.expire(finalization)
            self._session.expire(request)

            logger.info(
                "settlement_completed",
                extra={
                    "rows_written": len(result.lines),
                    "total_gross": result.total_gross,
                    "employee_count": len({line.employee_id for line in result.lines}),
                },
            )
            return result

    def run_pending(self, limit: int | None = None) -> list[UUID]:
        """Settle queued requests (deferred mode worker).

        Each request is settled in its own savepoint and committed; a
        failing request is logged, left pending, and retried on the next run.
        Returns the finalization ids that were settled.
        """
        stmt = (
            select(SettlementRequestModel.finalization_id)
            .where(SettlementRequestModel.status == SettlementRequestStatus.PENDING.value)
            .order_by(SettlementRequestModel.requested_at, SettlementRequestModel.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        pending = list(self._session.scalars(stmt))

        settled: list[UUID] = []
        for finalization_id in pending:
            try:
                with self._session.begin_nested():
                    self.settle(finalization_id)
            except (SettlementInputError, ConcurrentModificationError) as exc:
                logger.error(
                    "settlement_failed",
                    extra={
                        "finalization_id": str(finalization_id),
                        "error_code": exc.code,
                        "error": str(exc),
                    },
                )
                continue
            self._session.commit()
            settled.append(finalization_id)

        logger.info(
            "settlement_run_completed",
            extra={"pending_count": len(pending), "settled_count": len(settled)},
        )
        return settled

    # =========================================================================
    # Reads
    # =========================================================================

    def get_summaries(self, finalization_id: UUID) -> list[PayElementSummaryRecord]:
        """Pay element summaries for payroll, in employee and element order."""
        stmt = (
            select(PayElementSummaryModel)
            .where(PayElementSummaryModel.finalization_id == finalization_id)
            .order_by(
                PayElementSummaryModel.employee_id,
                PayElementSummaryModel.pay_element,
                PayElementSummaryModel.source_key,
            )
        )
        return [m.to_dto() for m in self._session.scalars(stmt)]

    # =========================================================================
    # Internal
    # =========================================================================

    def _calculate(self, finalization: TimekeeperPeriodFinalizationModel) -> SettlementResult:
        employee_ids = [UUID(str(e)) for e in finalization.employee_ids]
        entries = self._load_entries(finalization, employee_ids)
        rates = self._load_rates(finalization, {e.employee_id for e in entries})
        leave = self._load_leave(finalization, employee_ids)
        multipliers = self._load_multipliers(finalization.company_id)

        try:
            return calculate_settlement(
                finalization_id=finalization.id,
                entries=entries,
                rates=rates,
                leave_transactions=leave,
                multipliers=multipliers,
            )
        except ValueError as exc:
            raise SettlementInputError(str(finalization.id), str(exc)) from exc

    def _load_entries(
        self,
        finalization: TimekeeperPeriodFinalizationModel,
        employee_ids: Iterable[UUID],
    ) -> list[TimeEntryInput]:
        stmt = select(TimeClockEntryModel).where(
            TimeClockEntryModel.company_id == finalization.company_id,
            TimeClockEntryModel.employee_id.in_(list(employee_ids)),
            TimeClockEntryModel.work_date >= finalization.period_start,
            TimeClockEntryModel.work_date <= finalization.period_end,
        )
        excluded = self._config.excluded_entry_statuses
        if excluded:
            stmt = stmt.where(TimeClockEntryModel.status.not_in(list(excluded)))

        entries = []
        for row in self._session.scalars(stmt):
            entries.append(TimeEntryInput(
                entry_id=row.id,
                employee_id=row.employee_id,
                work_date=row.work_date,
                total_hours=self._entry_hours(finalization.id, row),
                overtime_hours=row.overtime_hours or Decimal("0"),
            ))
        return entries

    @staticmethod
    def _entry_hours(finalization_id: UUID, row: TimeClockEntryModel) -> Decimal:
        if row.total_hours is not None:
            return row.total_hours
        if row.clock_in is None or row.clock_out is None:
            raise SettlementInputError(
                str(finalization_id),
                f"time entry {row.id} has neither total hours nor a complete clock pair",
                employee_id=str(row.employee_id),
            )
        seconds = Decimal(int((row.clock_out - row.clock_in).total_seconds()))
        return (seconds / _SECONDS_PER_HOUR).quantize(_HOURS_QUANTUM)

    def _load_rates(
        self,
        finalization: TimekeeperPeriodFinalizationModel,
        employee_ids: set[UUID],
    ) -> dict[UUID, Decimal]:
        if not employee_ids:
            return {}
        stmt = (
            select(EmployeeCompensationModel)
            .where(
                EmployeeCompensationModel.employee_id.in_(list(employee_ids)),
                EmployeeCompensationModel.is_active.is_(True),
                EmployeeCompensationModel.effective_from <= finalization.period_end,
                (EmployeeCompensationModel.effective_to.is_(None))
                | (EmployeeCompensationModel.effective_to >= finalization.period_start),
            )
            .order_by(EmployeeCompensationModel.effective_from)
        )
        rates: dict[UUID, Decimal] = {}
        for row in self._session.scalars(stmt):
            # Latest effective record wins.
            rates[row.employee_id] = row.hourly_rate

        missing = sorted(employee_ids - set(rates), key=str)
        if missing:
            raise SettlementInputError(
                str(finalization.id),
                f"no active compensation for {len(missing)} employee(s)",
                employee_id=str(missing[0]),
            )
        return rates

    def _load_leave(
        self,
        finalization: TimekeeperPeriodFinalizationModel,
        employee_ids: Iterable[UUID],
    ) -> list[LeaveInput]:
        stmt = select(LeavePayrollTransactionModel).where(
            LeavePayrollTransactionModel.employee_id.in_(list(employee_ids)),
            LeavePayrollTransactionModel.start_date <= finalization.period_end,
            LeavePayrollTransactionModel.end_date >= finalization.period_start,
        )
        rows = list(self._session.scalars(stmt))
        if not rows:
            return []

        # A transaction spanning a period boundary is paid by the first
        # finalization that settles it.
        consumed = set(self._session.scalars(
            select(PayElementSummaryModel.source_key).where(
                PayElementSummaryModel.finalization_id != finalization.id,
                PayElementSummaryModel.source_key.in_([leave_source_key(row.id) for row in rows]),
            )
        ))
        if consumed:
            logger.info(
                "settlement_leave_already_paid",
                extra={"skipped_count": len(consumed)},
            )
        return [
            LeaveInput(
                transaction_id=row.id,
                employee_id=row.employee_id,
                transaction_type=row.transaction_type,
                start_date=row.start_date,
                hours=row.hours,
                rate=row.rate,
                payment_percentage=row.payment_percentage,
                gross_amount=row.gross_amount,
            )
            for row in rows
            if leave_source_key(row.id) not in consumed
        ]

    def _load_multipliers(self, company_id: UUID) -> OvertimeMultipliers:
        rule = self._session.scalars(
            select(OvertimeRuleModel)
            .where(
                OvertimeRuleModel.company_id == company_id,
                OvertimeRuleModel.is_active.is_(True),
            )
            .order_by(OvertimeRuleModel.created_at.desc())
        ).first()
        if rule is None:
            return self._config.default_multipliers
        return OvertimeMultipliers(
            tier1=rule.tier1_multiplier,
            tier2=rule.tier2_multiplier,
            tier3=rule.tier3_multiplier,
        )

    def _find_request(self, finalization_id: UUID) -> SettlementRequestModel | None:
        return self._session.scalars(
            select(SettlementRequestModel).where(
                SettlementRequestModel.finalization_id == finalization_id,
            )
        ).first()

    def _summary_count(self, finalization_id: UUID) -> int:
        return int(self._session.scalar(
            select(func.count()).select_from(PayElementSummaryModel).where(
                PayElementSummaryModel.finalization_id == finalization_id,
            )
        ) or 0)
