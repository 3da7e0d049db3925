"""
Timesheet Approval Service (``hr_modules.timesheet.service``).

Responsibility
--------------
N-level approval of a timekeeper's pay period submission, driven by the
``(company, level) -> approver`` table rather than per-template steps.
The final approval hands the period to settlement.

Architecture position
---------------------
**Modules layer** -- owns the transaction boundary for every public
mutating method (commit on success, rollback on failure).  Settlement is
delegated to ``PayrollSettlementService``.

Invariants enforced
-------------------
* Authorization is checked before any write: the actor must be the
  current approver or listed for the current level.
* The history row is written before the status change and is kept when
  the change fails.
* Status changes are compare-and-swap updates on (version, status, level).
  Two racing final approvals cannot both settle.
* The transition and its settlement share one SAVEPOINT: when settlement
  fails the finalization stays at its pre-transition level.
* A finalization is frozen once sent to payroll.
* An employee is in at most one open finalization for any day.  Batches
  for the same period with no employees in common may coexist.

Failure modes
-------------
* ``FinalizationNotFoundError``, ``FinalizationAlreadyResolvedError``,
  ``NotAuthorizedError``, ``ConcurrentModificationError``.
* ``ApprovalLevelsNotConfiguredError`` / ``DuplicateFinalizationError`` on
  submission.
* Settlement errors propagate from the final approval.

Audit relevance
---------------
Every decision leaves a ``TimesheetApprovalHistory`` row with its level
and a per-finalization sequence.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError as SAIntegrityError
from sqlalchemy.orm import Session

from hr_kernel.domain.clock import Clock, SystemClock
from hr_kernel.exceptions import (
    ApprovalLevelsNotConfiguredError,
    ConcurrentModificationError,
    DuplicateFinalizationError,
    FinalizationAlreadyResolvedError,
    FinalizationNotFoundError,
    InvalidWorkflowActionError,
    NotAuthorizedError,
)
from hr_kernel.logging_config import LogContext, get_logger
from hr_modules.timesheet.config import TimesheetApprovalConfig
from hr_modules.timesheet.models import (
    ApprovalHistoryEntry,
    ApprovalOutcome,
    FinalizationStatus,
    PeriodFinalization,
    TimesheetAction,
    is_pending_status,
    pending_status,
)
from hr_modules.timesheet.orm import (
    ShiftApprovalLevelModel,
    TimekeeperPeriodFinalizationModel,
    TimesheetApprovalHistoryModel,
)
from hr_modules.timesheet.settlement_service import PayrollSettlementService

logger = get_logger("modules.timesheet.service")


class TimesheetApprovalService:
    """Submits pay periods and walks them through the approval levels."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: TimesheetApprovalConfig | None = None,
        settlement: PayrollSettlementService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or TimesheetApprovalConfig()
        self._settlement = settlement or PayrollSettlementService(
            session, clock=self._clock, config=self._config,
        )

    # =========================================================================
    # Submit
    # =========================================================================

    def submit_period(
        self,
        company_id: UUID,
        period_start: date,
        period_end: date,
        employee_ids: Sequence[UUID],
        timekeeper_id: UUID,
    ) -> PeriodFinalization:
        """Open a finalization for the period at level 1."""
        now = self._clock.now()
        try:
            if period_end < period_start:
                raise ValueError("period_end must not precede period_start")

            levels = self._configured_levels(company_id)
            if not levels or levels != list(range(1, levels[-1] + 1)):
                raise ApprovalLevelsNotConfiguredError(str(company_id))

            batch = sorted({str(e) for e in employee_ids})
            existing, shared = self._find_overlapping(company_id, period_start, period_end, batch)
            if existing is not None:
                raise DuplicateFinalizationError(
                    str(company_id), period_start.isoformat(), period_end.isoformat(),
                    shared, str(existing.id),
                )

            model = TimekeeperPeriodFinalizationModel(
                company_id=company_id,
                period_start=period_start,
                period_end=period_end,
                employee_ids=batch,
                submitted_by=timekeeper_id,
                submitted_at=now,
                current_approval_level=1,
                max_approval_levels=levels[-1],
                workflow_status=pending_status(1),
                current_approver_id=self._level_approver(company_id, 1),
                version=1,
            )
            self._session.add(model)
            self._session.flush()

            finalization = model.to_dto()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "timesheet_period_submitted",
            extra={
                "finalization_id": str(finalization.id),
                "company_id": str(company_id),
                "period_start": period_start,
                "period_end": period_end,
                "employee_count": len(finalization.employee_ids),
                "max_approval_levels": finalization.max_approval_levels,
            },
        )
        return finalization

    # =========================================================================
    # Approve / reject / return
    # =========================================================================

    def process_approval(
        self,
        finalization_id: UUID,
        approver_id: UUID,
        action: TimesheetAction,
        comments: str | None = None,
        expected_version: int | None = None,
    ) -> ApprovalOutcome:
        """Apply one approver decision at the current level.

        Args:
            finalization_id: Target finalization.
            approver_id: Acting approver.
            action: approve, reject or return.
            comments: Free text; stored on history and, for reject, as the
                rejection reason.
            expected_version: Version the caller last saw.

        Returns:
            ApprovalOutcome with the post-action snapshot and history row.
        """
        now = self._clock.now()
        with LogContext.bind(finalization_id=str(finalization_id), actor_id=str(approver_id)):
            try:
                model = self._load(finalization_id)
                if not is_pending_status(model.workflow_status):
                    raise FinalizationAlreadyResolvedError(
                        str(finalization_id), model.workflow_status,
                    )
                if expected_version is not None and model.version != expected_version:
                    raise ConcurrentModificationError(
                        "PeriodFinalization", str(finalization_id), expected_version,
                    )
                self._authorize(model, approver_id)

                read_version = model.version
                read_status = model.workflow_status
                read_level = model.current_approval_level

                history = self._append_history(model, approver_id, action, comments, now)

                settled = False
                summary_count = 0
                try:
                    with self._session.begin_nested():
                        values = self._transition_values(model, approver_id, action, comments, now)
                        self._cas_update(
                            model,
                            expected_version=read_version,
                            expected_status=read_status,
                            expected_level=read_level,
                            values=values,
                        )
                        if values["workflow_status"] == FinalizationStatus.APPROVED_FOR_PAYROLL.value:
                            if self._config.settlement_mode == "inline":
                                result = self._settlement.settle(finalization_id)
                                settled = True
                                summary_count = len(result.lines)
                            else:
                                self._settlement.enqueue(finalization_id)
                except Exception as exc:
                    # History row stays; the finalization is untouched.
                    self._session.commit()
                    logger.warning(
                        "timesheet_transition_failed",
                        extra={
                            "action": action.value,
                            "approval_level": read_level,
                            "error_type": type(exc).__name__,
                        },
                    )
                    raise

                entry = history.to_dto()
                finalization = self._load(finalization_id).to_dto()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "timesheet_approval_processed",
                extra={
                    "action": action.value,
                    "from_level": read_level,
                    "to_level": finalization.current_approval_level,
                    "workflow_status": finalization.workflow_status,
                    "settled": settled,
                    "summary_count": summary_count,
                },
            )

        return ApprovalOutcome(
            finalization=finalization,
            history_entry=entry,
            settled=settled,
            summary_count=summary_count,
        )

    def mark_sent_to_payroll(self, finalization_id: UUID, actor_id: UUID) -> PeriodFinalization:
        """Hand a settled finalization to payroll.  The row is frozen afterwards."""
        now = self._clock.now()
        try:
            model = self._load(finalization_id)
            if model.workflow_status != FinalizationStatus.APPROVED_FOR_PAYROLL.value:
                raise FinalizationAlreadyResolvedError(str(finalization_id), model.workflow_status)
            if model.payroll_summary_created_at is None:
                raise InvalidWorkflowActionError(
                    str(finalization_id), "send_to_payroll", "settlement has not completed",
                )
            self._cas_update(
                model,
                expected_version=model.version,
                expected_status=model.workflow_status,
                expected_level=model.current_approval_level,
                values={
                    "workflow_status": FinalizationStatus.SENT_TO_PAYROLL.value,
                    "sent_to_payroll_at": now,
                },
            )
            finalization = self._load(finalization_id).to_dto()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "timesheet_sent_to_payroll",
            extra={"finalization_id": str(finalization_id), "actor_id": str(actor_id)},
        )
        return finalization

    # =========================================================================
    # Reads
    # =========================================================================

    def get_finalization(self, finalization_id: UUID) -> PeriodFinalization:
        return self._load(finalization_id).to_dto()

    def get_history(self, finalization_id: UUID) -> list[ApprovalHistoryEntry]:
        self._load(finalization_id)
        stmt = (
            select(TimesheetApprovalHistoryModel)
            .where(TimesheetApprovalHistoryModel.finalization_id == finalization_id)
            .order_by(TimesheetApprovalHistoryModel.sequence)
        )
        return [m.to_dto() for m in self._session.scalars(stmt)]

    def get_pending_for_approver(self, approver_id: UUID) -> list[PeriodFinalization]:
        """Pending finalizations the approver may act on now."""
        stmt = select(TimekeeperPeriodFinalizationModel).where(
            TimekeeperPeriodFinalizationModel.workflow_status.like("pending_level_%"),
        ).order_by(TimekeeperPeriodFinalizationModel.submitted_at)
        return [
            m.to_dto()
            for m in self._session.scalars(stmt)
            if self._is_authorized(m, approver_id)
        ]

    # =========================================================================
    # Internal
    # =========================================================================

    def _transition_values(
        self,
        model: TimekeeperPeriodFinalizationModel,
        approver_id: UUID,
        action: TimesheetAction,
        comments: str | None,
        now: datetime,
    ) -> dict[str, Any]:
        level = model.current_approval_level
        if action == TimesheetAction.REJECT:
            return {
                "workflow_status": FinalizationStatus.REJECTED.value,
                "rejected_by": approver_id,
                "rejected_at": now,
                "rejection_reason": comments,
                "current_approver_id": None,
            }
        if action == TimesheetAction.RETURN:
            target = max(1, level - 1)
            approver = self._level_approver(model.company_id, target)
            if approver is None and self._config.return_falls_back_to_timekeeper:
                approver = model.submitted_by
            return {
                "workflow_status": pending_status(target),
                "current_approval_level": target,
                "current_approver_id": approver,
            }
        if level + 1 <= model.max_approval_levels:
            return {
                "workflow_status": pending_status(level + 1),
                "current_approval_level": level + 1,
                "current_approver_id": self._level_approver(model.company_id, level + 1),
            }
        return {
            "workflow_status": FinalizationStatus.APPROVED_FOR_PAYROLL.value,
            "approved_at": now,
            "current_approver_id": None,
        }

    def _authorize(self, model: TimekeeperPeriodFinalizationModel, approver_id: UUID) -> None:
        if not self._is_authorized(model, approver_id):
            raise NotAuthorizedError(
                str(model.id), str(approver_id),
                f"not an approver for level {model.current_approval_level}",
            )

    def _is_authorized(self, model: TimekeeperPeriodFinalizationModel, approver_id: UUID) -> bool:
        if model.current_approver_id == approver_id:
            return True
        return approver_id in self._level_members(model.company_id, model.current_approval_level)

    def _append_history(
        self,
        model: TimekeeperPeriodFinalizationModel,
        approver_id: UUID,
        action: TimesheetAction,
        comments: str | None,
        now: datetime,
    ) -> TimesheetApprovalHistoryModel:
        next_sequence = (self._session.scalar(
            select(func.max(TimesheetApprovalHistoryModel.sequence)).where(
                TimesheetApprovalHistoryModel.finalization_id == model.id,
            )
        ) or 0) + 1
        history = TimesheetApprovalHistoryModel(
            finalization_id=model.id,
            approval_level=model.current_approval_level,
            approver_id=approver_id,
            action=action.value,
            comment=comments,
            acted_at=now,
            sequence=next_sequence,
        )
        self._session.add(history)
        try:
            self._session.flush()
        except SAIntegrityError as exc:
            raise ConcurrentModificationError("PeriodFinalization", str(model.id)) from exc
        return history

    def _cas_update(
        self,
        model: TimekeeperPeriodFinalizationModel,
        *,
        expected_version: int,
        expected_status: str,
        expected_level: int,
        values: dict[str, Any],
    ) -> None:
        result = self._session.execute(
            update(TimekeeperPeriodFinalizationModel)
            .where(
                TimekeeperPeriodFinalizationModel.id == model.id,
                TimekeeperPeriodFinalizationModel.version == expected_version,
                TimekeeperPeriodFinalizationModel.workflow_status == expected_status,
                TimekeeperPeriodFinalizationModel.current_approval_level == expected_level,
            )
            .values(**values, version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentModificationError(
                "PeriodFinalization", str(model.id), expected_version,
            )
        self._session.expire(model)

    def _configured_levels(self, company_id: UUID) -> list[int]:
        stmt = (
            select(ShiftApprovalLevelModel.approval_level)
            .where(
                ShiftApprovalLevelModel.company_id == company_id,
                ShiftApprovalLevelModel.is_active.is_(True),
            )
            .distinct()
            .order_by(ShiftApprovalLevelModel.approval_level)
        )
        return list(self._session.scalars(stmt))

    def _level_members(self, company_id: UUID, level: int) -> list[UUID]:
        stmt = (
            select(ShiftApprovalLevelModel.approver_id)
            .where(
                ShiftApprovalLevelModel.company_id == company_id,
                ShiftApprovalLevelModel.approval_level == level,
                ShiftApprovalLevelModel.is_active.is_(True),
            )
            .order_by(ShiftApprovalLevelModel.priority, ShiftApprovalLevelModel.id)
        )
        return list(self._session.scalars(stmt))

    def _level_approver(self, company_id: UUID, level: int) -> UUID | None:
        members = self._level_members(company_id, level)
        return members[0] if members else None

    def _find_overlapping(
        self,
        company_id: UUID,
        period_start: date,
        period_end: date,
        employee_ids: list[str],
    ) -> tuple[TimekeeperPeriodFinalizationModel | None, list[str]]:
        """First open finalization whose period overlaps and shares an employee.

        Disjoint batches for the same period may coexist.
        """
        if not employee_ids:
            return None, []
        wanted = set(employee_ids)
        stmt = (
            select(TimekeeperPeriodFinalizationModel)
            .where(
                TimekeeperPeriodFinalizationModel.company_id == company_id,
                TimekeeperPeriodFinalizationModel.period_start <= period_end,
                TimekeeperPeriodFinalizationModel.period_end >= period_start,
                TimekeeperPeriodFinalizationModel.workflow_status
                != FinalizationStatus.REJECTED.value,
            )
            .order_by(TimekeeperPeriodFinalizationModel.submitted_at)
        )
        for model in self._session.scalars(stmt):
            shared = sorted(wanted.intersection(str(e) for e in model.employee_ids))
            if shared:
                return model, shared
        return None, []

    def _load(self, finalization_id: UUID) -> TimekeeperPeriodFinalizationModel:
        model = self._session.get(TimekeeperPeriodFinalizationModel, finalization_id)
        if model is None:
            raise FinalizationNotFoundError(str(finalization_id))
        return model
