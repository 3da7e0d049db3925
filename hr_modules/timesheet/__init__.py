"""
Timesheet Module (``hr_modules.timesheet``).

Responsibility
--------------
Pay period approval for timekeepers: a company-level ``(level -> approver)``
table drives N approval levels, and the final approval settles the period
into pay element summaries for payroll.

Architecture position
---------------------
**Modules layer** -- DTOs, ORM, config schema, the approval service, and the
settlement service wrapping ``hr_engines.settlement``.

Invariants enforced
-------------------
* Authorization before any write.
* History before effect; the history row survives a failed transition.
* Compare-and-swap on every finalization update.
* One settlement per finalization.
"""

from hr_modules.timesheet.config import TimesheetApprovalConfig
from hr_modules.timesheet.models import (
    ApprovalHistoryEntry,
    ApprovalOutcome,
    FinalizationStatus,
    PayElementSummaryRecord,
    PeriodFinalization,
    SettlementRequestStatus,
    TimesheetAction,
    is_pending_status,
    pending_status,
)
from hr_modules.timesheet.service import TimesheetApprovalService
from hr_modules.timesheet.settlement_service import PayrollSettlementService

__all__ = [
    "ApprovalHistoryEntry",
    "ApprovalOutcome",
    "FinalizationStatus",
    "PayElementSummaryRecord",
    "PeriodFinalization",
    "PayrollSettlementService",
    "SettlementRequestStatus",
    "TimesheetAction",
    "TimesheetApprovalConfig",
    "TimesheetApprovalService",
    "is_pending_status",
    "pending_status",
]
