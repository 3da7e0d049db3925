"""
Timesheet Approval Configuration Schema.

Defines the structure and defaults for timesheet approval and settlement.
Company-specific values come from ``hr_config`` at runtime.
"""

from dataclasses import dataclass, field

from hr_engines.settlement import DEFAULT_MULTIPLIERS, OvertimeMultipliers
from hr_kernel.logging_config import get_logger

logger = get_logger("modules.timesheet.config")

VALID_SETTLEMENT_MODES = {"inline", "deferred"}


@dataclass
class TimesheetApprovalConfig:
    """
    Configuration schema for the timesheet module.

        config = TimesheetApprovalConfig(settlement_mode="deferred")

    ``settlement_mode``:
        inline   -- the final approval settles the period in the same unit
                    of work.
        deferred -- the final approval only enqueues a settlement request;
                    ``PayrollSettlementService.run_pending`` settles later.
    """

    settlement_mode: str = "inline"
    default_multipliers: OvertimeMultipliers = DEFAULT_MULTIPLIERS
    return_falls_back_to_timekeeper: bool = True
    excluded_entry_statuses: frozenset[str] = field(
        default_factory=lambda: frozenset({"rejected", "void"}),
    )

    def __post_init__(self):
        if self.settlement_mode not in VALID_SETTLEMENT_MODES:
            raise ValueError(
                f"settlement_mode must be one of {VALID_SETTLEMENT_MODES}, "
                f"got '{self.settlement_mode}'"
            )
        logger.debug(
            "timesheet_config_initialized",
            extra={
                "settlement_mode": self.settlement_mode,
                "tier1": str(self.default_multipliers.tier1),
                "tier2": str(self.default_multipliers.tier2),
                "tier3": str(self.default_multipliers.tier3),
            },
        )
