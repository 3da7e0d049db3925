"""
Module: hr_engines
Responsibility:
    Pure calculation engines for the HR approval suite: workflow transition
    resolution, step SLA evaluation, and payroll settlement.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import hr_kernel/domain types and hr_kernel/utils.
    MUST NOT import hr_kernel services/models or hr_modules.

Invariants enforced:
    - Purity: engines never read a clock.  ``as_of`` values are passed in.
    - Decimal-only arithmetic for hours, rates and gross amounts.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from hr_engines.settlement import calculate_settlement
    from hr_engines.sla import compute_sla_status
    from hr_engines.workflow_transitions import resolve_transition
"""

from hr_engines.settlement import (
    DEFAULT_MULTIPLIERS,
    TIER_BAND_HOURS,
    LeaveInput,
    OvertimeMultipliers,
    OvertimeSplit,
    PayElement,
    PayElementLine,
    SettlementResult,
    TimeEntryInput,
    calculate_settlement,
    split_overtime,
)
from hr_engines.sla import SlaStatus, compute_sla_status, step_deadline
from hr_engines.workflow_transitions import (
    StepRef,
    TransitionOutcome,
    resolve_transition,
)

__all__ = [
    "DEFAULT_MULTIPLIERS",
    "TIER_BAND_HOURS",
    "LeaveInput",
    "OvertimeMultipliers",
    "OvertimeSplit",
    "PayElement",
    "PayElementLine",
    "SettlementResult",
    "TimeEntryInput",
    "calculate_settlement",
    "split_overtime",
    "SlaStatus",
    "compute_sla_status",
    "step_deadline",
    "StepRef",
    "TransitionOutcome",
    "resolve_transition",
]
