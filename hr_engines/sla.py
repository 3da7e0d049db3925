"""
hr_engines.sla -- Step service-level evaluation.

Responsibility:
    Classify how a workflow step is tracking against its time budget, for
    pending lists and the breach sweep.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ``as_of`` is supplied by
    the caller.

Rules (first match wins):
    expired   -- the instance's auto-terminate deadline has passed
    overdue   -- the step deadline (started + escalation_hours) has passed
    critical  -- elapsed hours >= sla_critical_hours
    warning   -- elapsed hours >= sla_warning_hours, or, when no warning
                 threshold is set, 80% of the step deadline window is used
    on_track  -- otherwise
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum

DEFAULT_WARNING_FRACTION = Decimal("0.8")


class SlaStatus(str, Enum):
    ON_TRACK = "on_track"
    WARNING = "warning"
    CRITICAL = "critical"
    OVERDUE = "overdue"
    EXPIRED = "expired"


BREACH_STATUSES: frozenset[SlaStatus] = frozenset({
    SlaStatus.WARNING,
    SlaStatus.CRITICAL,
    SlaStatus.OVERDUE,
})


def step_deadline(started_at: datetime, escalation_hours: int | None) -> datetime | None:
    """Deadline of a step that started at ``started_at``; None without a budget."""
    if escalation_hours is None:
        return None
    return started_at + timedelta(hours=escalation_hours)


def compute_sla_status(
    as_of: datetime,
    step_started_at: datetime | None,
    step_deadline_at: datetime | None = None,
    warning_hours: int | None = None,
    critical_hours: int | None = None,
    auto_terminate_at: datetime | None = None,
) -> SlaStatus:
    """Classify a step's SLA standing at ``as_of``."""
    if auto_terminate_at is not None and as_of >= auto_terminate_at:
        return SlaStatus.EXPIRED
    if step_deadline_at is not None and as_of >= step_deadline_at:
        return SlaStatus.OVERDUE
    if step_started_at is None:
        return SlaStatus.ON_TRACK

    elapsed = as_of - step_started_at
    if critical_hours is not None and elapsed >= timedelta(hours=critical_hours):
        return SlaStatus.CRITICAL
    if warning_hours is not None:
        if elapsed >= timedelta(hours=warning_hours):
            return SlaStatus.WARNING
    elif step_deadline_at is not None:
        window_seconds = Decimal(str((step_deadline_at - step_started_at).total_seconds()))
        if Decimal(str(elapsed.total_seconds())) >= window_seconds * DEFAULT_WARNING_FRACTION:
            return SlaStatus.WARNING
    return SlaStatus.ON_TRACK
