"""
hr_engines.workflow_transitions -- Pure transition resolution for workflow instances.

Responsibility:
    Given an instance's current status and step, the action taken, and the
    step lookups the service already performed, decide the resulting status
    and current step.  The service persists the outcome; this module never
    touches the database.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Terminal-step detection: an approve with no successor step completes
      the instance; step count is never pre-declared.
    - Reject is terminal from any step.
    - Escalate, delegate and comment never move the step pointer.
    - Every produced status change is legal per ``WORKFLOW_TRANSITIONS``.

Failure modes:
    - ValueError when called for a terminal instance or a return without a
      resolved target (the service validates both first).
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from hr_kernel.domain.workflow import (
    TERMINAL_WORKFLOW_STATUSES,
    WorkflowAction,
    WorkflowStatus,
    is_valid_transition,
)


@dataclass(frozen=True)
class StepRef:
    """Identity and order of a template step."""

    step_id: UUID | None
    step_order: int


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of applying one action to an instance."""

    status: WorkflowStatus
    step: StepRef | None
    completes: bool = False
    escalates: bool = False
    reassigns: bool = False

    @property
    def moves_step(self) -> bool:
        return self.step is not None


def resolve_transition(
    current_status: WorkflowStatus,
    action: WorkflowAction,
    next_step: StepRef | None = None,
    return_target: StepRef | None = None,
) -> TransitionOutcome:
    """Compute the status/step outcome of ``action``.

    Args:
        current_status: Status before the action.
        action: The action taken.
        next_step: Lowest active step with a strictly greater order than the
            current one (approve only); None if there is none.
        return_target: Resolved target step (return only).

    Returns:
        TransitionOutcome.  ``step`` is None when the pointer stays put.
    """
    if current_status in TERMINAL_WORKFLOW_STATUSES:
        raise ValueError(f"No transitions out of terminal status {current_status.value}")

    if action == WorkflowAction.APPROVE:
        if next_step is not None:
            outcome = TransitionOutcome(WorkflowStatus.IN_PROGRESS, next_step)
        else:
            outcome = TransitionOutcome(WorkflowStatus.APPROVED, None, completes=True)
    elif action == WorkflowAction.REJECT:
        outcome = TransitionOutcome(WorkflowStatus.REJECTED, None, completes=True)
    elif action == WorkflowAction.RETURN:
        if return_target is None:
            raise ValueError("return requires a resolved target step")
        outcome = TransitionOutcome(WorkflowStatus.RETURNED, return_target)
    elif action == WorkflowAction.ESCALATE:
        outcome = TransitionOutcome(WorkflowStatus.ESCALATED, None, escalates=True)
    elif action == WorkflowAction.DELEGATE:
        outcome = TransitionOutcome(current_status, None, reassigns=True)
    else:
        outcome = TransitionOutcome(current_status, None)

    if not is_valid_transition(current_status, outcome.status):
        raise ValueError(
            f"Illegal transition {current_status.value} -> {outcome.status.value}"
        )
    return outcome


def changes_instance(outcome: TransitionOutcome, current_status: WorkflowStatus) -> bool:
    """Whether persisting ``outcome`` requires an update of the instance row."""
    return (
        outcome.status != current_status
        or outcome.moves_step
        or outcome.escalates
        or outcome.reassigns
    )
