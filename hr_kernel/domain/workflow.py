"""
Workflow domain types (``hr_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the generic approval workflow engine.  Defines the
instance lifecycle state machine, template/step definitions, instance
snapshots, the action ledger record, and signature records.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, or outer layers.

Invariants enforced
-------------------
* Lifecycle state machine -- ``WORKFLOW_TRANSITIONS`` defines the only
  valid status changes.  Terminal states have no outgoing edges.
* Step ordering -- ``WorkflowStep.step_order`` is >= 1; precedence is
  defined purely by order, gaps are allowed.
* Instance snapshots carry ``version``, the token every mutation must
  present to the compare-and-swap update.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from hr_kernel.domain.metadata import WorkflowMetadata


# =========================================================================
# Instance Status Lifecycle
# =========================================================================


class WorkflowStatus(str, Enum):
    """Workflow instance lifecycle states."""

    DRAFT = "draft"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RETURNED = "returned"
    ESCALATED = "escalated"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    AUTO_TERMINATED = "auto_terminated"


_FROM_LIVE: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.IN_PROGRESS,
    WorkflowStatus.RETURNED,
    WorkflowStatus.ESCALATED,
    WorkflowStatus.APPROVED,
    WorkflowStatus.REJECTED,
    WorkflowStatus.CANCELLED,
    WorkflowStatus.AUTO_TERMINATED,
})

WORKFLOW_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.DRAFT: frozenset({
        WorkflowStatus.PENDING,
        WorkflowStatus.CANCELLED,
    }),
    WorkflowStatus.PENDING: _FROM_LIVE,
    WorkflowStatus.IN_PROGRESS: _FROM_LIVE,
    WorkflowStatus.RETURNED: _FROM_LIVE,
    WorkflowStatus.ESCALATED: _FROM_LIVE,
    WorkflowStatus.APPROVED: frozenset(),
    WorkflowStatus.REJECTED: frozenset(),
    WorkflowStatus.CANCELLED: frozenset(),
    WorkflowStatus.AUTO_TERMINATED: frozenset(),
}

TERMINAL_WORKFLOW_STATUSES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.APPROVED,
    WorkflowStatus.REJECTED,
    WorkflowStatus.CANCELLED,
    WorkflowStatus.AUTO_TERMINATED,
})

# Statuses that count as "in flight" for pending lists and the
# one-live-instance-per-reference rule.
LIVE_WORKFLOW_STATUSES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.PENDING,
    WorkflowStatus.IN_PROGRESS,
    WorkflowStatus.RETURNED,
    WorkflowStatus.ESCALATED,
})


def is_valid_transition(current: WorkflowStatus, target: WorkflowStatus) -> bool:
    """True when ``current -> target`` is a legal move.

    Staying in a live status (e.g. escalated -> escalated on delegate) is
    always allowed; terminal statuses accept nothing.
    """
    if current in TERMINAL_WORKFLOW_STATUSES:
        return False
    if current == target:
        return True
    return target in WORKFLOW_TRANSITIONS[current]


class WorkflowAction(str, Enum):
    """Actions an actor can take on the current step."""

    APPROVE = "approve"
    REJECT = "reject"
    RETURN = "return"
    ESCALATE = "escalate"
    DELEGATE = "delegate"
    COMMENT = "comment"


class ApproverType(str, Enum):
    """How a step's approver is determined."""

    FIXED_USER = "fixed_user"
    ROLE = "role"
    POSITION = "position"
    REPORTING_LINE = "reporting_line"
    GOVERNANCE_BODY = "governance_body"


class WorkflowCategory(str, Enum):
    """Business process a template belongs to."""

    LEAVE_REQUEST = "leave_request"
    PROBATION_CONFIRMATION = "probation_confirmation"
    PROBATION_EXTENSION = "probation_extension"
    HEADCOUNT_REQUEST = "headcount_request"
    TRAINING_REQUEST = "training_request"
    PROMOTION = "promotion"
    TRANSFER = "transfer"
    SECONDMENT = "secondment"
    ACTING = "acting"
    RESIGNATION = "resignation"
    TERMINATION = "termination"
    HIRE = "hire"
    REHIRE = "rehire"
    EXPENSE_CLAIM = "expense_claim"
    LETTER_REQUEST = "letter_request"
    QUALIFICATION = "qualification"
    SALARY_CHANGE = "salary_change"
    RATE_CHANGE = "rate_change"
    TIMESHEET = "timesheet"
    GENERAL = "general"


class EscalationAction(str, Enum):
    """What an external handler should do with an escalated step."""

    NOTIFY_ALTERNATE = "notify_alternate"
    NOTIFY_HR = "notify_hr"
    AUTO_APPROVE = "auto_approve"
    AUTO_REJECT = "auto_reject"


# =========================================================================
# Template and Step Definitions
# =========================================================================


@dataclass(frozen=True)
class WorkflowStep:
    """One ordered stage of a template."""

    step_order: int
    name: str
    approver_type: ApproverType
    approver_user_id: UUID | None = None
    approver_role_id: UUID | None = None
    approver_position_id: UUID | None = None
    approver_governance_body_id: UUID | None = None
    requires_signature: bool = False
    requires_comment: bool = False
    can_delegate: bool = False
    escalation_hours: int | None = None
    escalation_action: EscalationAction | None = None
    alternate_approver_id: UUID | None = None
    sla_warning_hours: int | None = None
    sla_critical_hours: int | None = None
    is_active: bool = True
    id: UUID | None = None
    template_id: UUID | None = None

    def __post_init__(self) -> None:
        if self.step_order < 1:
            raise ValueError(f"step_order must be >= 1, got {self.step_order}")
        if self.escalation_hours is not None and self.escalation_hours <= 0:
            raise ValueError("escalation_hours must be positive")


@dataclass(frozen=True)
class WorkflowTemplate:
    """A reusable approval definition for one category."""

    code: str
    name: str
    category: WorkflowCategory
    description: str = ""
    company_id: UUID | None = None
    auto_terminate_hours: int | None = None
    allow_return_to_previous: bool = True
    requires_signature: bool = False
    requires_letter: bool = False
    is_active: bool = True
    start_date: date | None = None
    end_date: date | None = None
    id: UUID | None = None

    def __post_init__(self) -> None:
        if not self.code:
            raise ValueError("template code must not be empty")
        if self.auto_terminate_hours is not None and self.auto_terminate_hours <= 0:
            raise ValueError("auto_terminate_hours must be positive")
        if (
            self.start_date is not None
            and self.end_date is not None
            and self.end_date < self.start_date
        ):
            raise ValueError("end_date must not precede start_date")

    def is_effective_on(self, as_of: date) -> bool:
        """Whether ``as_of`` falls inside the template's active window."""
        if self.start_date is not None and as_of < self.start_date:
            return False
        if self.end_date is not None and as_of > self.end_date:
            return False
        return True


# =========================================================================
# Runtime Records
# =========================================================================


@dataclass(frozen=True)
class Actor:
    """Caller identity supplied by the identity collaborator."""

    actor_id: UUID
    roles: frozenset[str] = frozenset()
    name: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class ApprovalSubject:
    """Who or what an approver is resolved for."""

    employee_id: UUID | None = None
    company_id: UUID | None = None
    initiated_by: UUID | None = None


@dataclass(frozen=True)
class SignaturePayload:
    """Signature captured with an action on a signing step."""

    signature_text: str
    signer_name: str | None = None
    signer_email: str | None = None


@dataclass(frozen=True)
class ActionOptions:
    """Optional inputs to ``take_action``; which ones matter depends on the action."""

    comment: str | None = None
    internal_notes: str | None = None
    delegate_to: UUID | None = None
    delegation_reason: str | None = None
    return_to_step: int | None = None
    return_reason: str | None = None
    signature: SignaturePayload | None = None


@dataclass(frozen=True)
class WorkflowInstance:
    """Snapshot of a live or finished approval case."""

    id: UUID
    template_id: UUID
    category: WorkflowCategory
    reference_type: str
    reference_id: UUID
    status: WorkflowStatus
    current_step_id: UUID | None
    current_step_order: int | None
    current_approver_id: UUID | None
    initiated_by: UUID
    initiated_at: datetime
    version: int
    company_id: UUID | None = None
    metadata: WorkflowMetadata | None = None
    deadline_at: datetime | None = None
    auto_terminate_at: datetime | None = None
    escalated_at: datetime | None = None
    current_step_started_at: datetime | None = None
    current_step_deadline_at: datetime | None = None
    completed_at: datetime | None = None
    completed_by: UUID | None = None
    final_action: WorkflowAction | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_WORKFLOW_STATUSES


@dataclass(frozen=True)
class StepActionRecord:
    """One immutable row of the action ledger."""

    id: UUID
    instance_id: UUID
    step_id: UUID | None
    step_order: int
    sequence: int
    action: WorkflowAction
    actor_id: UUID
    acted_at: datetime
    comment: str | None = None
    internal_notes: str | None = None
    delegated_to: UUID | None = None
    delegation_reason: str | None = None
    return_to_step: int | None = None
    return_reason: str | None = None


@dataclass(frozen=True)
class WorkflowSignature:
    """Signature stored against one ledger row."""

    id: UUID
    instance_id: UUID
    step_action_id: UUID
    signer_id: UUID
    signature_text: str
    signed_at: datetime
    signature_hash: str
    signer_name: str | None = None
    signer_email: str | None = None


@dataclass(frozen=True)
class ActionResult:
    """What ``take_action`` did: the ledger row plus the resulting snapshot."""

    action_record: StepActionRecord
    instance: WorkflowInstance
    signature: WorkflowSignature | None = None
    transitioned: bool = False
    details: dict[str, Any] = field(default_factory=dict)


# =========================================================================
# Engine Configuration
# =========================================================================


@dataclass(frozen=True)
class WorkflowEngineConfig:
    """Tunables for the workflow service.

    ``override_roles`` may act on any step regardless of the assigned
    approver (HR administrators, system jobs).
    """

    override_roles: frozenset[str] = frozenset({"hr_admin", "system_admin"})
    allow_initiator_comment: bool = True
    comment_required_actions: frozenset[WorkflowAction] = frozenset({
        WorkflowAction.APPROVE,
        WorkflowAction.REJECT,
        WorkflowAction.RETURN,
    })
