"""
Pure domain layer.

Value objects and rules with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (except the Clock abstraction itself)

All domain objects are immutable.
"""

from hr_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from hr_kernel.domain.metadata import (
    GenericMetadata,
    LeaveMetadata,
    PromotionMetadata,
    TimesheetMetadata,
    TransferMetadata,
    WorkflowMetadata,
    metadata_to_dict,
    parse_metadata,
)
from hr_kernel.domain.workflow import (
    LIVE_WORKFLOW_STATUSES,
    TERMINAL_WORKFLOW_STATUSES,
    WORKFLOW_TRANSITIONS,
    ActionOptions,
    ActionResult,
    Actor,
    ApprovalSubject,
    ApproverType,
    EscalationAction,
    SignaturePayload,
    StepActionRecord,
    WorkflowAction,
    WorkflowCategory,
    WorkflowEngineConfig,
    WorkflowInstance,
    WorkflowSignature,
    WorkflowStatus,
    WorkflowStep,
    WorkflowTemplate,
    is_valid_transition,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "GenericMetadata",
    "LeaveMetadata",
    "PromotionMetadata",
    "TimesheetMetadata",
    "TransferMetadata",
    "WorkflowMetadata",
    "metadata_to_dict",
    "parse_metadata",
    "LIVE_WORKFLOW_STATUSES",
    "TERMINAL_WORKFLOW_STATUSES",
    "WORKFLOW_TRANSITIONS",
    "ActionOptions",
    "ActionResult",
    "Actor",
    "ApprovalSubject",
    "ApproverType",
    "EscalationAction",
    "SignaturePayload",
    "StepActionRecord",
    "WorkflowAction",
    "WorkflowCategory",
    "WorkflowEngineConfig",
    "WorkflowInstance",
    "WorkflowSignature",
    "WorkflowStatus",
    "WorkflowStep",
    "WorkflowTemplate",
    "is_valid_transition",
]
