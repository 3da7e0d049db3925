"""
Typed Exception Hierarchy for the HR Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval workflows gate pay, leave, and employment decisions.  Callers must
be able to tell "you are not the approver" from "someone else got there
first" from "the payroll inputs are incomplete" without parsing messages.

Every exception here:
  1. Has its own class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example:
    try:
        service.take_action(instance_id, WorkflowAction.APPROVE, actor)
    except NotAuthorizedError as e:
        api_response(code=e.code, actor=e.actor_id)
    except ConcurrentModificationError:
        instance = service.get_instance(instance_id)  # re-read, then retry

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    HRKernelError (base)
    |
    +-- CallerError
    |   +-- TemplateNotFoundError
    |   +-- NoStepsConfiguredError
    |   +-- InvalidTemplateError
    |   +-- TemplateInUseError
    |   +-- InstanceNotFoundError
    |   +-- SignatureNotFoundError
    |   +-- FinalizationNotFoundError
    |   +-- ReturnTargetNotFoundError
    |   +-- InvalidWorkflowActionError
    |   +-- InvalidMetadataError
    |   +-- CommentRequiredError
    |   +-- DelegationNotAllowedError
    |   +-- WorkflowAlreadyActiveError
    |   +-- WorkflowAlreadyResolvedError
    |   +-- FinalizationAlreadyResolvedError
    |   +-- DuplicateFinalizationError
    |   +-- ApprovalLevelsNotConfiguredError
    |
    +-- AuthorizationError
    |   +-- NotAuthorizedError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |   +-- SettlementAlreadyExistsError
    |
    +-- DependencyError
    |   +-- ApproverResolutionError
    |   +-- SettlementInputError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- IntegrityError
        +-- TamperDetectedError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                           | When Raised
----------------|--------------------------------|--------------------------------------
Caller          | TEMPLATE_NOT_FOUND             | No active template for the code
                | NO_STEPS_CONFIGURED            | Template has no active step
                | INVALID_TEMPLATE               | Duplicate/invalid step orders
                | TEMPLATE_IN_USE                | Step edit while instances are live
                | INSTANCE_NOT_FOUND             | Unknown workflow instance
                | FINALIZATION_NOT_FOUND         | Unknown timesheet finalization
                | RETURN_TARGET_NOT_FOUND        | Return to a missing/invalid step
                | INVALID_WORKFLOW_ACTION        | Action not allowed in this state
                | INVALID_METADATA               | Metadata does not fit the category
                | COMMENT_REQUIRED               | Step requires a comment
                | DELEGATION_NOT_ALLOWED         | Step forbids delegation
                | WORKFLOW_ALREADY_ACTIVE        | Reference already has a live instance
                | WORKFLOW_ALREADY_RESOLVED      | Action on a terminal instance
                | FINALIZATION_ALREADY_RESOLVED  | Action on a non-pending finalization
                | DUPLICATE_FINALIZATION         | Period already submitted
                | APPROVAL_LEVELS_NOT_CONFIGURED | Company has no approval levels
----------------|--------------------------------|--------------------------------------
Authorization   | NOT_AUTHORIZED                 | Actor is not the assigned approver
----------------|--------------------------------|--------------------------------------
Concurrency     | CONCURRENT_MODIFICATION        | Version/state changed underneath
                | SETTLEMENT_ALREADY_EXISTS      | Second settlement for a period
----------------|--------------------------------|--------------------------------------
Dependency      | APPROVER_RESOLUTION_FAILED     | Directory lookup failed
                | SETTLEMENT_INPUT_MISSING       | Rate or inputs missing
----------------|--------------------------------|--------------------------------------
Immutability    | IMMUTABILITY_VIOLATION         | Update/delete of append-only row
----------------|--------------------------------|--------------------------------------
Integrity       | TAMPER_DETECTED                | Signature checksum mismatch

===============================================================================
HANDLING PATTERNS
===============================================================================

* CallerError -> report to the user; do not retry.
* AuthorizationError -> report to the user; nothing was written.
* ConcurrencyError -> re-read state, retry at most once (see
  ``retry_on_conflict``).
* DependencyError -> the transition was not applied; the action ledger
  row (if any) is kept for audit.
* ImmutabilityError / IntegrityError -> log security alert.

===============================================================================
"""

from collections.abc import Callable
from typing import TypeVar

T = TypeVar("T")


class HRKernelError(Exception):
    """
    Base exception for all HR kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "HR_KERNEL_ERROR"


# Caller errors


class CallerError(HRKernelError):
    """Base exception for invalid caller input or state."""

    code: str = "CALLER_ERROR"


class TemplateNotFoundError(CallerError):
    """No active workflow template exists for the given code."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_code: str):
        self.template_code = template_code
        super().__init__(f"No active workflow template: {template_code}")


class NoStepsConfiguredError(CallerError):
    """Template exists but has no active step."""

    code: str = "NO_STEPS_CONFIGURED"

    def __init__(self, template_code: str):
        self.template_code = template_code
        super().__init__(f"Workflow template {template_code} has no active steps")


class InvalidTemplateError(CallerError):
    """Template or step definition is invalid."""

    code: str = "INVALID_TEMPLATE"

    def __init__(self, template_code: str, reason: str):
        self.template_code = template_code
        self.reason = reason
        super().__init__(f"Invalid workflow template {template_code}: {reason}")


class TemplateInUseError(CallerError):
    """Template steps cannot change while live instances reference them."""

    code: str = "TEMPLATE_IN_USE"

    def __init__(self, template_code: str, live_instances: int):
        self.template_code = template_code
        self.live_instances = live_instances
        super().__init__(
            f"Workflow template {template_code} has {live_instances} "
            "live instance(s); steps cannot be replaced"
        )


class InstanceNotFoundError(CallerError):
    """Workflow instance with given ID was not found."""

    code: str = "INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Workflow instance not found: {instance_id}")


class SignatureNotFoundError(CallerError):
    """Workflow signature with given ID was not found."""

    code: str = "SIGNATURE_NOT_FOUND"

    def __init__(self, signature_id: str):
        self.signature_id = signature_id
        super().__init__(f"Workflow signature not found: {signature_id}")


class FinalizationNotFoundError(CallerError):
    """Timekeeper period finalization with given ID was not found."""

    code: str = "FINALIZATION_NOT_FOUND"

    def __init__(self, finalization_id: str):
        self.finalization_id = finalization_id
        super().__init__(f"Period finalization not found: {finalization_id}")


class ReturnTargetNotFoundError(CallerError):
    """Return requested to a step that does not exist or is not allowed."""

    code: str = "RETURN_TARGET_NOT_FOUND"

    def __init__(self, instance_id: str, target_step: int | None, reason: str):
        self.instance_id = instance_id
        self.target_step = target_step
        self.reason = reason
        super().__init__(
            f"Cannot return instance {instance_id} to step {target_step}: {reason}"
        )


class InvalidWorkflowActionError(CallerError):
    """Action is not valid for the instance's current state."""

    code: str = "INVALID_WORKFLOW_ACTION"

    def __init__(self, instance_id: str, action: str, reason: str):
        self.instance_id = instance_id
        self.action = action
        self.reason = reason
        super().__init__(
            f"Action '{action}' not allowed on {instance_id}: {reason}"
        )


class InvalidMetadataError(CallerError):
    """Workflow metadata does not match the schema for its category."""

    code: str = "INVALID_METADATA"

    def __init__(self, category: str, reason: str):
        self.category = category
        self.reason = reason
        super().__init__(f"Invalid metadata for category {category}: {reason}")


class CommentRequiredError(CallerError):
    """The current step requires a comment for this action."""

    code: str = "COMMENT_REQUIRED"

    def __init__(self, instance_id: str, step_order: int, action: str):
        self.instance_id = instance_id
        self.step_order = step_order
        self.action = action
        super().__init__(
            f"Step {step_order} of {instance_id} requires a comment to {action}"
        )


class DelegationNotAllowedError(CallerError):
    """The current step does not allow delegation."""

    code: str = "DELEGATION_NOT_ALLOWED"

    def __init__(self, instance_id: str, step_order: int, reason: str = "step forbids delegation"):
        self.instance_id = instance_id
        self.step_order = step_order
        self.reason = reason
        super().__init__(
            f"Cannot delegate step {step_order} of {instance_id}: {reason}"
        )


class WorkflowAlreadyActiveError(CallerError):
    """The referenced record already has a live workflow instance."""

    code: str = "WORKFLOW_ALREADY_ACTIVE"

    def __init__(self, reference_type: str, reference_id: str, instance_id: str):
        self.reference_type = reference_type
        self.reference_id = reference_id
        self.instance_id = instance_id
        super().__init__(
            f"{reference_type} {reference_id} already has live workflow {instance_id}"
        )


class WorkflowAlreadyResolvedError(CallerError):
    """Workflow instance is in a terminal status."""

    code: str = "WORKFLOW_ALREADY_RESOLVED"

    def __init__(self, instance_id: str, status: str):
        self.instance_id = instance_id
        self.status = status
        super().__init__(f"Workflow instance {instance_id} is already {status}")


class FinalizationAlreadyResolvedError(CallerError):
    """Finalization is no longer pending approval."""

    code: str = "FINALIZATION_ALREADY_RESOLVED"

    def __init__(self, finalization_id: str, status: str):
        self.finalization_id = finalization_id
        self.status = status
        super().__init__(
            f"Period finalization {finalization_id} is already {status}"
        )


class DuplicateFinalizationError(CallerError):
    """Employees in the batch are already in an open finalization for an overlapping period."""

    code: str = "DUPLICATE_FINALIZATION"

    def __init__(
        self,
        company_id: str,
        period_start: str,
        period_end: str,
        employee_ids: list[str],
        existing_id: str,
    ):
        self.company_id = company_id
        self.period_start = period_start
        self.period_end = period_end
        self.employee_ids = employee_ids
        self.existing_id = existing_id
        super().__init__(
            f"{len(employee_ids)} employee(s) for company {company_id} are already in "
            f"open finalization {existing_id} overlapping {period_start}..{period_end}"
        )


class ApprovalLevelsNotConfiguredError(CallerError):
    """Company has no active timesheet approval levels."""

    code: str = "APPROVAL_LEVELS_NOT_CONFIGURED"

    def __init__(self, company_id: str):
        self.company_id = company_id
        super().__init__(f"No timesheet approval levels configured for {company_id}")


# Authorization errors


class AuthorizationError(HRKernelError):
    """Base exception for authorization failures."""

    code: str = "AUTHORIZATION_ERROR"


class NotAuthorizedError(AuthorizationError):
    """Actor is not permitted to act on the current step."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, entity_id: str, actor_id: str, reason: str):
        self.entity_id = entity_id
        self.actor_id = actor_id
        self.reason = reason
        super().__init__(
            f"Actor {actor_id} is not authorized on {entity_id}: {reason}"
        )


# Concurrency errors


class ConcurrencyError(HRKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """Compare-and-swap guard failed: the row changed since it was read."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: str, expected_version: int | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Concurrent modification on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class SettlementAlreadyExistsError(ConcurrencyError):
    """Pay element summaries already exist for the finalization."""

    code: str = "SETTLEMENT_ALREADY_EXISTS"

    def __init__(self, finalization_id: str):
        self.finalization_id = finalization_id
        super().__init__(f"Settlement already exists for finalization {finalization_id}")


# Dependency errors


class DependencyError(HRKernelError):
    """Base exception for failures of an external collaborator or input."""

    code: str = "DEPENDENCY_ERROR"


class ApproverResolutionError(DependencyError):
    """The approver directory failed while resolving a step approver."""

    code: str = "APPROVER_RESOLUTION_FAILED"

    def __init__(self, approver_type: str, reason: str):
        self.approver_type = approver_type
        self.reason = reason
        super().__init__(f"Could not resolve {approver_type} approver: {reason}")


class SettlementInputError(DependencyError):
    """Settlement inputs (compensation, entries) are missing or invalid."""

    code: str = "SETTLEMENT_INPUT_MISSING"

    def __init__(self, finalization_id: str, reason: str, employee_id: str | None = None):
        self.finalization_id = finalization_id
        self.employee_id = employee_id
        self.reason = reason
        super().__init__(f"Settlement input error for {finalization_id}: {reason}")


# Immutability errors


class ImmutabilityError(HRKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Integrity errors


class IntegrityError(HRKernelError):
    """Base exception for tamper-evidence failures."""

    code: str = "INTEGRITY_ERROR"


class TamperDetectedError(IntegrityError):
    """Stored checksum does not match the recomputed one."""

    code: str = "TAMPER_DETECTED"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"Checksum mismatch on {entity_type} {entity_id}")


def retry_on_conflict(operation: Callable[[], T], attempts: int = 2) -> T:
    """
    Run ``operation``, retrying on ConcurrentModificationError.

    The operation must re-read any state it depends on; the default of two
    attempts means one retry.
    """
    for attempt in range(attempts):
        try:
            return operation()
        except ConcurrentModificationError:
            if attempt == attempts - 1:
                raise
    raise RuntimeError("retry_on_conflict called with attempts < 1")
