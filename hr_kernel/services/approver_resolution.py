"""
hr_kernel.services.approver_resolution -- Resolve a step's concrete approver.

Responsibility:
    Map a step's approver definition (fixed user, role, position,
    reporting line, governance body) plus the subject of the case to one
    approver identity.  The organisational data itself lives behind the
    ``ApproverDirectory`` protocol, supplied by the surrounding application.

Architecture position:
    Kernel > Services.  May import from domain/ and exceptions only.

Invariants enforced:
    - Resolution order per step: the type-specific lookup first, then the
      step's ``alternate_approver_id``.  ``None`` means "unassigned" and
      leaves the step open to any actor holding an override role.
    - Position lookups prefer an acting holder over the primary holder.

Failure modes:
    - ApproverResolutionError wraps any exception raised by the directory.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from hr_kernel.domain.workflow import ApprovalSubject, ApproverType, WorkflowStep
from hr_kernel.exceptions import ApproverResolutionError
from hr_kernel.logging_config import get_logger

logger = get_logger("services.approver_resolution")


class ApproverResolver(Protocol):
    """Resolves the approver for a workflow step."""

    def resolve(self, step: WorkflowStep, subject: ApprovalSubject) -> UUID | None:
        ...


class ApproverDirectory(Protocol):
    """Organisational lookups needed for approver resolution."""

    def position_holder(self, position_id: UUID, company_id: UUID | None) -> UUID | None:
        """Acting holder if any, otherwise primary holder, otherwise any holder."""
        ...

    def role_member(self, role_id: UUID, company_id: UUID | None) -> UUID | None:
        ...

    def manager_of(self, employee_id: UUID) -> UUID | None:
        ...

    def governance_body_chair(self, body_id: UUID) -> UUID | None:
        ...


class StaticApproverResolver:
    """Resolver that only honours fixed users and alternates.

    Useful where no directory is wired in, and in tests.
    """

    def resolve(self, step: WorkflowStep, subject: ApprovalSubject) -> UUID | None:
        if step.approver_type == ApproverType.FIXED_USER and step.approver_user_id:
            return step.approver_user_id
        return step.alternate_approver_id


class DirectoryApproverResolver:
    """Dispatches on ``approver_type`` to an ``ApproverDirectory``."""

    def __init__(self, directory: ApproverDirectory) -> None:
        self._directory = directory

    def resolve(self, step: WorkflowStep, subject: ApprovalSubject) -> UUID | None:
        try:
            approver = self._lookup(step, subject)
        except ApproverResolutionError:
            raise
        except Exception as exc:
            raise ApproverResolutionError(step.approver_type.value, str(exc)) from exc

        if approver is None and step.alternate_approver_id is not None:
            logger.info(
                "approver_fallback_to_alternate",
                extra={
                    "step_order": step.step_order,
                    "approver_type": step.approver_type.value,
                },
            )
            return step.alternate_approver_id
        return approver

    def _lookup(self, step: WorkflowStep, subject: ApprovalSubject) -> UUID | None:
        kind = step.approver_type
        if kind == ApproverType.FIXED_USER:
            return step.approver_user_id
        if kind == ApproverType.POSITION:
            if step.approver_position_id is None:
                return None
            return self._directory.position_holder(
                step.approver_position_id, subject.company_id,
            )
        if kind == ApproverType.ROLE:
            if step.approver_role_id is None:
                return None
            return self._directory.role_member(step.approver_role_id, subject.company_id)
        if kind == ApproverType.REPORTING_LINE:
            employee = subject.employee_id or subject.initiated_by
            if employee is None:
                return None
            return self._directory.manager_of(employee)
        if kind == ApproverType.GOVERNANCE_BODY:
            if step.approver_governance_body_id is None:
                return None
            return self._directory.governance_body_chair(step.approver_governance_body_id)
        raise ApproverResolutionError(kind.value, "unsupported approver type")
