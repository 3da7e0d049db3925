"""
Module: hr_kernel.models.workflow
Responsibility: ORM persistence for workflow templates, steps, instances,
    the step action ledger, and signatures.

Architecture position: Kernel > Models.  May import from db/base.py,
    domain/ and exceptions only.

Invariants enforced:
    - Step order uniqueness: UNIQUE(template_id, step_order).
    - One live instance per reference: partial unique index on
      (reference_type, reference_id) over live statuses.
    - Valid status values: DB check constraint on workflow_instances.status.
    - Ledger ordering: UNIQUE(instance_id, sequence) on step actions.
    - Append-only ledger: step actions and signatures cannot be updated or
      deleted (ORM listeners raise ImmutabilityViolationError).
    - One signature per action: UNIQUE(step_action_id).

Failure modes:
    - IntegrityError on a second live instance for the same reference.
    - IntegrityError on duplicate ledger sequence (concurrent writers).
    - ImmutabilityViolationError on step action / signature UPDATE/DELETE.

Audit relevance:
    Step actions are the audit trail of every decision taken on a case;
    instances are never deleted, terminal rows are retained.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hr_kernel.db.base import Base, TrackedBase, UUIDString
from hr_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from hr_kernel.domain.workflow import (
        StepActionRecord,
        WorkflowInstance,
        WorkflowSignature,
        WorkflowStep,
        WorkflowTemplate,
    )

_LIVE_STATUS_SQL = "status IN ('pending', 'in_progress', 'returned', 'escalated')"


class WorkflowTemplateModel(TrackedBase):
    """Persistent workflow template.

    Contract:
        Only activation flags change once a live instance references the
        template; step replacement is refused by the template service.
    """

    __tablename__ = "workflow_templates"

    __table_args__ = (
        Index("ix_workflow_templates_category", "category"),
    )

    code: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    company_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    auto_terminate_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    allow_return_to_previous: Mapped[bool] = mapped_column(default=True, nullable=False)
    requires_signature: Mapped[bool] = mapped_column(default=False, nullable=False)
    requires_letter: Mapped[bool] = mapped_column(default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    start_date: Mapped[date | None] = mapped_column(nullable=True)
    end_date: Mapped[date | None] = mapped_column(nullable=True)

    steps: Mapped[list["WorkflowStepModel"]] = relationship(
        "WorkflowStepModel",
        back_populates="template",
        order_by="WorkflowStepModel.step_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<WorkflowTemplate {self.code} category={self.category} active={self.is_active}>"

    def to_dto(self) -> WorkflowTemplate:
        """Convert ORM model to frozen domain DTO."""
        from hr_kernel.domain.workflow import (
            WorkflowCategory,
            WorkflowTemplate as WorkflowTemplateDTO,
        )

        return WorkflowTemplateDTO(
            id=self.id,
            code=self.code,
            name=self.name,
            category=WorkflowCategory(self.category),
            description=self.description,
            company_id=self.company_id,
            auto_terminate_hours=self.auto_terminate_hours,
            allow_return_to_previous=self.allow_return_to_previous,
            requires_signature=self.requires_signature,
            requires_letter=self.requires_letter,
            is_active=self.is_active,
            start_date=self.start_date,
            end_date=self.end_date,
        )

    @classmethod
    def from_dto(cls, dto: WorkflowTemplate, created_by_id: UUID) -> WorkflowTemplateModel:
        """Create ORM model from domain DTO."""
        kwargs: dict[str, Any] = {}
        if dto.id is not None:
            kwargs["id"] = dto.id
        return cls(
            code=dto.code,
            name=dto.name,
            category=dto.category.value,
            description=dto.description,
            company_id=dto.company_id,
            auto_terminate_hours=dto.auto_terminate_hours,
            allow_return_to_previous=dto.allow_return_to_previous,
            requires_signature=dto.requires_signature,
            requires_letter=dto.requires_letter,
            is_active=dto.is_active,
            start_date=dto.start_date,
            end_date=dto.end_date,
            created_by_id=created_by_id,
            **kwargs,
        )


class WorkflowStepModel(TrackedBase):
    """Persistent template step."""

    __tablename__ = "workflow_steps"

    __table_args__ = (
        UniqueConstraint("template_id", "step_order", name="uq_workflow_steps_order"),
        CheckConstraint("step_order >= 1", name="ck_workflow_steps_order_positive"),
        CheckConstraint(
            "approver_type IN ('fixed_user', 'role', 'position', "
            "'reporting_line', 'governance_body')",
            name="ck_workflow_steps_approver_type",
        ),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_templates.id"), nullable=False,
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    approver_type: Mapped[str] = mapped_column(String(30), nullable=False)
    approver_user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approver_role_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approver_position_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approver_governance_body_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    requires_signature: Mapped[bool] = mapped_column(default=False, nullable=False)
    requires_comment: Mapped[bool] = mapped_column(default=False, nullable=False)
    can_delegate: Mapped[bool] = mapped_column(default=False, nullable=False)
    escalation_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    escalation_action: Mapped[str | None] = mapped_column(String(30), nullable=True)
    alternate_approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    sla_warning_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sla_critical_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    template: Mapped["WorkflowTemplateModel"] = relationship(
        "WorkflowTemplateModel", back_populates="steps",
    )

    def __repr__(self) -> str:
        return f"<WorkflowStep {self.template_id}#{self.step_order} {self.approver_type}>"

    def to_dto(self) -> WorkflowStep:
        """Convert ORM model to frozen domain DTO."""
        from hr_kernel.domain.workflow import (
            ApproverType,
            EscalationAction,
            WorkflowStep as WorkflowStepDTO,
        )

        return WorkflowStepDTO(
            id=self.id,
            template_id=self.template_id,
            step_order=self.step_order,
            name=self.name,
            approver_type=ApproverType(self.approver_type),
            approver_user_id=self.approver_user_id,
            approver_role_id=self.approver_role_id,
            approver_position_id=self.approver_position_id,
            approver_governance_body_id=self.approver_governance_body_id,
            requires_signature=self.requires_signature,
            requires_comment=self.requires_comment,
            can_delegate=self.can_delegate,
            escalation_hours=self.escalation_hours,
            escalation_action=(
                EscalationAction(self.escalation_action)
                if self.escalation_action else None
            ),
            alternate_approver_id=self.alternate_approver_id,
            sla_warning_hours=self.sla_warning_hours,
            sla_critical_hours=self.sla_critical_hours,
            is_active=self.is_active,
        )

    @classmethod
    def from_dto(cls, dto: WorkflowStep, template_id: UUID, created_by_id: UUID) -> WorkflowStepModel:
        """Create ORM model from domain DTO."""
        return cls(
            template_id=template_id,
            step_order=dto.step_order,
            name=dto.name,
            approver_type=dto.approver_type.value,
            approver_user_id=dto.approver_user_id,
            approver_role_id=dto.approver_role_id,
            approver_position_id=dto.approver_position_id,
            approver_governance_body_id=dto.approver_governance_body_id,
            requires_signature=dto.requires_signature,
            requires_comment=dto.requires_comment,
            can_delegate=dto.can_delegate,
            escalation_hours=dto.escalation_hours,
            escalation_action=dto.escalation_action.value if dto.escalation_action else None,
            alternate_approver_id=dto.alternate_approver_id,
            sla_warning_hours=dto.sla_warning_hours,
            sla_critical_hours=dto.sla_critical_hours,
            is_active=dto.is_active,
            created_by_id=created_by_id,
        )


class WorkflowInstanceModel(Base):
    """Persistent workflow instance.

    Contract:
        Mutated only through the compare-and-swap update in the workflow
        service, which bumps ``version`` on every change.  Never deleted.
    """

    __tablename__ = "workflow_instances"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'pending', 'in_progress', 'returned', "
            "'escalated', 'approved', 'rejected', 'cancelled', 'auto_terminated')",
            name="ck_workflow_instances_valid_status",
        ),
        Index(
            "ix_workflow_instances_live_reference",
            "reference_type", "reference_id",
            unique=True,
            postgresql_where=text(_LIVE_STATUS_SQL),
            sqlite_where=text(_LIVE_STATUS_SQL),
        ),
        Index("ix_workflow_instances_approver_status", "current_approver_id", "status"),
        Index("ix_workflow_instances_auto_terminate", "status", "auto_terminate_at"),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_templates.id"), nullable=False,
    )
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    reference_type: Mapped[str] = mapped_column(String(100), nullable=False)
    reference_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    current_step_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("workflow_steps.id"), nullable=True,
    )
    current_step_order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    initiated_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    initiated_at: Mapped[datetime] = mapped_column(nullable=False)
    company_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    deadline_at: Mapped[datetime | None] = mapped_column(nullable=True)
    auto_terminate_at: Mapped[datetime | None] = mapped_column(nullable=True)
    escalated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    current_step_started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    current_step_deadline_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    final_action: Mapped[str | None] = mapped_column(String(30), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    template: Mapped["WorkflowTemplateModel"] = relationship("WorkflowTemplateModel")

    def __repr__(self) -> str:
        return (
            f"<WorkflowInstance {self.id} {self.reference_type}/{self.reference_id} "
            f"status={self.status} step={self.current_step_order} v{self.version}>"
        )

    def to_dto(self) -> WorkflowInstance:
        """Convert ORM model to frozen domain DTO."""
        from hr_kernel.domain.metadata import parse_metadata
        from hr_kernel.domain.workflow import (
            WorkflowAction,
            WorkflowCategory,
            WorkflowInstance as WorkflowInstanceDTO,
            WorkflowStatus,
        )

        return WorkflowInstanceDTO(
            id=self.id,
            template_id=self.template_id,
            category=WorkflowCategory(self.category),
            reference_type=self.reference_type,
            reference_id=self.reference_id,
            status=WorkflowStatus(self.status),
            current_step_id=self.current_step_id,
            current_step_order=self.current_step_order,
            current_approver_id=self.current_approver_id,
            initiated_by=self.initiated_by,
            initiated_at=self.initiated_at,
            version=self.version,
            company_id=self.company_id,
            metadata=parse_metadata(self.category, self.metadata_),
            deadline_at=self.deadline_at,
            auto_terminate_at=self.auto_terminate_at,
            escalated_at=self.escalated_at,
            current_step_started_at=self.current_step_started_at,
            current_step_deadline_at=self.current_step_deadline_at,
            completed_at=self.completed_at,
            completed_by=self.completed_by,
            final_action=WorkflowAction(self.final_action) if self.final_action else None,
        )


class WorkflowStepActionModel(Base):
    """One ledger row per accepted action. Append-only."""

    __tablename__ = "workflow_step_actions"

    __table_args__ = (
        UniqueConstraint("instance_id", "sequence", name="uq_workflow_step_actions_sequence"),
        Index("ix_workflow_step_actions_instance", "instance_id", "acted_at"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_instances.id"), nullable=False,
    )
    step_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    acted_at: Mapped[datetime] = mapped_column(nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    internal_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    delegated_to: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    delegation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    return_to_step: Mapped[int | None] = mapped_column(Integer, nullable=True)
    return_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<WorkflowStepAction {self.instance_id}#{self.sequence} "
            f"{self.action} by {self.actor_id}>"
        )

    def to_dto(self) -> StepActionRecord:
        """Convert ORM model to frozen domain DTO."""
        from hr_kernel.domain.workflow import StepActionRecord as StepActionDTO, WorkflowAction

        return StepActionDTO(
            id=self.id,
            instance_id=self.instance_id,
            step_id=self.step_id,
            step_order=self.step_order,
            sequence=self.sequence,
            action=WorkflowAction(self.action),
            actor_id=self.actor_id,
            acted_at=self.acted_at,
            comment=self.comment,
            internal_notes=self.internal_notes,
            delegated_to=self.delegated_to,
            delegation_reason=self.delegation_reason,
            return_to_step=self.return_to_step,
            return_reason=self.return_reason,
        )


class WorkflowSignatureModel(Base):
    """Signature captured with a step action. Append-only."""

    __tablename__ = "workflow_signatures"

    __table_args__ = (
        UniqueConstraint("step_action_id", name="uq_workflow_signatures_action"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_instances.id"), nullable=False,
    )
    step_action_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_step_actions.id"), nullable=False,
    )
    signer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    signer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    signer_email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    signature_text: Mapped[str] = mapped_column(Text, nullable=False)
    signed_at: Mapped[datetime] = mapped_column(nullable=False)
    signature_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<WorkflowSignature {self.id} action={self.step_action_id}>"

    def to_dto(self) -> WorkflowSignature:
        """Convert ORM model to frozen domain DTO."""
        from hr_kernel.domain.workflow import WorkflowSignature as WorkflowSignatureDTO

        return WorkflowSignatureDTO(
            id=self.id,
            instance_id=self.instance_id,
            step_action_id=self.step_action_id,
            signer_id=self.signer_id,
            signature_text=self.signature_text,
            signed_at=self.signed_at,
            signature_hash=self.signature_hash,
            signer_name=self.signer_name,
            signer_email=self.signer_email,
        )


# =============================================================================
# ORM-Level Immutability for the Action Ledger (Append-Only)
# =============================================================================


@event.listens_for(WorkflowStepActionModel, "before_update")
def prevent_step_action_update(mapper, connection, target):
    """Prevent updates to ledger rows."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowStepAction",
        entity_id=str(target.id),
        reason="Workflow step actions are immutable -- cannot modify",
    )


@event.listens_for(WorkflowStepActionModel, "before_delete")
def prevent_step_action_delete(mapper, connection, target):
    """Prevent deletion of ledger rows."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowStepAction",
        entity_id=str(target.id),
        reason="Workflow step actions are immutable -- cannot delete",
    )


@event.listens_for(WorkflowSignatureModel, "before_update")
def prevent_signature_update(mapper, connection, target):
    """Prevent updates to signatures."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowSignature",
        entity_id=str(target.id),
        reason="Workflow signatures are immutable -- cannot modify",
    )


@event.listens_for(WorkflowSignatureModel, "before_delete")
def prevent_signature_delete(mapper, connection, target):
    """Prevent deletion of signatures."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowSignature",
        entity_id=str(target.id),
        reason="Workflow signatures are immutable -- cannot delete",
    )
