"""
hr_kernel.services.template_service -- Workflow template store.

Responsibility:
    Create, look up, activate and re-step workflow templates.  Run-time
    callers (the workflow service) only read through this service.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.
    Flushes only; the caller owns commit.

Invariants enforced:
    - Step orders are unique per template and >= 1.
    - Steps are never deleted: replacing steps upserts by order and
      deactivates orders that disappeared, so finished instances keep
      valid step references.
    - Steps cannot be replaced while a live instance references the
      template; activation flags may always change.

Failure modes:
    - TemplateNotFoundError for unknown codes / inactive templates.
    - InvalidTemplateError for duplicate codes or invalid step orders.
    - TemplateInUseError on step replacement with live instances.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from hr_kernel.domain.workflow import (
    LIVE_WORKFLOW_STATUSES,
    WorkflowStep,
    WorkflowTemplate,
)
from hr_kernel.exceptions import (
    InvalidTemplateError,
    TemplateInUseError,
    TemplateNotFoundError,
)
from hr_kernel.logging_config import get_logger
from hr_kernel.models.workflow import (
    WorkflowInstanceModel,
    WorkflowStepModel,
    WorkflowTemplateModel,
)

logger = get_logger("services.template_service")


def validate_steps(template_code: str, steps: Sequence[WorkflowStep]) -> None:
    """Reject duplicate step orders."""
    orders = [s.step_order for s in steps]
    duplicates = sorted({o for o in orders if orders.count(o) > 1})
    if duplicates:
        raise InvalidTemplateError(
            template_code, f"duplicate step_order values {duplicates}",
        )


class WorkflowTemplateService:
    """Reads and maintains workflow templates and their steps."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_template(
        self,
        template: WorkflowTemplate,
        steps: Sequence[WorkflowStep],
        actor_id: UUID,
    ) -> WorkflowTemplate:
        """Persist a new template with its steps."""
        validate_steps(template.code, steps)
        if self._find_model(template.code) is not None:
            raise InvalidTemplateError(template.code, "code already exists")

        model = WorkflowTemplateModel.from_dto(template, created_by_id=actor_id)
        self._session.add(model)
        self._session.flush()

        for step in steps:
            self._session.add(WorkflowStepModel.from_dto(step, model.id, actor_id))
        self._session.flush()
        self._session.refresh(model)

        logger.info(
            "workflow_template_created",
            extra={
                "template_code": template.code,
                "category": template.category.value,
                "step_count": len(steps),
            },
        )
        return model.to_dto()

    def set_template_active(self, code: str, is_active: bool, actor_id: UUID) -> WorkflowTemplate:
        """Toggle a template's activation flag."""
        model = self._load_model(code)
        model.is_active = is_active
        model.updated_by_id = actor_id
        self._session.flush()
        logger.info(
            "workflow_template_activation_changed",
            extra={"template_code": code, "is_active": is_active},
        )
        return model.to_dto()

    def replace_steps(
        self,
        code: str,
        steps: Sequence[WorkflowStep],
        actor_id: UUID,
    ) -> tuple[WorkflowStep, ...]:
        """Make ``steps`` the template's active step set."""
        validate_steps(code, steps)
        model = self._load_model(code)

        live = self.count_live_instances(model.id)
        if live:
            raise TemplateInUseError(code, live)

        existing = {s.step_order: s for s in model.steps}
        wanted = {s.step_order for s in steps}

        for step in steps:
            current = existing.get(step.step_order)
            if current is None:
                self._session.add(WorkflowStepModel.from_dto(step, model.id, actor_id))
                continue
            fresh = WorkflowStepModel.from_dto(step, model.id, actor_id)
            for column in WorkflowStepModel.__table__.columns.keys():
                if column in ("id", "template_id", "created_at", "created_by_id", "updated_at"):
                    continue
                setattr(current, column, getattr(fresh, column))
            current.updated_by_id = actor_id

        for order, current in existing.items():
            if order not in wanted and current.is_active:
                current.is_active = False
                current.updated_by_id = actor_id

        self._session.flush()
        self._session.expire(model, ["steps"])
        logger.info(
            "workflow_template_steps_replaced",
            extra={"template_code": code, "step_count": len(steps)},
        )
        return self.get_steps(model.id)

    def install_from_config(
        self,
        definitions: Iterable[tuple[WorkflowTemplate, Sequence[WorkflowStep]]],
        actor_id: UUID,
    ) -> list[str]:
        """Create every configured template that does not exist yet.

        Returns the codes that were created.  Existing templates are left
        untouched.
        """
        created: list[str] = []
        for template, steps in definitions:
            if self._find_model(template.code) is not None:
                logger.debug(
                    "workflow_template_install_skipped",
                    extra={"template_code": template.code},
                )
                continue
            self.create_template(template, steps, actor_id)
            created.append(template.code)
        logger.info("workflow_templates_installed", extra={"created": created})
        return created

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_template(self, code: str) -> WorkflowTemplate:
        return self._load_model(code).to_dto()

    def get_active_template(self, code: str, as_of: date) -> WorkflowTemplate:
        """Active template for ``code`` whose window covers ``as_of``."""
        model = self._find_model(code)
        if model is None or not model.is_active:
            raise TemplateNotFoundError(code)
        template = model.to_dto()
        if not template.is_effective_on(as_of):
            raise TemplateNotFoundError(code)
        return template

    def get_template_by_id(self, template_id: UUID) -> WorkflowTemplate:
        model = self._session.get(WorkflowTemplateModel, template_id)
        if model is None:
            raise TemplateNotFoundError(str(template_id))
        return model.to_dto()

    def get_steps(self, template_id: UUID, active_only: bool = True) -> tuple[WorkflowStep, ...]:
        stmt = select(WorkflowStepModel).where(WorkflowStepModel.template_id == template_id)
        if active_only:
            stmt = stmt.where(WorkflowStepModel.is_active.is_(True))
        stmt = stmt.order_by(WorkflowStepModel.step_order)
        return tuple(m.to_dto() for m in self._session.scalars(stmt))

    def get_first_step(self, template_id: UUID) -> WorkflowStep | None:
        steps = self.get_steps(template_id)
        return steps[0] if steps else None

    def get_next_step(self, template_id: UUID, after_order: int) -> WorkflowStep | None:
        """Lowest active step with an order strictly greater than ``after_order``."""
        for step in self.get_steps(template_id):
            if step.step_order > after_order:
                return step
        return None

    def get_step_by_order(self, template_id: UUID, step_order: int) -> WorkflowStep | None:
        for step in self.get_steps(template_id):
            if step.step_order == step_order:
                return step
        return None

    def get_step(self, step_id: UUID) -> WorkflowStep | None:
        model = self._session.get(WorkflowStepModel, step_id)
        return model.to_dto() if model is not None else None

    def count_live_instances(self, template_id: UUID) -> int:
        stmt = select(func.count()).select_from(WorkflowInstanceModel).where(
            WorkflowInstanceModel.template_id == template_id,
            WorkflowInstanceModel.status.in_([s.value for s in LIVE_WORKFLOW_STATUSES]),
        )
        return int(self._session.scalar(stmt) or 0)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _find_model(self, code: str) -> WorkflowTemplateModel | None:
        return self._session.scalars(
            select(WorkflowTemplateModel).where(WorkflowTemplateModel.code == code)
        ).first()

    def _load_model(self, code: str) -> WorkflowTemplateModel:
        model = self._find_model(code)
        if model is None:
            raise TemplateNotFoundError(code)
        return model
