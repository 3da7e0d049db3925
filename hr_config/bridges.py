"""
Config-to-runtime bridges (``hr_config.bridges``).

Translate ``HRConfigurationSet`` definitions into the kernel and module
types that services take: workflow templates and steps, the workflow
engine config, and the timesheet approval config.
"""

from __future__ import annotations

from uuid import UUID

from hr_config.schema import HRConfigurationSet, OvertimeMultipliersDef, StepDef, TemplateDef
from hr_engines.settlement import OvertimeMultipliers
from hr_kernel.domain.workflow import (
    ApproverType,
    EscalationAction,
    WorkflowCategory,
    WorkflowEngineConfig,
    WorkflowStep,
    WorkflowTemplate,
)
from hr_modules.timesheet.config import TimesheetApprovalConfig


def _uuid(value: str | None) -> UUID | None:
    return UUID(value) if value else None


def step_to_domain(step: StepDef) -> WorkflowStep:
    return WorkflowStep(
        step_order=step.step_order,
        name=step.name,
        approver_type=ApproverType(step.approver_type),
        approver_user_id=_uuid(step.approver_user_id),
        approver_role_id=_uuid(step.approver_role_id),
        approver_position_id=_uuid(step.approver_position_id),
        approver_governance_body_id=_uuid(step.approver_governance_body_id),
        requires_signature=step.requires_signature,
        requires_comment=step.requires_comment,
        can_delegate=step.can_delegate,
        escalation_hours=step.escalation_hours,
        escalation_action=(
            EscalationAction(step.escalation_action) if step.escalation_action else None
        ),
        alternate_approver_id=_uuid(step.alternate_approver_id),
        sla_warning_hours=step.sla_warning_hours,
        sla_critical_hours=step.sla_critical_hours,
    )


def template_to_domain(template: TemplateDef) -> tuple[WorkflowTemplate, tuple[WorkflowStep, ...]]:
    """Domain template plus its steps, ready for ``install_from_config``."""
    domain = WorkflowTemplate(
        code=template.code,
        name=template.name,
        category=WorkflowCategory(template.category),
        description=template.description,
        company_id=_uuid(template.company_id),
        auto_terminate_hours=template.auto_terminate_hours,
        allow_return_to_previous=template.allow_return_to_previous,
        requires_signature=template.requires_signature,
        requires_letter=template.requires_letter,
        start_date=template.start_date,
        end_date=template.end_date,
    )
    return domain, tuple(step_to_domain(s) for s in template.steps)


def template_definitions(
    config: HRConfigurationSet,
) -> list[tuple[WorkflowTemplate, tuple[WorkflowStep, ...]]]:
    return [template_to_domain(t) for t in config.templates]


def multipliers_to_domain(data: OvertimeMultipliersDef) -> OvertimeMultipliers:
    return OvertimeMultipliers(tier1=data.tier1, tier2=data.tier2, tier3=data.tier3)


def workflow_engine_config(config: HRConfigurationSet) -> WorkflowEngineConfig:
    return WorkflowEngineConfig(
        override_roles=frozenset(config.workflow_engine.override_roles),
        allow_initiator_comment=config.workflow_engine.allow_initiator_comment,
    )


def timesheet_config(config: HRConfigurationSet) -> TimesheetApprovalConfig:
    settings = config.timesheet
    return TimesheetApprovalConfig(
        settlement_mode=settings.settlement_mode,
        default_multipliers=multipliers_to_domain(settings.default_multipliers),
        return_falls_back_to_timekeeper=settings.return_falls_back_to_timekeeper,
        excluded_entry_statuses=frozenset(settings.excluded_entry_statuses),
    )
