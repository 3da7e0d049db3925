"""
HRConfigurationSet schema.

The human-authored source artifact for HR configuration.  YAML files are
parsed into these types by the loader; ``hr_config.bridges`` translates
them into kernel and module inputs.  Nothing here imports the kernel.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

# ---------------------------------------------------------------------------
# Workflow templates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StepDef:
    """One configured step of a workflow template."""

    step_order: int
    name: str
    approver_type: str
    approver_user_id: str | None = None
    approver_role_id: str | None = None
    approver_position_id: str | None = None
    approver_governance_body_id: str | None = None
    requires_signature: bool = False
    requires_comment: bool = False
    can_delegate: bool = False
    escalation_hours: int | None = None
    escalation_action: str | None = None
    alternate_approver_id: str | None = None
    sla_warning_hours: int | None = None
    sla_critical_hours: int | None = None


@dataclass(frozen=True)
class TemplateDef:
    """A configured workflow template and its steps."""

    code: str
    name: str
    category: str
    steps: tuple[StepDef, ...]
    description: str = ""
    company_id: str | None = None
    auto_terminate_hours: int | None = None
    allow_return_to_previous: bool = True
    requires_signature: bool = False
    requires_letter: bool = False
    start_date: date | None = None
    end_date: date | None = None


# ---------------------------------------------------------------------------
# Timesheet and settlement
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OvertimeMultipliersDef:
    tier1: Decimal = Decimal("1.5")
    tier2: Decimal = Decimal("2.0")
    tier3: Decimal = Decimal("3.0")


@dataclass(frozen=True)
class TimesheetSettingsDef:
    """Timesheet approval and settlement settings."""

    settlement_mode: str = "inline"
    return_falls_back_to_timekeeper: bool = True
    excluded_entry_statuses: tuple[str, ...] = ("rejected", "void")
    default_multipliers: OvertimeMultipliersDef = field(default_factory=OvertimeMultipliersDef)


# ---------------------------------------------------------------------------
# Workflow engine
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowEngineDef:
    override_roles: tuple[str, ...] = ("hr_admin", "system_admin")
    allow_initiator_comment: bool = True


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HRConfigurationSet:
    """Human-authored, reviewable HR configuration.

    Attributes:
        config_id: Unique identifier (e.g., "HR-DEFAULT-v1")
        version: Configuration version number
        checksum: SHA-256 of the canonical source data
        database_url: Default SQLAlchemy URL (overridable by DATABASE_URL)
        log_level: Level passed to ``configure_logging``
        workflow_engine: Workflow service tunables
        templates: Workflow templates to install
        timesheet: Timesheet approval and settlement settings
    """

    config_id: str
    version: int
    checksum: str
    database_url: str = "sqlite:///:memory:"
    log_level: str = "INFO"
    workflow_engine: WorkflowEngineDef = field(default_factory=WorkflowEngineDef)
    templates: tuple[TemplateDef, ...] = ()
    timesheet: TimesheetSettingsDef = field(default_factory=TimesheetSettingsDef)

    def template(self, code: str) -> TemplateDef:
        for template in self.templates:
            if template.code == code:
                return template
        raise KeyError(f"No template '{code}' in configuration {self.config_id}")
