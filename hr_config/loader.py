"""
Configuration Loader (``hr_config.loader``).

Responsibility
--------------
Load YAML configuration files and parse them into the frozen
``hr_config.schema`` dataclasses.  Runtime callers go through
``hr_config.get_active_config()``.

Invariants enforced
-------------------
* Required keys raise ``KeyError``; malformed values raise ``ValueError``.
  No silent defaults for required fields.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` is a deterministic SHA-256 over the canonical JSON
  of the source data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from hr_config.schema import (
    HRConfigurationSet,
    OvertimeMultipliersDef,
    StepDef,
    TemplateDef,
    TimesheetSettingsDef,
    WorkflowEngineDef,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def parse_step(data: dict[str, Any]) -> StepDef:
    """Parse a StepDef from a dict."""
    return StepDef(
        step_order=int(data["step_order"]),
        name=data["name"],
        approver_type=data["approver_type"],
        approver_user_id=_optional_str(data.get("approver_user_id")),
        approver_role_id=_optional_str(data.get("approver_role_id")),
        approver_position_id=_optional_str(data.get("approver_position_id")),
        approver_governance_body_id=_optional_str(data.get("approver_governance_body_id")),
        requires_signature=data.get("requires_signature", False),
        requires_comment=data.get("requires_comment", False),
        can_delegate=data.get("can_delegate", False),
        escalation_hours=data.get("escalation_hours"),
        escalation_action=data.get("escalation_action"),
        alternate_approver_id=_optional_str(data.get("alternate_approver_id")),
        sla_warning_hours=data.get("sla_warning_hours"),
        sla_critical_hours=data.get("sla_critical_hours"),
    )


def parse_template(data: dict[str, Any]) -> TemplateDef:
    """Parse a TemplateDef (with its steps) from a dict."""
    steps = tuple(parse_step(s) for s in data.get("steps", []))
    if not steps:
        raise ValueError(f"Template '{data['code']}' declares no steps")
    return TemplateDef(
        code=data["code"],
        name=data["name"],
        category=data["category"],
        steps=steps,
        description=data.get("description", ""),
        company_id=_optional_str(data.get("company_id")),
        auto_terminate_hours=data.get("auto_terminate_hours"),
        allow_return_to_previous=data.get("allow_return_to_previous", True),
        requires_signature=data.get("requires_signature", False),
        requires_letter=data.get("requires_letter", False),
        start_date=parse_date(data["start_date"]) if data.get("start_date") else None,
        end_date=parse_date(data["end_date"]) if data.get("end_date") else None,
    )


def parse_multipliers(data: dict[str, Any]) -> OvertimeMultipliersDef:
    return OvertimeMultipliersDef(
        tier1=Decimal(str(data.get("tier1", "1.5"))),
        tier2=Decimal(str(data.get("tier2", "2.0"))),
        tier3=Decimal(str(data.get("tier3", "3.0"))),
    )


def parse_timesheet(data: dict[str, Any]) -> TimesheetSettingsDef:
    """Parse TimesheetSettingsDef from a dict."""
    return TimesheetSettingsDef(
        settlement_mode=data.get("settlement_mode", "inline"),
        return_falls_back_to_timekeeper=data.get("return_falls_back_to_timekeeper", True),
        excluded_entry_statuses=tuple(data.get("excluded_entry_statuses", ("rejected", "void"))),
        default_multipliers=parse_multipliers(data.get("overtime_multipliers", {})),
    )


def parse_workflow_engine(data: dict[str, Any]) -> WorkflowEngineDef:
    return WorkflowEngineDef(
        override_roles=tuple(data.get("override_roles", ("hr_admin", "system_admin"))),
        allow_initiator_comment=data.get("allow_initiator_comment", True),
    )


def parse_config_set(data: dict[str, Any]) -> HRConfigurationSet:
    """Parse a full HRConfigurationSet; the checksum covers ``data`` as loaded."""
    return HRConfigurationSet(
        config_id=data["config_id"],
        version=int(data["version"]),
        checksum=compute_checksum(data),
        database_url=data.get("database_url", "sqlite:///:memory:"),
        log_level=str(data.get("log_level", "INFO")).upper(),
        workflow_engine=parse_workflow_engine(data.get("workflow_engine", {})),
        templates=tuple(parse_template(t) for t in data.get("templates", [])),
        timesheet=parse_timesheet(data.get("timesheet", {})),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
