"""
Typed workflow metadata (``hr_kernel.domain.metadata``).

Each workflow category carries its own metadata shape instead of a free-form
bag.  ``parse_metadata`` turns the stored JSON into the variant for the
category and rejects payloads that do not fit; ``metadata_to_dict`` is its
inverse for persistence.

Categories without a dedicated shape use ``GenericMetadata``, which keeps an
arbitrary string-keyed mapping.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Union
from uuid import UUID

from hr_kernel.exceptions import InvalidMetadataError


def _uuid(category: str, data: dict, key: str, required: bool = True) -> UUID | None:
    value = data.get(key)
    if value is None:
        if required:
            raise InvalidMetadataError(category, f"missing field '{key}'")
        return None
    try:
        return value if isinstance(value, UUID) else UUID(str(value))
    except ValueError as exc:
        raise InvalidMetadataError(category, f"'{key}' is not a UUID") from exc


def _date(category: str, data: dict, key: str, required: bool = True) -> date | None:
    value = data.get(key)
    if value is None:
        if required:
            raise InvalidMetadataError(category, f"missing field '{key}'")
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise InvalidMetadataError(category, f"'{key}' is not an ISO date") from exc


def _decimal(category: str, data: dict, key: str, required: bool = True) -> Decimal | None:
    value = data.get(key)
    if value is None:
        if required:
            raise InvalidMetadataError(category, f"missing field '{key}'")
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise InvalidMetadataError(category, f"'{key}' is not a number") from exc


def _str(data: dict, key: str) -> str | None:
    value = data.get(key)
    return None if value is None else str(value)


@dataclass(frozen=True)
class LeaveMetadata:
    """Leave request being approved."""

    employee_id: UUID
    leave_type_id: UUID
    start_date: date
    end_date: date
    duration_days: Decimal | None = None
    reason: str | None = None

    def __post_init__(self) -> None:
        if self.end_date < self.start_date:
            raise InvalidMetadataError("leave_request", "end_date precedes start_date")

    @classmethod
    def from_dict(cls, data: dict) -> LeaveMetadata:
        c = "leave_request"
        return cls(
            employee_id=_uuid(c, data, "employee_id"),
            leave_type_id=_uuid(c, data, "leave_type_id"),
            start_date=_date(c, data, "start_date"),
            end_date=_date(c, data, "end_date"),
            duration_days=_decimal(c, data, "duration_days", required=False),
            reason=_str(data, "reason"),
        )


@dataclass(frozen=True)
class PromotionMetadata:
    """Promotion, acting or salary-change case for one employee."""

    employee_id: UUID
    to_position_id: UUID
    effective_date: date
    from_position_id: UUID | None = None
    proposed_salary: Decimal | None = None

    @classmethod
    def from_dict(cls, data: dict, category: str = "promotion") -> PromotionMetadata:
        return cls(
            employee_id=_uuid(category, data, "employee_id"),
            to_position_id=_uuid(category, data, "to_position_id"),
            effective_date=_date(category, data, "effective_date"),
            from_position_id=_uuid(category, data, "from_position_id", required=False),
            proposed_salary=_decimal(category, data, "proposed_salary", required=False),
        )


@dataclass(frozen=True)
class TransferMetadata:
    """Transfer or secondment between org units."""

    employee_id: UUID
    to_department_id: UUID
    effective_date: date
    from_department_id: UUID | None = None
    end_date: date | None = None

    @classmethod
    def from_dict(cls, data: dict, category: str = "transfer") -> TransferMetadata:
        return cls(
            employee_id=_uuid(category, data, "employee_id"),
            to_department_id=_uuid(category, data, "to_department_id"),
            effective_date=_date(category, data, "effective_date"),
            from_department_id=_uuid(category, data, "from_department_id", required=False),
            end_date=_date(category, data, "end_date", required=False),
        )


@dataclass(frozen=True)
class TimesheetMetadata:
    """Timesheet period routed through the generic engine."""

    company_id: UUID
    period_start: date
    period_end: date

    def __post_init__(self) -> None:
        if self.period_end < self.period_start:
            raise InvalidMetadataError("timesheet", "period_end precedes period_start")

    @classmethod
    def from_dict(cls, data: dict) -> TimesheetMetadata:
        c = "timesheet"
        return cls(
            company_id=_uuid(c, data, "company_id"),
            period_start=_date(c, data, "period_start"),
            period_end=_date(c, data, "period_end"),
        )


@dataclass(frozen=True)
class GenericMetadata:
    """Untyped metadata for categories without a dedicated shape."""

    values: dict[str, Any] = field(default_factory=dict)


WorkflowMetadata = Union[
    LeaveMetadata,
    PromotionMetadata,
    TransferMetadata,
    TimesheetMetadata,
    GenericMetadata,
]

_PROMOTION_LIKE = frozenset({"promotion", "acting", "salary_change", "rate_change"})
_TRANSFER_LIKE = frozenset({"transfer", "secondment"})


def parse_metadata(category: str, data: dict | None) -> WorkflowMetadata | None:
    """Build the typed metadata variant for ``category`` from a plain dict."""
    if data is None:
        return None
    if not isinstance(data, dict):
        raise InvalidMetadataError(category, "metadata must be a mapping")
    if category == "leave_request":
        return LeaveMetadata.from_dict(data)
    if category in _PROMOTION_LIKE:
        return PromotionMetadata.from_dict(data, category)
    if category in _TRANSFER_LIKE:
        return TransferMetadata.from_dict(data, category)
    if category == "timesheet":
        return TimesheetMetadata.from_dict(data)
    return GenericMetadata(values=dict(data))


def metadata_to_dict(metadata: WorkflowMetadata | None) -> dict[str, Any] | None:
    """JSON-safe dict for storage; UUIDs, dates and Decimals become strings."""
    if metadata is None:
        return None
    if isinstance(metadata, GenericMetadata):
        return dict(metadata.values)
    out: dict[str, Any] = {}
    for key, value in vars(metadata).items():
        if value is None:
            continue
        if isinstance(value, (UUID, Decimal)):
            out[key] = str(value)
        elif isinstance(value, date):
            out[key] = value.isoformat()
        else:
            out[key] = value
    return out
