"""
Structured logging as emitted by the approval and settlement paths.

The service tests assert on event names; these assert on the JSON shape:
request context bound by the services, value encoding, and the fields
pulled out of kernel exceptions.
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from hr_kernel.domain.workflow import WorkflowAction, WorkflowStatus
from hr_kernel.exceptions import NotAuthorizedError
from hr_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from hr_modules.timesheet import TimesheetAction
from tests.factories import make_actor


def _events(records, message):
    return [r for r in records if r["message"] == message]


# ---------------------------------------------------------------------------
# Workflow events
# ---------------------------------------------------------------------------


class TestWorkflowEventLogs:
    @pytest.fixture
    def approvers(self, create_template):
        first, second = make_actor(), make_actor()
        create_template([first.actor_id, second.actor_id], code="LOGGED")
        return first, second

    def test_action_records_carry_bound_context(self, workflow_service, approvers, captured_logs):
        first, _ = approvers
        instance = workflow_service.start_workflow("LOGGED", "leave", uuid4(), make_actor())
        workflow_service.take_action(instance.id, WorkflowAction.APPROVE, first)

        records = captured_logs()
        (started,) = _events(records, "workflow_started")
        assert started["instance_id"] == str(instance.id)
        assert started["first_step"] == 1
        assert "actor_id" not in started

        (recorded,) = _events(records, "workflow_action_recorded")
        assert recorded["instance_id"] == str(instance.id)
        assert recorded["actor_id"] == str(first.actor_id)
        assert recorded["sequence"] == 1
        assert recorded["transitioned"] is True

        (moved,) = _events(records, "workflow_transitioned")
        assert (moved["from_status"], moved["to_status"]) == ("pending", "in_progress")
        assert (moved["from_step"], moved["to_step"]) == (1, 2)
        assert moved["version"] == 2

    def test_context_released_after_action(self, workflow_service, approvers):
        first, _ = approvers
        instance = workflow_service.start_workflow("LOGGED", "leave", uuid4(), make_actor())
        workflow_service.take_action(instance.id, WorkflowAction.COMMENT, first)
        assert LogContext.get_all() == {}

    def test_refused_action_logs_under_instance(self, workflow_service, approvers, captured_logs):
        first, _ = approvers
        instance = workflow_service.start_workflow("LOGGED", "leave", uuid4(), make_actor())
        stranger = make_actor()

        with pytest.raises(NotAuthorizedError) as exc_info:
            workflow_service.take_action(instance.id, WorkflowAction.APPROVE, stranger)
        get_logger("tests.audit").error("approval_refused", exc_info=exc_info.value)

        (refused,) = _events(captured_logs(), "approval_refused")
        assert refused["exc_code"] == "NOT_AUTHORIZED"
        assert refused["exc_entity_id"] == str(instance.id)
        assert refused["exc_actor_id"] == str(stranger.actor_id)
        assert "step 1" in refused["exc_reason"]
        assert "instance_id" not in refused


# ---------------------------------------------------------------------------
# Timesheet and settlement events
# ---------------------------------------------------------------------------


class TestTimesheetEventLogs:
    def test_final_approval_logs_settlement_totals(
        self, timesheet_service, approval_levels, add_compensation, add_time_entry,
        company_id, captured_logs,
    ):
        (approver,) = approval_levels(1)
        employee = uuid4()
        add_compensation(employee, Decimal("20"))
        add_time_entry(employee, date(2024, 3, 4), Decimal("10"), Decimal("2"))
        finalization = timesheet_service.submit_period(
            company_id, date(2024, 3, 1), date(2024, 3, 15), [employee], uuid4(),
        )

        timesheet_service.process_approval(finalization.id, approver, TimesheetAction.APPROVE)

        records = captured_logs()
        (submitted,) = _events(records, "timesheet_period_submitted")
        assert submitted["period_start"] == "2024-03-01"
        assert submitted["employee_count"] == 1

        (settled,) = _events(records, "settlement_completed")
        assert settled["finalization_id"] == str(finalization.id)
        assert settled["total_gross"] == "220.00"
        assert settled["rows_written"] == 2

        (processed,) = _events(records, "timesheet_approval_processed")
        assert processed["actor_id"] == str(approver)
        assert processed["workflow_status"] == "approved_for_payroll"
        assert processed["settled"] is True


# ---------------------------------------------------------------------------
# Formatter and configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def json_stream():
    """Route a fresh hr_kernel configuration into a buffer."""
    reset_logging()
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    configure_logging(handler=handler, level=logging.INFO)

    def _read() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    yield _read
    reset_logging()
    configure_logging(level=logging.DEBUG)


class TestStructuredFormatter:
    @pytest.mark.parametrize(
        ("value", "encoded"),
        [
            (Decimal("12.50"), "12.50"),
            (date(2024, 3, 15), "2024-03-15"),
            (datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc), "2024-03-15T09:30:00+00:00"),
            (WorkflowStatus.RETURNED, "returned"),
        ],
    )
    def test_domain_values_encoded(self, json_stream, value, encoded):
        get_logger("test").info("encoded", extra={"value": value})
        assert json_stream()[0]["value"] == encoded

    def test_uuid_encoded(self, json_stream):
        employee_id = uuid4()
        get_logger("test").info("encoded", extra={"employee_id": employee_id})
        assert json_stream()[0]["employee_id"] == str(employee_id)

    def test_envelope_and_level_filter(self, json_stream):
        logger = get_logger("modules.timesheet.service")
        logger.debug("dropped")
        logger.warning("kept")

        (record,) = json_stream()
        assert record["level"] == "WARNING"
        assert record["logger"] == "hr_kernel.modules.timesheet.service"
        assert datetime.fromisoformat(record["ts"]).tzinfo is not None

    def test_extra_does_not_override_envelope(self):
        record = logging.LogRecord("hr_kernel.x", logging.INFO, __file__, 1, "msg", (), None)
        record.level = "spoofed"
        assert json.loads(StructuredFormatter().format(record))["level"] == "INFO"


class TestLogContextBinding:
    def test_nested_bind_restores_outer(self):
        with LogContext.bind(finalization_id="outer", actor_id="a"):
            with LogContext.bind(finalization_id="inner"):
                assert LogContext.get_all() == {"finalization_id": "inner", "actor_id": "a"}
            assert LogContext.get_all() == {"finalization_id": "outer", "actor_id": "a"}
        assert LogContext.get_all() == {}

    def test_unknown_and_none_fields_ignored(self):
        with LogContext.bind(instance_id="i", payroll_run="x", actor_id=None):
            assert LogContext.get_all() == {"instance_id": "i"}

    def test_configure_is_idempotent(self, json_stream):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        assert len(logging.getLogger("hr_kernel").handlers) == 1
