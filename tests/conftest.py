"""
Pytest fixtures for the HR kernel test suite.

Provides:
- A session-scoped engine and schema (SQLite in-memory by default)
- Per-test sessions rolled back at teardown
- Deterministic clock, structured log capture
- Factories for workflow templates and timesheet approval levels

Environment Variables:
- DATABASE_URL: SQLAlchemy URL to run against instead of in-memory SQLite
  (e.g., postgresql://hr:hr@localhost/hr_kernel_test).
"""

import json
import logging
import os
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from hr_kernel.db.engine import drop_tables, init_engine_from_url, reset_engine
from hr_kernel.domain.clock import DeterministicClock
from hr_kernel.domain.workflow import WorkflowCategory, WorkflowStep, WorkflowTemplate
from hr_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from hr_kernel.services.template_service import WorkflowTemplateService
from hr_kernel.services.workflow_service import WorkflowService
from hr_modules._orm_registry import create_all_tables
from hr_modules.timesheet.config import TimesheetApprovalConfig
from hr_modules.timesheet.orm import (
    EmployeeCompensationModel,
    ShiftApprovalLevelModel,
    TimeClockEntryModel,
)
from hr_modules.timesheet.service import TimesheetApprovalService
from hr_modules.timesheet.settlement_service import PayrollSettlementService
from tests.factories import TEST_ACTOR_ID, make_steps

DEFAULT_DATABASE_URL = "sqlite:///:memory:"


def get_database_url() -> str:
    """Get database URL from environment, or use in-memory SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


def pytest_collection_modifyitems(config, items):
    """Skip PostgreSQL-only tests when running against SQLite."""
    if get_database_url().startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason="requires PostgreSQL (set DATABASE_URL)")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture hr_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow_service):
            workflow_service.start_workflow(...)
            logs = captured_logs()
            assert any(r["message"] == "workflow_started" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("hr_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Session-scoped DB infrastructure
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    eng = init_engine_from_url(get_database_url(), echo=False)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end."""
    drop_tables()
    create_all_tables()
    yield
    drop_tables()


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection; any
    ``session.commit()`` inside a test releases a savepoint, and the outer
    transaction is rolled back at teardown.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def test_actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def template_service(session) -> WorkflowTemplateService:
    return WorkflowTemplateService(session)


@pytest.fixture
def create_template(session, template_service):
    """Factory: persist a template with fixed-user steps and return it.

    Seed rows are committed so a service-level rollback in the test keeps them.
    """

    def _create(
        approvers: list[UUID | None],
        code: str | None = None,
        category: WorkflowCategory = WorkflowCategory.GENERAL,
        steps: list[WorkflowStep] | None = None,
        **template_fields,
    ) -> WorkflowTemplate:
        template = WorkflowTemplate(
            code=code or f"TPL-{uuid4().hex[:8]}",
            name="Test template",
            category=category,
            **template_fields,
        )
        created = template_service.create_template(
            template, steps if steps is not None else make_steps(approvers), TEST_ACTOR_ID,
        )
        session.commit()
        return created

    return _create


@pytest.fixture
def workflow_service(session, deterministic_clock) -> WorkflowService:
    return WorkflowService(session, clock=deterministic_clock)


# =============================================================================
# Timesheet fixtures
# =============================================================================


@pytest.fixture
def company_id() -> UUID:
    return uuid4()


@pytest.fixture
def approval_levels(session, company_id):
    """Factory: configure ``(company, level) -> approver`` rows.

    Returns the approver id for each level, in level order.
    """

    def _configure(count: int, company: UUID | None = None) -> list[UUID]:
        approvers = []
        for level in range(1, count + 1):
            approver = uuid4()
            session.add(ShiftApprovalLevelModel(
                company_id=company or company_id,
                approval_level=level,
                approver_id=approver,
                priority=1,
                created_by_id=TEST_ACTOR_ID,
            ))
            approvers.append(approver)
        session.commit()
        return approvers

    return _configure


@pytest.fixture
def add_time_entry(session, company_id):
    def _add(
        employee_id: UUID,
        work_date: date,
        total_hours: Decimal | None,
        overtime_hours: Decimal = Decimal("0"),
        **fields,
    ) -> TimeClockEntryModel:
        entry = TimeClockEntryModel(
            employee_id=employee_id,
            company_id=fields.pop("company", company_id),
            work_date=work_date,
            total_hours=total_hours,
            overtime_hours=overtime_hours,
            created_by_id=TEST_ACTOR_ID,
            **fields,
        )
        session.add(entry)
        session.commit()
        return entry

    return _add


@pytest.fixture
def add_compensation(session):
    def _add(employee_id: UUID, rate: Decimal, effective_from: date = date(2024, 1, 1), **fields):
        row = EmployeeCompensationModel(
            employee_id=employee_id,
            hourly_rate=rate,
            effective_from=effective_from,
            created_by_id=TEST_ACTOR_ID,
            **fields,
        )
        session.add(row)
        session.commit()
        return row

    return _add


@pytest.fixture
def timesheet_config() -> TimesheetApprovalConfig:
    return TimesheetApprovalConfig()


@pytest.fixture
def settlement_service(session, deterministic_clock, timesheet_config) -> PayrollSettlementService:
    return PayrollSettlementService(session, clock=deterministic_clock, config=timesheet_config)


@pytest.fixture
def timesheet_service(
    session, deterministic_clock, timesheet_config, settlement_service,
) -> TimesheetApprovalService:
    return TimesheetApprovalService(
        session,
        clock=deterministic_clock,
        config=timesheet_config,
        settlement=settlement_service,
    )
