"""
Tests for WorkflowService: starting instances and acting on steps.

Covers:
- Start at the first active step with the resolved approver
- One live instance per reference
- Approve / reject / return / escalate / delegate / comment semantics
- Authorization before any write
- Comment-required steps
- Terminal immutability
- Ledger: one row per accepted action, contiguous sequence
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from hr_kernel.domain.metadata import LeaveMetadata
from hr_kernel.domain.workflow import (
    ActionOptions,
    ApproverType,
    WorkflowAction,
    WorkflowCategory,
    WorkflowStatus,
    WorkflowStep,
)
from hr_kernel.exceptions import (
    CommentRequiredError,
    ConcurrentModificationError,
    DelegationNotAllowedError,
    InstanceNotFoundError,
    InvalidMetadataError,
    InvalidWorkflowActionError,
    NoStepsConfiguredError,
    NotAuthorizedError,
    ReturnTargetNotFoundError,
    TemplateNotFoundError,
    WorkflowAlreadyActiveError,
    WorkflowAlreadyResolvedError,
)
from tests.factories import make_actor


def _fixed(order: int, approver, **kwargs) -> WorkflowStep:
    return WorkflowStep(
        step_order=order,
        name=f"Step {order}",
        approver_type=ApproverType.FIXED_USER,
        approver_user_id=approver,
        **kwargs,
    )


@pytest.fixture
def approvers():
    return [make_actor(), make_actor(), make_actor()]


@pytest.fixture
def initiator():
    return make_actor()


@pytest.fixture
def three_step(create_template, approvers):
    return create_template([a.actor_id for a in approvers], code="THREE")


def _start(workflow_service, initiator, code="THREE", **kwargs):
    return workflow_service.start_workflow(code, "request", uuid4(), initiator, **kwargs)


# =============================================================================
# Start
# =============================================================================


class TestStartWorkflow:
    def test_starts_pending_at_first_step(
        self, workflow_service, three_step, approvers, initiator, deterministic_clock,
    ):
        instance = _start(workflow_service, initiator)

        assert instance.status == WorkflowStatus.PENDING
        assert instance.current_step_order == 1
        assert instance.current_approver_id == approvers[0].actor_id
        assert instance.initiated_by == initiator.actor_id
        assert instance.initiated_at == deterministic_clock.now()
        assert instance.current_step_started_at == deterministic_clock.now()
        assert instance.version == 1
        assert workflow_service.get_workflow_history(instance.id) == ()

    def test_first_step_is_lowest_active_order(self, workflow_service, create_template, initiator):
        first = make_actor()
        create_template([], code="GAPS", steps=[_fixed(20, uuid4()), _fixed(5, first.actor_id)])
        instance = _start(workflow_service, initiator, code="GAPS")
        assert instance.current_step_order == 5
        assert instance.current_approver_id == first.actor_id

    def test_deadlines_stamped_from_template(
        self, workflow_service, create_template, initiator, deterministic_clock,
    ):
        create_template(
            [], code="TIMED", auto_terminate_hours=72,
            steps=[_fixed(1, uuid4(), escalation_hours=24)],
        )
        instance = _start(workflow_service, initiator, code="TIMED")
        now = deterministic_clock.now()
        assert instance.auto_terminate_at == now + timedelta(hours=72)
        assert instance.current_step_deadline_at == now + timedelta(hours=24)

    def test_unknown_template(self, workflow_service, initiator):
        with pytest.raises(TemplateNotFoundError):
            _start(workflow_service, initiator, code="MISSING")

    def test_template_without_steps(self, workflow_service, create_template, initiator):
        create_template([], code="EMPTY", steps=[])
        with pytest.raises(NoStepsConfiguredError):
            _start(workflow_service, initiator, code="EMPTY")

    def test_one_live_instance_per_reference(self, workflow_service, three_step, initiator):
        reference = uuid4()
        first = workflow_service.start_workflow("THREE", "leave", reference, initiator)

        with pytest.raises(WorkflowAlreadyActiveError) as exc_info:
            workflow_service.start_workflow("THREE", "leave", reference, initiator)
        assert exc_info.value.instance_id == str(first.id)

        # same id under another reference type is a different record
        workflow_service.start_workflow("THREE", "transfer", reference, initiator)

    def test_restart_after_terminal(self, workflow_service, three_step, approvers, initiator):
        reference = uuid4()
        first = workflow_service.start_workflow("THREE", "leave", reference, initiator)
        workflow_service.take_action(first.id, WorkflowAction.REJECT, approvers[0])

        second = workflow_service.start_workflow("THREE", "leave", reference, initiator)
        assert second.id != first.id

    def test_typed_metadata(self, workflow_service, create_template, initiator):
        create_template([uuid4()], code="LEAVE", category=WorkflowCategory.LEAVE_REQUEST)
        employee = uuid4()
        instance = _start(workflow_service, initiator, code="LEAVE", metadata={
            "employee_id": str(employee),
            "leave_type_id": str(uuid4()),
            "start_date": "2024-03-04",
            "end_date": "2024-03-05",
        })
        assert isinstance(instance.metadata, LeaveMetadata)
        assert instance.metadata.employee_id == employee

    def test_invalid_metadata_writes_nothing(self, workflow_service, create_template, initiator):
        create_template([uuid4()], code="LEAVE", category=WorkflowCategory.LEAVE_REQUEST)
        with pytest.raises(InvalidMetadataError):
            _start(workflow_service, initiator, code="LEAVE", metadata={"employee_id": "x"})
        assert workflow_service.get_pending_workflows() == []

    def test_logs_start(self, workflow_service, three_step, initiator, captured_logs):
        instance = _start(workflow_service, initiator)
        started = [r for r in captured_logs() if r["message"] == "workflow_started"]
        assert len(started) == 1
        assert started[0]["instance_id"] == str(instance.id)
        assert started[0]["template_code"] == "THREE"


# =============================================================================
# Approve
# =============================================================================


class TestApprove:
    def test_walks_every_step_then_completes(
        self, workflow_service, three_step, approvers, initiator, deterministic_clock,
    ):
        instance = _start(workflow_service, initiator)
        orders = [instance.current_step_order]

        for approver in approvers:
            result = workflow_service.take_action(instance.id, WorkflowAction.APPROVE, approver)
            assert result.transitioned
            orders.append(result.instance.current_step_order)

        final = result.instance
        assert final.status == WorkflowStatus.APPROVED
        assert final.final_action == WorkflowAction.APPROVE
        assert final.completed_by == approvers[-1].actor_id
        assert final.completed_at == deterministic_clock.now()
        assert final.version == 4
        # step order never decreases on approve
        assert orders == [1, 2, 3, 3]

    def test_advance_assigns_next_approver(self, workflow_service, three_step, approvers, initiator):
        instance = _start(workflow_service, initiator)
        result = workflow_service.take_action(instance.id, WorkflowAction.APPROVE, approvers[0])
        assert result.instance.status == WorkflowStatus.IN_PROGRESS
        assert result.instance.current_approver_id == approvers[1].actor_id
        assert result.action_record.step_order == 1

    def test_inactive_steps_are_skipped(
        self, workflow_service, template_service, create_template, initiator, test_actor_id,
    ):
        a, c = make_actor(), make_actor()
        create_template([], code="SKIP", steps=[_fixed(1, a.actor_id), _fixed(2, uuid4())])
        template_service.replace_steps(
            "SKIP", [_fixed(1, a.actor_id), _fixed(3, c.actor_id)], test_actor_id,
        )
        instance = _start(workflow_service, initiator, code="SKIP")

        result = workflow_service.take_action(instance.id, WorkflowAction.APPROVE, a)
        assert result.instance.current_step_order == 3
        assert result.instance.current_approver_id == c.actor_id

    def test_ledger_sequence_is_contiguous(self, workflow_service, three_step, approvers, initiator):
        instance = _start(workflow_service, initiator)
        workflow_service.take_action(
            instance.id, WorkflowAction.COMMENT, initiator, ActionOptions(comment="any news?"),
        )
        workflow_service.take_action(instance.id, WorkflowAction.APPROVE, approvers[0])
        workflow_service.take_action(instance.id, WorkflowAction.APPROVE, approvers[1])

        history = workflow_service.get_workflow_history(instance.id)
        assert [h.sequence for h in history] == [1, 2, 3]
        assert [h.action for h in history] == [
            WorkflowAction.COMMENT, WorkflowAction.APPROVE, WorkflowAction.APPROVE,
        ]
        assert [h.step_order for h in history] == [1, 1, 2]


# =============================================================================
# Authorization
# =============================================================================


class TestAuthorization:
    def test_stranger_rejected_without_writes(self, workflow_service, three_step, initiator):
        instance = _start(workflow_service, initiator)
        with pytest.raises(NotAuthorizedError):
            workflow_service.take_action(instance.id, WorkflowAction.APPROVE, make_actor())

        assert workflow_service.get_workflow_history(instance.id) == ()
        assert workflow_service.get_instance(instance.id).version == 1

    def test_next_step_approver_cannot_act_early(self, workflow_service, three_step, approvers, initiator):
        instance = _start(workflow_service, initiator)
        with pytest.raises(NotAuthorizedError):
            workflow_service.take_action(instance.id, WorkflowAction.APPROVE, approvers[1])

    def test_override_role_may_act(self, workflow_service, three_step, initiator):
        instance = _start(workflow_service, initiator)
        admin = make_actor(None, "hr_admin")
        result = workflow_service.take_action(instance.id, WorkflowAction.APPROVE, admin)
        assert result.instance.current_step_order == 2

    def test_alternate_approver_may_act(self, workflow_service, create_template, initiator):
        primary, alternate = make_actor(), make_actor()
        create_template([], code="ALT", steps=[
            _fixed(1, primary.actor_id, alternate_approver_id=alternate.actor_id),
        ])
        instance = _start(workflow_service, initiator, code="ALT")
        result = workflow_service.take_action(instance.id, WorkflowAction.APPROVE, alternate)
        assert result.instance.status == WorkflowStatus.APPROVED

    def test_unassigned_step_needs_override_role(
        self, workflow_service, create_template, initiator, captured_logs,
    ):
        create_template([None], code="OPEN")
        instance = _start(workflow_service, initiator, code="OPEN")
        assert instance.current_approver_id is None

        with pytest.raises(NotAuthorizedError):
            workflow_service.take_action(instance.id, WorkflowAction.APPROVE, make_actor())
        assert any(r["message"] == "workflow_step_unassigned" for r in captured_logs())
        assert workflow_service.get_workflow_history(instance.id) == ()

        admin = make_actor(None, "hr_admin")
        result = workflow_service.take_action(instance.id, WorkflowAction.APPROVE, admin)
        assert result.instance.status == WorkflowStatus.APPROVED

    def test_initiator_may_only_comment(self, workflow_service, three_step, initiator):
        instance = _start(workflow_service, initiator)
        result = workflow_service.take_action(
            instance.id, WorkflowAction.COMMENT, initiator, ActionOptions(comment="ping"),
        )
        assert not result.transitioned
        assert result.instance.version == 1

        with pytest.raises(NotAuthorizedError):
            workflow_service.take_action(instance.id, WorkflowAction.APPROVE, initiator)


# =============================================================================
# Reject / terminal immutability
# =============================================================================


class TestRejectAndTerminal:
    def test_reject_from_middle_step(self, workflow_service, three_step, approvers, initiator):
        instance = _start(workflow_service, initiator)
        workflow_service.take_action(instance.id, WorkflowAction.APPROVE, approvers[0])
        result = workflow_service.take_action(
            instance.id, WorkflowAction.REJECT, approvers[1], ActionOptions(comment="no budget"),
        )
        assert result.instance.status == WorkflowStatus.REJECTED
        assert result.instance.final_action == WorkflowAction.REJECT
        assert result.action_record.comment == "no budget"

    @pytest.mark.parametrize("action", list(WorkflowAction))
    def test_terminal_instance_accepts_nothing(
        self, workflow_service, three_step, approvers, initiator, action,
    ):
        instance = _start(workflow_service, initiator)
        workflow_service.take_action(instance.id, WorkflowAction.REJECT, approvers[0])
        admin = make_actor(None, "hr_admin")

        with pytest.raises(WorkflowAlreadyResolvedError):
            workflow_service.take_action(
                instance.id, action, admin,
                ActionOptions(comment="late", delegate_to=uuid4(), return_to_step=1),
            )
        assert len(workflow_service.get_workflow_history(instance.id)) == 1
        assert workflow_service.get_instance(instance.id).status == WorkflowStatus.REJECTED

    def test_unknown_instance(self, workflow_service):
        with pytest.raises(InstanceNotFoundError):
            workflow_service.take_action(uuid4(), WorkflowAction.APPROVE, make_actor())


# =============================================================================
# Comment-required steps
# =============================================================================


class TestCommentRequired:
    @pytest.fixture
    def strict(self, create_template):
        approver = make_actor()
        create_template([], code="STRICT", steps=[
            _fixed(1, approver.actor_id, requires_comment=True, can_delegate=True),
        ])
        return approver

    @pytest.mark.parametrize("action", [WorkflowAction.APPROVE, WorkflowAction.REJECT])
    def test_blank_comment_refused(self, workflow_service, strict, initiator, action):
        instance = _start(workflow_service, initiator, code="STRICT")
        with pytest.raises(CommentRequiredError):
            workflow_service.take_action(instance.id, action, strict, ActionOptions(comment="   "))
        assert workflow_service.get_workflow_history(instance.id) == ()

    def test_comment_satisfies(self, workflow_service, strict, initiator):
        instance = _start(workflow_service, initiator, code="STRICT")
        result = workflow_service.take_action(
            instance.id, WorkflowAction.APPROVE, strict, ActionOptions(comment="fine"),
        )
        assert result.instance.status == WorkflowStatus.APPROVED

    def test_delegate_does_not_need_comment(self, workflow_service, strict, initiator):
        instance = _start(workflow_service, initiator, code="STRICT")
        result = workflow_service.take_action(
            instance.id, WorkflowAction.DELEGATE, strict, ActionOptions(delegate_to=uuid4()),
        )
        assert result.transitioned

    def test_empty_comment_action_refused(self, workflow_service, three_step, initiator):
        instance = _start(workflow_service, initiator)
        with pytest.raises(InvalidWorkflowActionError):
            workflow_service.take_action(instance.id, WorkflowAction.COMMENT, initiator)


# =============================================================================
# Return
# =============================================================================


class TestReturn:
    def test_return_to_earlier_step(self, workflow_service, three_step, approvers, initiator):
        instance = _start(workflow_service, initiator)
        workflow_service.take_action(instance.id, WorkflowAction.APPROVE, approvers[0])
        workflow_service.take_action(instance.id, WorkflowAction.APPROVE, approvers[1])

        result = workflow_service.take_action(
            instance.id, WorkflowAction.RETURN, approvers[2],
            ActionOptions(return_to_step=1, return_reason="missing form"),
        )
        assert result.instance.status == WorkflowStatus.RETURNED
        assert result.instance.current_step_order == 1
        assert result.instance.current_approver_id == approvers[0].actor_id
        assert result.action_record.return_to_step == 1
        assert result.action_record.return_reason == "missing form"

        # approving again resumes forward progress
        again = workflow_service.take_action(instance.id, WorkflowAction.APPROVE, approvers[0])
        assert again.instance.status == WorkflowStatus.IN_PROGRESS
        assert again.instance.current_step_order == 2

    def test_return_to_current_step_allowed(self, workflow_service, three_step, approvers, initiator):
        instance = _start(workflow_service, initiator)
        result = workflow_service.take_action(
            instance.id, WorkflowAction.RETURN, approvers[0], ActionOptions(return_to_step=1),
        )
        assert result.instance.status == WorkflowStatus.RETURNED
        assert result.instance.current_step_order == 1

    @pytest.mark.parametrize("target", [None, 3, 7])
    def test_invalid_targets(self, workflow_service, three_step, approvers, initiator, target):
        instance = _start(workflow_service, initiator)
        workflow_service.take_action(instance.id, WorkflowAction.APPROVE, approvers[0])

        with pytest.raises(ReturnTargetNotFoundError):
            workflow_service.take_action(
                instance.id, WorkflowAction.RETURN, approvers[1],
                ActionOptions(return_to_step=target),
            )
        after = workflow_service.get_instance(instance.id)
        assert after.current_step_order == 2
        assert len(workflow_service.get_workflow_history(instance.id)) == 1

    def test_gap_target_not_found(self, workflow_service, create_template, initiator):
        a, b = make_actor(), make_actor()
        create_template([], code="GAP", steps=[_fixed(1, a.actor_id), _fixed(3, b.actor_id)])
        instance = _start(workflow_service, initiator, code="GAP")
        workflow_service.take_action(instance.id, WorkflowAction.APPROVE, a)

        with pytest.raises(ReturnTargetNotFoundError, match="no active step"):
            workflow_service.take_action(
                instance.id, WorkflowAction.RETURN, b, ActionOptions(return_to_step=2),
            )

    def test_template_disallows_returns(self, workflow_service, create_template, initiator):
        approver = make_actor()
        create_template([approver.actor_id], code="NORETURN", allow_return_to_previous=False)
        instance = _start(workflow_service, initiator, code="NORETURN")
        with pytest.raises(ReturnTargetNotFoundError, match="does not allow"):
            workflow_service.take_action(
                instance.id, WorkflowAction.RETURN, approver, ActionOptions(return_to_step=1),
            )


# =============================================================================
# Escalate / delegate
# =============================================================================


class TestEscalateAndDelegate:
    def test_escalate_keeps_step(
        self, workflow_service, three_step, approvers, initiator, deterministic_clock,
    ):
        instance = _start(workflow_service, initiator)
        result = workflow_service.take_action(instance.id, WorkflowAction.ESCALATE, approvers[0])
        assert result.instance.status == WorkflowStatus.ESCALATED
        assert result.instance.current_step_order == 1
        assert result.instance.escalated_at == deterministic_clock.now()

        # an escalated instance still advances on approve
        advanced = workflow_service.take_action(instance.id, WorkflowAction.APPROVE, approvers[0])
        assert advanced.instance.status == WorkflowStatus.IN_PROGRESS

    def test_delegate_reassigns(self, workflow_service, create_template, initiator):
        owner, delegate = make_actor(), make_actor()
        create_template([], code="DELEG", steps=[_fixed(1, owner.actor_id, can_delegate=True)])
        instance = _start(workflow_service, initiator, code="DELEG")

        result = workflow_service.take_action(
            instance.id, WorkflowAction.DELEGATE, owner,
            ActionOptions(delegate_to=delegate.actor_id, delegation_reason="on leave"),
        )
        assert result.instance.status == WorkflowStatus.PENDING
        assert result.instance.current_step_order == 1
        assert result.instance.current_approver_id == delegate.actor_id
        assert result.action_record.delegated_to == delegate.actor_id

        with pytest.raises(NotAuthorizedError):
            workflow_service.take_action(instance.id, WorkflowAction.APPROVE, owner)
        done = workflow_service.take_action(instance.id, WorkflowAction.APPROVE, delegate)
        assert done.instance.status == WorkflowStatus.APPROVED

    def test_delegation_forbidden_by_step(self, workflow_service, three_step, approvers, initiator):
        instance = _start(workflow_service, initiator)
        with pytest.raises(DelegationNotAllowedError):
            workflow_service.take_action(
                instance.id, WorkflowAction.DELEGATE, approvers[0],
                ActionOptions(delegate_to=uuid4()),
            )

    def test_delegate_needs_target_and_not_self(self, workflow_service, create_template, initiator):
        owner = make_actor()
        create_template([], code="DELEG2", steps=[_fixed(1, owner.actor_id, can_delegate=True)])
        instance = _start(workflow_service, initiator, code="DELEG2")

        with pytest.raises(InvalidWorkflowActionError):
            workflow_service.take_action(instance.id, WorkflowAction.DELEGATE, owner)
        with pytest.raises(DelegationNotAllowedError, match="oneself"):
            workflow_service.take_action(
                instance.id, WorkflowAction.DELEGATE, owner,
                ActionOptions(delegate_to=owner.actor_id),
            )
        assert workflow_service.get_workflow_history(instance.id) == ()


# =============================================================================
# Versioning
# =============================================================================


class TestVersioning:
    def test_version_bumps_only_on_change(self, workflow_service, three_step, approvers, initiator):
        instance = _start(workflow_service, initiator)
        commented = workflow_service.take_action(
            instance.id, WorkflowAction.COMMENT, approvers[0], ActionOptions(comment="looking"),
        )
        assert commented.instance.version == 1
        approved = workflow_service.take_action(instance.id, WorkflowAction.APPROVE, approvers[0])
        assert approved.instance.version == 2

    def test_stale_expected_version_writes_nothing(
        self, workflow_service, three_step, approvers, initiator,
    ):
        instance = _start(workflow_service, initiator)
        workflow_service.take_action(instance.id, WorkflowAction.APPROVE, approvers[0])

        with pytest.raises(ConcurrentModificationError):
            workflow_service.take_action(
                instance.id, WorkflowAction.APPROVE, approvers[1], expected_version=1,
            )
        assert len(workflow_service.get_workflow_history(instance.id)) == 1


# =============================================================================
# Cancel and reads
# =============================================================================


class TestCancel:
    def test_initiator_cancels(self, workflow_service, three_step, initiator):
        instance = _start(workflow_service, initiator)
        cancelled = workflow_service.cancel_workflow(instance.id, initiator)
        assert cancelled.status == WorkflowStatus.CANCELLED
        assert cancelled.completed_by == initiator.actor_id
        assert cancelled.version == 2

    def test_only_initiator_may_cancel(self, workflow_service, three_step, approvers, initiator):
        instance = _start(workflow_service, initiator)
        with pytest.raises(NotAuthorizedError):
            workflow_service.cancel_workflow(instance.id, approvers[0])

    def test_cannot_cancel_terminal(self, workflow_service, three_step, initiator):
        instance = _start(workflow_service, initiator)
        workflow_service.cancel_workflow(instance.id, initiator)
        with pytest.raises(WorkflowAlreadyResolvedError):
            workflow_service.cancel_workflow(instance.id, initiator)


class TestPendingWorkflows:
    def test_filters_by_approver_and_company(self, workflow_service, three_step, approvers, initiator):
        company = uuid4()
        mine = _start(workflow_service, initiator, company_id=company)
        other = _start(workflow_service, initiator)
        workflow_service.take_action(other.id, WorkflowAction.APPROVE, approvers[0])
        finished = _start(workflow_service, initiator)
        workflow_service.take_action(finished.id, WorkflowAction.REJECT, approvers[0])

        first_step = workflow_service.get_pending_workflows(approver_id=approvers[0].actor_id)
        assert [i.id for i in first_step] == [mine.id]
        assert [i.id for i in workflow_service.get_pending_workflows(company_id=company)] == [mine.id]
        assert {i.id for i in workflow_service.get_pending_workflows()} == {mine.id, other.id}
