"""
hr_kernel.services.workflow_service -- Generic approval workflow engine.

Responsibility:
    Owns the lifecycle of workflow instances: start, act (approve, reject,
    return, escalate, delegate, comment), cancel, auto-terminate, and the
    read projections over instances and the action ledger.  Transition
    rules come from the pure ``hr_engines.workflow_transitions`` engine.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and
    hr_engines.  Each public mutating method owns its transaction
    boundary (commit on success, rollback on failure).

Invariants enforced:
    - Terminal immutability: no action is accepted on an instance in
      approved, rejected, cancelled or auto_terminated.
    - Validation first: not-found, terminal, version, authorization and
      option checks run before anything is written.
    - Audit before effect: once validated, the ledger row (and signature)
      is written and committed even when the transition then fails.  The
      transition runs in a SAVEPOINT so a failure leaves the instance
      exactly as it was.
    - Compare-and-swap: every instance update is conditioned on the
      version, status and step order that were read; zero affected rows
      raise ConcurrentModificationError.
    - One live instance per (reference_type, reference_id).

Failure modes:
    - TemplateNotFoundError / NoStepsConfiguredError on start.
    - InstanceNotFoundError, WorkflowAlreadyResolvedError,
      NotAuthorizedError, CommentRequiredError, DelegationNotAllowedError,
      ReturnTargetNotFoundError on take_action (nothing written).
    - ConcurrentModificationError when the row moved underneath.
    - ApproverResolutionError when the directory fails while advancing.
    - TamperDetectedError from verify_signature.

Audit relevance:
    The step action ledger is append-only and ordered by a per-instance
    sequence.  Signatures carry a SHA-256 tamper-evidence checksum over
    (signature_text, signer_id, signed_at, instance_id).
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError as SAIntegrityError
from sqlalchemy.orm import Session

from hr_engines.sla import BREACH_STATUSES, SlaStatus, compute_sla_status, step_deadline
from hr_engines.workflow_transitions import (
    StepRef,
    TransitionOutcome,
    changes_instance,
    resolve_transition,
)
from hr_kernel.domain.clock import Clock, SystemClock
from hr_kernel.domain.metadata import WorkflowMetadata, metadata_to_dict, parse_metadata
from hr_kernel.domain.workflow import (
    LIVE_WORKFLOW_STATUSES,
    TERMINAL_WORKFLOW_STATUSES,
    ActionOptions,
    ActionResult,
    Actor,
    ApprovalSubject,
    StepActionRecord,
    WorkflowAction,
    WorkflowEngineConfig,
    WorkflowInstance,
    WorkflowSignature,
    WorkflowStatus,
    WorkflowStep,
    WorkflowTemplate,
)
from hr_kernel.exceptions import (
    CommentRequiredError,
    ConcurrentModificationError,
    DelegationNotAllowedError,
    InstanceNotFoundError,
    InvalidWorkflowActionError,
    NoStepsConfiguredError,
    NotAuthorizedError,
    ReturnTargetNotFoundError,
    SignatureNotFoundError,
    TamperDetectedError,
    WorkflowAlreadyActiveError,
    WorkflowAlreadyResolvedError,
)
from hr_kernel.logging_config import LogContext, get_logger
from hr_kernel.models.workflow import (
    WorkflowInstanceModel,
    WorkflowSignatureModel,
    WorkflowStepActionModel,
)
from hr_kernel.services.approver_resolution import ApproverResolver, StaticApproverResolver
from hr_kernel.services.template_service import WorkflowTemplateService
from hr_kernel.utils.hashing import hash_signature

logger = get_logger("services.workflow_service")

CompletionHandler = Callable[[Session, WorkflowInstance], None]

_LIVE_VALUES = [s.value for s in LIVE_WORKFLOW_STATUSES]


class WorkflowService:
    """Runs workflow instances against their templates."""

    def __init__(
        self,
        session: Session,
        resolver: ApproverResolver | None = None,
        clock: Clock | None = None,
        config: WorkflowEngineConfig | None = None,
    ) -> None:
        self._session = session
        self._resolver = resolver or StaticApproverResolver()
        self._clock = clock or SystemClock()
        self._config = config or WorkflowEngineConfig()
        self._templates = WorkflowTemplateService(session)
        self._completion_handlers: dict[str, CompletionHandler] = {}

    def register_completion_handler(self, reference_type: str, handler: CompletionHandler) -> None:
        """Run ``handler`` when an instance for ``reference_type`` is approved or rejected.

        The handler runs inside the transition's savepoint; raising from it
        leaves the instance at its pre-transition state.
        """
        self._completion_handlers[reference_type] = handler

    # =========================================================================
    # Start
    # =========================================================================

    def start_workflow(
        self,
        template_code: str,
        reference_type: str,
        reference_id: UUID,
        initiator: Actor,
        metadata: WorkflowMetadata | dict[str, Any] | None = None,
        company_id: UUID | None = None,
        subject_employee_id: UUID | None = None,
        deadline_at: datetime | None = None,
    ) -> WorkflowInstance:
        """Create a pending instance at the template's first active step."""
        now = self._clock.now()
        try:
            template = self._templates.get_active_template(template_code, now.date())
            first_step = self._templates.get_first_step(template.id)
            if first_step is None:
                raise NoStepsConfiguredError(template_code)

            typed = self._coerce_metadata(template, metadata)

            existing = self._find_live_instance(reference_type, reference_id)
            if existing is not None:
                raise WorkflowAlreadyActiveError(
                    reference_type, str(reference_id), str(existing.id),
                )

            subject = ApprovalSubject(
                employee_id=subject_employee_id or getattr(typed, "employee_id", None),
                company_id=company_id or template.company_id,
                initiated_by=initiator.actor_id,
            )
            approver_id = self._resolver.resolve(first_step, subject)

            model = WorkflowInstanceModel(
                template_id=template.id,
                category=template.category.value,
                reference_type=reference_type,
                reference_id=reference_id,
                status=WorkflowStatus.PENDING.value,
                current_step_id=first_step.id,
                current_step_order=first_step.step_order,
                current_approver_id=approver_id,
                initiated_by=initiator.actor_id,
                initiated_at=now,
                company_id=subject.company_id,
                metadata_=metadata_to_dict(typed),
                deadline_at=deadline_at,
                auto_terminate_at=(
                    now + timedelta(hours=template.auto_terminate_hours)
                    if template.auto_terminate_hours else None
                ),
                current_step_started_at=now,
                current_step_deadline_at=step_deadline(now, first_step.escalation_hours),
                version=1,
            )
            self._session.add(model)
            try:
                self._session.flush()
            except SAIntegrityError as exc:
                raise WorkflowAlreadyActiveError(
                    reference_type, str(reference_id), "unknown",
                ) from exc

            instance = model.to_dto()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "workflow_started",
            extra={
                "instance_id": str(instance.id),
                "template_code": template_code,
                "reference_type": reference_type,
                "reference_id": str(reference_id),
                "first_step": first_step.step_order,
                "approver_id": str(approver_id) if approver_id else None,
            },
        )
        return instance

    # =========================================================================
    # Act
    # =========================================================================

    def take_action(
        self,
        instance_id: UUID,
        action: WorkflowAction,
        actor: Actor,
        options: ActionOptions | None = None,
        expected_version: int | None = None,
    ) -> ActionResult:
        """Record ``action`` on the current step and apply its transition.

        Args:
            instance_id: Target instance.
            action: The action taken.
            actor: Caller identity and roles.
            options: Comment, delegation, return target, signature.
            expected_version: Version the caller last saw.  When given, a
                mismatch fails before anything is written.

        Returns:
            ActionResult with the ledger row and the post-action snapshot.
        """
        options = options or ActionOptions()
        now = self._clock.now()

        with LogContext.bind(instance_id=str(instance_id), actor_id=str(actor.actor_id)):
            try:
                model = self._load_instance(instance_id)
                status = WorkflowStatus(model.status)
                if status in TERMINAL_WORKFLOW_STATUSES:
                    raise WorkflowAlreadyResolvedError(str(instance_id), status.value)
                if expected_version is not None and model.version != expected_version:
                    raise ConcurrentModificationError(
                        "WorkflowInstance", str(instance_id), expected_version,
                    )

                template = self._templates.get_template_by_id(model.template_id)
                step = self._current_step(model)
                self._authorize(model, action, actor)
                next_step, return_target = self._validate_action(
                    model, template, step, action, actor, options,
                )

                read_version = model.version
                read_order = model.current_step_order

                record_model = self._append_action(model, action, actor, options, now)
                signature = None
                if options.signature is not None and (
                    step.requires_signature or template.requires_signature
                ):
                    signature = self._store_signature(model, record_model, actor, options, now)

                outcome = resolve_transition(
                    status,
                    action,
                    next_step=StepRef(next_step.id, next_step.step_order) if next_step else None,
                    return_target=(
                        StepRef(return_target.id, return_target.step_order)
                        if return_target else None
                    ),
                )

                transitioned = False
                try:
                    with self._session.begin_nested():
                        if changes_instance(outcome, status):
                            self._apply_outcome(
                                model, outcome, action, actor, options, now,
                                expected_version=read_version,
                                expected_status=status,
                                expected_order=read_order,
                            )
                            transitioned = True
                        if outcome.completes:
                            self._run_completion_handler(model)
                except Exception as exc:
                    # Ledger row stays; the instance is untouched.
                    self._session.commit()
                    logger.warning(
                        "workflow_transition_failed",
                        extra={
                            "action": action.value,
                            "error_type": type(exc).__name__,
                            "sequence": record_model.sequence,
                        },
                    )
                    raise

                record = record_model.to_dto()
                self._session.refresh(model)
                instance = model.to_dto()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "workflow_action_recorded",
                extra={
                    "action": action.value,
                    "step_order": record.step_order,
                    "sequence": record.sequence,
                    "status": instance.status.value,
                    "transitioned": transitioned,
                },
            )
            if transitioned:
                logger.info(
                    "workflow_transitioned",
                    extra={
                        "from_status": status.value,
                        "to_status": instance.status.value,
                        "from_step": read_order,
                        "to_step": instance.current_step_order,
                        "version": instance.version,
                    },
                )

        return ActionResult(
            action_record=record,
            instance=instance,
            signature=signature.to_dto() if signature is not None else None,
            transitioned=transitioned,
        )

    def cancel_workflow(self, instance_id: UUID, actor: Actor) -> WorkflowInstance:
        """Cancel a live instance.  Only the initiator may cancel."""
        now = self._clock.now()
        try:
            model = self._load_instance(instance_id)
            status = WorkflowStatus(model.status)
            if status in TERMINAL_WORKFLOW_STATUSES:
                raise WorkflowAlreadyResolvedError(str(instance_id), status.value)
            if actor.actor_id != model.initiated_by:
                raise NotAuthorizedError(
                    str(instance_id), str(actor.actor_id), "only the initiator may cancel",
                )
            self._cas_update(
                model,
                expected_status=status,
                expected_order=model.current_step_order,
                expected_version=model.version,
                values={
                    "status": WorkflowStatus.CANCELLED.value,
                    "completed_at": now,
                    "completed_by": actor.actor_id,
                },
            )
            instance = self._load_instance(instance_id).to_dto()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "workflow_cancelled",
            extra={"instance_id": str(instance_id), "actor_id": str(actor.actor_id)},
        )
        return instance

    def auto_terminate_overdue(self, as_of: datetime | None = None) -> list[UUID]:
        """Move live instances past ``auto_terminate_at`` to auto_terminated.

        Intended to be called by an external scheduler.  Rows that change
        concurrently are skipped and picked up by the next sweep.
        """
        as_of = as_of or self._clock.now()
        terminated: list[UUID] = []
        try:
            stmt = select(WorkflowInstanceModel).where(
                WorkflowInstanceModel.status.in_(_LIVE_VALUES),
                WorkflowInstanceModel.auto_terminate_at.is_not(None),
                WorkflowInstanceModel.auto_terminate_at <= as_of,
            ).order_by(WorkflowInstanceModel.auto_terminate_at)
            for model in self._session.scalars(stmt).all():
                try:
                    with self._session.begin_nested():
                        self._cas_update(
                            model,
                            expected_status=WorkflowStatus(model.status),
                            expected_order=model.current_step_order,
                            expected_version=model.version,
                            values={
                                "status": WorkflowStatus.AUTO_TERMINATED.value,
                                "completed_at": as_of,
                            },
                        )
                except ConcurrentModificationError:
                    logger.warning(
                        "workflow_auto_terminate_conflict",
                        extra={"instance_id": str(model.id)},
                    )
                    continue
                terminated.append(model.id)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "workflow_auto_terminate_sweep",
            extra={"as_of": as_of, "terminated_count": len(terminated)},
        )
        return terminated

    # =========================================================================
    # Reads
    # =========================================================================

    def get_instance(self, instance_id: UUID) -> WorkflowInstance:
        return self._load_instance(instance_id).to_dto()

    def get_workflow_history(self, instance_id: UUID) -> tuple[StepActionRecord, ...]:
        """Ledger rows for an instance in the order they were written."""
        self._load_instance(instance_id)
        stmt = (
            select(WorkflowStepActionModel)
            .where(WorkflowStepActionModel.instance_id == instance_id)
            .order_by(WorkflowStepActionModel.sequence)
        )
        return tuple(m.to_dto() for m in self._session.scalars(stmt))

    def get_pending_workflows(
        self,
        approver_id: UUID | None = None,
        company_id: UUID | None = None,
    ) -> list[WorkflowInstance]:
        """Live instances, optionally filtered to one approver or company."""
        stmt = select(WorkflowInstanceModel).where(
            WorkflowInstanceModel.status.in_(_LIVE_VALUES),
        )
        if approver_id is not None:
            stmt = stmt.where(WorkflowInstanceModel.current_approver_id == approver_id)
        if company_id is not None:
            stmt = stmt.where(WorkflowInstanceModel.company_id == company_id)
        stmt = stmt.order_by(WorkflowInstanceModel.initiated_at, WorkflowInstanceModel.id)
        return [m.to_dto() for m in self._session.scalars(stmt)]

    def get_sla_status(self, instance_id: UUID, as_of: datetime | None = None) -> SlaStatus:
        model = self._load_instance(instance_id)
        return self._sla_for(model, as_of or self._clock.now())

    def get_sla_breaches(
        self, as_of: datetime | None = None,
    ) -> list[tuple[WorkflowInstance, SlaStatus]]:
        """Live instances whose current step is in warning, critical or overdue."""
        as_of = as_of or self._clock.now()
        breaches = []
        for instance in self.get_pending_workflows():
            model = self._load_instance(instance.id)
            sla = self._sla_for(model, as_of)
            if sla in BREACH_STATUSES:
                breaches.append((instance, sla))
        return breaches

    def get_signatures(self, instance_id: UUID) -> tuple[WorkflowSignature, ...]:
        stmt = (
            select(WorkflowSignatureModel)
            .where(WorkflowSignatureModel.instance_id == instance_id)
            .order_by(WorkflowSignatureModel.signed_at)
        )
        return tuple(m.to_dto() for m in self._session.scalars(stmt))

    def verify_signature(self, signature_id: UUID) -> WorkflowSignature:
        """Recompute a signature's checksum; raise TamperDetectedError on mismatch.

        Raises SignatureNotFoundError for an unknown ``signature_id``.
        """
        model = self._session.get(WorkflowSignatureModel, signature_id)
        if model is None:
            raise SignatureNotFoundError(str(signature_id))
        expected = hash_signature(
            model.signature_text, model.signer_id, model.signed_at, model.instance_id,
        )
        if expected != model.signature_hash:
            logger.error(
                "workflow_signature_tamper_detected",
                extra={"signature_id": str(signature_id)},
            )
            raise TamperDetectedError("WorkflowSignature", str(signature_id))
        return model.to_dto()

    # =========================================================================
    # Internal -- validation
    # =========================================================================

    def _authorize(self, model: WorkflowInstanceModel, action: WorkflowAction, actor: Actor) -> None:
        if actor.roles & self._config.override_roles:
            return
        if (
            action == WorkflowAction.COMMENT
            and self._config.allow_initiator_comment
            and actor.actor_id == model.initiated_by
        ):
            return

        step = self._current_step(model)
        allowed = {a for a in (model.current_approver_id, step.alternate_approver_id) if a}
        if not allowed:
            logger.warning(
                "workflow_step_unassigned",
                extra={"step_order": model.current_step_order, "action": action.value},
            )
            raise NotAuthorizedError(
                str(model.id), str(actor.actor_id),
                f"step {model.current_step_order} is unassigned; an override role is required",
            )
        if actor.actor_id not in allowed:
            raise NotAuthorizedError(
                str(model.id), str(actor.actor_id),
                f"not an approver for step {model.current_step_order}",
            )

    def _validate_action(
        self,
        model: WorkflowInstanceModel,
        template: WorkflowTemplate,
        step: WorkflowStep,
        action: WorkflowAction,
        actor: Actor,
        options: ActionOptions,
    ) -> tuple[WorkflowStep | None, WorkflowStep | None]:
        """Check action-specific preconditions; return (next_step, return_target)."""
        if (
            step.requires_comment
            and action in self._config.comment_required_actions
            and not (options.comment or "").strip()
        ):
            raise CommentRequiredError(str(model.id), step.step_order, action.value)

        if action == WorkflowAction.APPROVE:
            return self._templates.get_next_step(model.template_id, step.step_order), None

        if action == WorkflowAction.RETURN:
            return None, self._resolve_return_target(model, template, options)

        if action == WorkflowAction.DELEGATE:
            if not step.can_delegate:
                raise DelegationNotAllowedError(str(model.id), step.step_order)
            if options.delegate_to is None:
                raise InvalidWorkflowActionError(
                    str(model.id), action.value, "delegate_to is required",
                )
            if options.delegate_to == actor.actor_id:
                raise DelegationNotAllowedError(
                    str(model.id), step.step_order, "cannot delegate to oneself",
                )

        if action == WorkflowAction.COMMENT and not (options.comment or "").strip():
            raise InvalidWorkflowActionError(str(model.id), action.value, "comment text is empty")

        return None, None

    def _resolve_return_target(
        self,
        model: WorkflowInstanceModel,
        template: WorkflowTemplate,
        options: ActionOptions,
    ) -> WorkflowStep:
        target = options.return_to_step
        if not template.allow_return_to_previous:
            raise ReturnTargetNotFoundError(
                str(model.id), target, "template does not allow returns",
            )
        if target is None:
            raise ReturnTargetNotFoundError(str(model.id), None, "return_to_step is required")
        if target > (model.current_step_order or 0):
            raise ReturnTargetNotFoundError(
                str(model.id), target, "target is after the current step",
            )
        step = self._templates.get_step_by_order(model.template_id, target)
        if step is None:
            raise ReturnTargetNotFoundError(str(model.id), target, "no active step with that order")
        return step

    # =========================================================================
    # Internal -- writes
    # =========================================================================

    def _append_action(
        self,
        model: WorkflowInstanceModel,
        action: WorkflowAction,
        actor: Actor,
        options: ActionOptions,
        now: datetime,
    ) -> WorkflowStepActionModel:
        next_sequence = (self._session.scalar(
            select(func.max(WorkflowStepActionModel.sequence)).where(
                WorkflowStepActionModel.instance_id == model.id,
            )
        ) or 0) + 1
        record = WorkflowStepActionModel(
            instance_id=model.id,
            step_id=model.current_step_id,
            step_order=model.current_step_order or 0,
            sequence=next_sequence,
            action=action.value,
            actor_id=actor.actor_id,
            acted_at=now,
            comment=options.comment,
            internal_notes=options.internal_notes,
            delegated_to=options.delegate_to if action == WorkflowAction.DELEGATE else None,
            delegation_reason=(
                options.delegation_reason if action == WorkflowAction.DELEGATE else None
            ),
            return_to_step=options.return_to_step if action == WorkflowAction.RETURN else None,
            return_reason=options.return_reason if action == WorkflowAction.RETURN else None,
        )
        self._session.add(record)
        try:
            self._session.flush()
        except SAIntegrityError as exc:
            raise ConcurrentModificationError("WorkflowInstance", str(model.id)) from exc
        return record

    def _store_signature(
        self,
        model: WorkflowInstanceModel,
        record: WorkflowStepActionModel,
        actor: Actor,
        options: ActionOptions,
        now: datetime,
    ) -> WorkflowSignatureModel:
        payload = options.signature
        signature = WorkflowSignatureModel(
            instance_id=model.id,
            step_action_id=record.id,
            signer_id=actor.actor_id,
            signer_name=payload.signer_name or actor.name,
            signer_email=payload.signer_email or actor.email,
            signature_text=payload.signature_text,
            signed_at=now,
            signature_hash=hash_signature(payload.signature_text, actor.actor_id, now, model.id),
        )
        self._session.add(signature)
        self._session.flush()
        return signature

    def _apply_outcome(
        self,
        model: WorkflowInstanceModel,
        outcome: TransitionOutcome,
        action: WorkflowAction,
        actor: Actor,
        options: ActionOptions,
        now: datetime,
        *,
        expected_version: int,
        expected_status: WorkflowStatus,
        expected_order: int | None,
    ) -> None:
        values: dict[str, Any] = {"status": outcome.status.value}

        if outcome.step is not None:
            step = self._templates.get_step(outcome.step.step_id)
            values.update(
                current_step_id=step.id,
                current_step_order=step.step_order,
                current_approver_id=self._resolver.resolve(step, self._subject_for(model)),
                current_step_started_at=now,
                current_step_deadline_at=step_deadline(now, step.escalation_hours),
            )
        if outcome.escalates:
            values["escalated_at"] = now
        if outcome.reassigns:
            values["current_approver_id"] = options.delegate_to
        if outcome.completes:
            values.update(
                completed_at=now,
                completed_by=actor.actor_id,
                final_action=action.value,
            )

        self._cas_update(
            model,
            expected_status=expected_status,
            expected_order=expected_order,
            expected_version=expected_version,
            values=values,
        )

    def _cas_update(
        self,
        model: WorkflowInstanceModel,
        *,
        expected_status: WorkflowStatus,
        expected_order: int | None,
        expected_version: int,
        values: dict[str, Any],
    ) -> None:
        """Conditional update keyed on the state that was read."""
        order_clause = (
            WorkflowInstanceModel.current_step_order.is_(None)
            if expected_order is None
            else WorkflowInstanceModel.current_step_order == expected_order
        )
        stmt = (
            update(WorkflowInstanceModel)
            .where(
                WorkflowInstanceModel.id == model.id,
                WorkflowInstanceModel.version == expected_version,
                WorkflowInstanceModel.status == expected_status.value,
                order_clause,
            )
            .values(**values, version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)
        if result.rowcount != 1:
            raise ConcurrentModificationError(
                "WorkflowInstance", str(model.id), expected_version,
            )
        self._session.expire(model)

    def _run_completion_handler(self, model: WorkflowInstanceModel) -> None:
        handler = self._completion_handlers.get(model.reference_type)
        if handler is None:
            return
        handler(self._session, model.to_dto())

    # =========================================================================
    # Internal -- loading
    # =========================================================================

    def _load_instance(self, instance_id: UUID) -> WorkflowInstanceModel:
        """Load instance model by id, raise if not found."""
        model = self._session.get(WorkflowInstanceModel, instance_id)
        if model is None:
            raise InstanceNotFoundError(str(instance_id))
        return model

    def _current_step(self, model: WorkflowInstanceModel) -> WorkflowStep:
        step = self._templates.get_step(model.current_step_id) if model.current_step_id else None
        if step is None:
            raise InvalidWorkflowActionError(str(model.id), "load", "instance has no current step")
        return step

    def _find_live_instance(
        self, reference_type: str, reference_id: UUID,
    ) -> WorkflowInstanceModel | None:
        return self._session.scalars(
            select(WorkflowInstanceModel).where(
                WorkflowInstanceModel.reference_type == reference_type,
                WorkflowInstanceModel.reference_id == reference_id,
                WorkflowInstanceModel.status.in_(_LIVE_VALUES),
            )
        ).first()

    def _subject_for(self, model: WorkflowInstanceModel) -> ApprovalSubject:
        typed = parse_metadata(model.category, model.metadata_)
        return ApprovalSubject(
            employee_id=getattr(typed, "employee_id", None),
            company_id=model.company_id,
            initiated_by=model.initiated_by,
        )

    def _sla_for(self, model: WorkflowInstanceModel, as_of: datetime) -> SlaStatus:
        step = self._templates.get_step(model.current_step_id) if model.current_step_id else None
        return compute_sla_status(
            as_of,
            step_started_at=model.current_step_started_at,
            step_deadline_at=model.current_step_deadline_at,
            warning_hours=step.sla_warning_hours if step else None,
            critical_hours=step.sla_critical_hours if step else None,
            auto_terminate_at=model.auto_terminate_at,
        )

    @staticmethod
    def _coerce_metadata(
        template: WorkflowTemplate,
        metadata: WorkflowMetadata | dict[str, Any] | None,
    ) -> WorkflowMetadata | None:
        if metadata is None or isinstance(metadata, dict):
            return parse_metadata(template.category.value, metadata)
        return metadata
