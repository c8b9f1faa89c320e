"""
ipr_kernel.services.workflow_service -- The disclosure state machine.

Responsibility:
    Applies workflow actions to an application: finds the transition row,
    evaluates its guard, checks the actor through the permission gate,
    enforces action preconditions, mutates the aggregate, writes exactly
    one Review record, credits incentives on entering ``published``, and
    stages a StatusChanged event.

Architecture position:
    Kernel > Services.  Delegates permission decisions to
    ``ipr_engines.permissions``, reward maths to IncentiveService, mentor
    lookup to MentorGate.  Never commits.

Invariants enforced:
    - Status changes only along ``IPR_WORKFLOW`` rows or through an
      audited ``system_override``.
    - Every successful call writes exactly one Review row; a failed call
      raises before any mutation.
    - Repeating ``add_publication_id`` on a published application returns
      it unchanged: no second Review, no second credit.
    - Resubmission with pending suggestions needs ``acknowledge_pending``.

Failure modes:
    - InvalidTransitionError (and its PendingSuggestions / OverrideReason
      subclasses), PermissionDeniedError, MissingValueError.
    - ApplicationNotFoundError, ConcurrentModificationError,
      PersistenceUnavailableError from the aggregate load and flush.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ipr_engines.permissions import (
    evaluate_override,
    evaluate_transition,
    require_capability,
    require_override,
    require_transition,
)
from ipr_kernel.domain.application import (
    TERMINAL_STATUSES,
    Application,
    ApplicationStatus,
    EmployeeType,
    ReviewDecision,
    ReviewerRole,
    WorkflowAction,
)
from ipr_kernel.domain.capabilities import Actor
from ipr_kernel.domain.clock import Clock
from ipr_kernel.domain.events import StatusChanged
from ipr_kernel.domain.workflow import (
    GUARD_MENTOR_REQUESTED_CHANGES,
    GUARD_MENTOR_REVIEW_REQUIRED,
    IPR_WORKFLOW,
    Guard,
    Party,
    Transition,
    Workflow,
)
from ipr_kernel.exceptions import (
    InvalidTransitionError,
    IprKernelError,
    MissingValueError,
    OverrideReasonRequiredError,
    PendingSuggestionsError,
)
from ipr_kernel.logging_config import LogContext, get_logger
from ipr_kernel.models.application import ApplicationModel
from ipr_kernel.models.review import ReviewModel
from ipr_kernel.selectors.suggestion_selector import SuggestionSelector
from ipr_kernel.services.base import BaseService, persistence_boundary
from ipr_kernel.services.event_outbox import DomainEventOutbox
from ipr_kernel.services.incentive_service import IncentiveService
from ipr_kernel.services.mentor_gate import MentorGate

logger = get_logger("services.workflow")

TRACE_TYPE_WORKFLOW_TRANSITION = "IPR_WORKFLOW_TRANSITION"
OUTCOME_SUCCESS = "success"
OUTCOME_NO_TRANSITION = "no_transition"
OUTCOME_GUARD_FAILED = "guard_failed"
OUTCOME_PERMISSION_DENIED = "permission_denied"
OUTCOME_PRECONDITION_FAILED = "precondition_failed"
OUTCOME_IDEMPOTENT = "idempotent_replay"
OUTCOME_OVERRIDE = "override"


def _emit_workflow_trace(
    application_id: UUID,
    action: str,
    from_state: str,
    outcome: str,
    reason: str,
    duration_ms: float,
    to_state: str | None = None,
    outcome_sink: Callable[[dict], None] | None = None,
) -> None:
    """Emit one structured record per transition attempt, whatever the outcome."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_WORKFLOW_TRANSITION,
        "ts": datetime.now(UTC).isoformat(),
        "workflow": IPR_WORKFLOW.name,
        "action": action,
        "application_id": str(application_id),
        "from_state": from_state,
        "outcome": outcome,
        "reason": reason,
        "duration_ms": round(duration_ms, 3),
    }
    if to_state is not None:
        record["to_state"] = to_state
    record.update(LogContext.get_all())
    if outcome == OUTCOME_SUCCESS or outcome == OUTCOME_OVERRIDE:
        logger.info("workflow_transition", extra=record)
    else:
        logger.warning("workflow_transition", extra=record)
    if outcome_sink is not None:
        outcome_sink(record)


class GuardExecutor:
    """Evaluates transition guards by name against a context dict."""

    def __init__(self) -> None:
        self._evaluators: dict[str, Callable[[dict[str, Any]], bool]] = {}

    def register(self, guard_name: str, evaluator: Callable[[dict[str, Any]], bool]) -> None:
        self._evaluators[guard_name] = evaluator

    def evaluate(self, guard: Guard, context: dict[str, Any]) -> bool:
        fn = self._evaluators.get(guard.name)
        if fn is None:
            logger.warning("guard_no_evaluator", extra={"guard_name": guard.name})
            return False
        return bool(fn(context))


def default_guard_executor() -> GuardExecutor:
    ex = GuardExecutor()
    ex.register(
        GUARD_MENTOR_REVIEW_REQUIRED.name,
        lambda ctx: ctx.get("mentor_ref") is not None,
    )
    ex.register(
        GUARD_MENTOR_REQUESTED_CHANGES.name,
        lambda ctx: bool(ctx["application"].changes_requested_by_mentor),
    )
    return ex


class ApplicationStateMachine(BaseService):
    """Applies workflow actions to one application at a time."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        mentor_gate: MentorGate | None = None,
        incentive_service: IncentiveService | None = None,
        outbox: DomainEventOutbox | None = None,
        workflow: Workflow = IPR_WORKFLOW,
        guard_executor: GuardExecutor | None = None,
        outcome_sink: Callable[[dict], None] | None = None,
    ):
        super().__init__(session, clock)
        self._workflow = workflow
        self._mentor_gate = mentor_gate or MentorGate()
        self._outbox = outbox or DomainEventOutbox.for_session(session)
        self._incentives = incentive_service or IncentiveService(
            session, clock=self._clock, outbox=self._outbox,
        )
        self._guards = guard_executor or default_guard_executor()
        self._outcome_sink = outcome_sink
        self._suggestions = SuggestionSelector(session)

    # ------------------------------------------------------------------
    # Generic entry point
    # ------------------------------------------------------------------

    def apply(
        self,
        application_id: UUID,
        action: WorkflowAction | str,
        actor: Actor,
        *,
        comments: str | None = None,
        value: str | None = None,
        filing_date: date | None = None,
        acknowledge_pending: bool = False,
        expected_version: int | None = None,
    ) -> Application:
        """Fire ``action`` on the application.

        Args:
            value: The action's required value: government application id
                for ``add_govt_id``, publication id for
                ``add_publication_id``, reviewer ref for ``assign_reviewer``.
            acknowledge_pending: Resubmit even though suggestions are still
                pending; the count is written into the Review comments.
            expected_version: The version the caller viewed.

        Returns:
            The application after the transition.
        """
        with LogContext.bind(application_id=str(application_id), actor_ref=actor.ref):
            t0 = time.monotonic()
            model = self._load_application(
                application_id, expected_version=expected_version,
            )
            current = ApplicationStatus(model.status)

            try:
                action = WorkflowAction(action)
            except ValueError:
                raise InvalidTransitionError(
                    str(application_id), current.value, str(action), "unknown action",
                ) from None

            if action == WorkflowAction.SYSTEM_OVERRIDE:
                raise InvalidTransitionError(
                    str(application_id), current.value, action.value,
                    "use system_override() with a target status and reason",
                )

            if action == WorkflowAction.ADD_PUBLICATION_ID and current == ApplicationStatus.PUBLISHED:
                return self._replay_publication(model, actor, value, t0)

            transition, context = self._select_transition(model, current, action, actor, t0)
            self._check_permission(model, transition, actor, t0)

            try:
                comments = self._check_preconditions(model, transition, value, comments, acknowledge_pending)
            except IprKernelError as exc:
                _emit_workflow_trace(
                    application_id, action.value, current.value,
                    OUTCOME_PRECONDITION_FAILED, str(exc),
                    (time.monotonic() - t0) * 1000,
                    outcome_sink=self._outcome_sink,
                )
                raise

            self._mutate(model, transition, context, value, filing_date)
            self._write_review(
                model,
                actor=actor,
                action=action,
                from_status=current,
                to_status=transition.to_state,
                reviewer_role=transition.reviewer_role,
                decision=transition.decision,
                comments=comments,
            )
            self._flush(action.value, model.id)

            if transition.to_state == ApplicationStatus.PUBLISHED:
                self._incentives.credit_on_publish(model)

            self._stage_status_changed(model.id, current, transition.to_state, action, actor)
            _emit_workflow_trace(
                application_id, action.value, current.value, OUTCOME_SUCCESS, "",
                (time.monotonic() - t0) * 1000,
                to_state=transition.to_state.value,
                outcome_sink=self._outcome_sink,
            )
            return model.to_dto()

    # ------------------------------------------------------------------
    # Named actions
    # ------------------------------------------------------------------

    def submit(self, application_id: UUID, actor: Actor, **kwargs: Any) -> Application:
        return self.apply(application_id, WorkflowAction.SUBMIT, actor, **kwargs)

    def approve(self, application_id: UUID, actor: Actor, **kwargs: Any) -> Application:
        return self.apply(application_id, WorkflowAction.APPROVE, actor, **kwargs)

    def reject(self, application_id: UUID, actor: Actor, **kwargs: Any) -> Application:
        return self.apply(application_id, WorkflowAction.REJECT, actor, **kwargs)

    def request_changes(self, application_id: UUID, actor: Actor, **kwargs: Any) -> Application:
        return self.apply(application_id, WorkflowAction.REQUEST_CHANGES, actor, **kwargs)

    def recommend(self, application_id: UUID, actor: Actor, **kwargs: Any) -> Application:
        return self.apply(application_id, WorkflowAction.RECOMMEND, actor, **kwargs)

    def assign_reviewer(
        self, application_id: UUID, actor: Actor, reviewer_ref: str | None = None, **kwargs: Any,
    ) -> Application:
        return self.apply(
            application_id, WorkflowAction.ASSIGN_REVIEWER, actor, value=reviewer_ref, **kwargs,
        )

    def resubmit(
        self, application_id: UUID, actor: Actor, acknowledge_pending: bool = False, **kwargs: Any,
    ) -> Application:
        return self.apply(
            application_id, WorkflowAction.RESUBMIT, actor,
            acknowledge_pending=acknowledge_pending, **kwargs,
        )

    def head_approve(self, application_id: UUID, actor: Actor, **kwargs: Any) -> Application:
        return self.apply(application_id, WorkflowAction.HEAD_APPROVE, actor, **kwargs)

    def head_reject(self, application_id: UUID, actor: Actor, **kwargs: Any) -> Application:
        return self.apply(application_id, WorkflowAction.HEAD_REJECT, actor, **kwargs)

    def add_govt_id(
        self, application_id: UUID, actor: Actor, govt_application_id: str, **kwargs: Any,
    ) -> Application:
        return self.apply(
            application_id, WorkflowAction.ADD_GOVT_ID, actor, value=govt_application_id, **kwargs,
        )

    def add_publication_id(
        self, application_id: UUID, actor: Actor, publication_id: str, **kwargs: Any,
    ) -> Application:
        return self.apply(
            application_id, WorkflowAction.ADD_PUBLICATION_ID, actor, value=publication_id, **kwargs,
        )

    def mark_rejected(self, application_id: UUID, actor: Actor, **kwargs: Any) -> Application:
        return self.apply(application_id, WorkflowAction.MARK_REJECTED, actor, **kwargs)

    def system_override(
        self,
        application_id: UUID,
        actor: Actor,
        target_status: ApplicationStatus | str,
        reason: str,
        expected_version: int | None = None,
    ) -> Application:
        """Force the application into ``target_status``.

        Requires the admin capability and a non-empty reason.  The target
        must be a known status other than the current one, and the
        application must not be terminal.  An override into ``published``
        credits incentives like the normal path.
        """
        with LogContext.bind(application_id=str(application_id), actor_ref=actor.ref):
            t0 = time.monotonic()
            model = self._load_application(
                application_id, expected_version=expected_version,
            )
            current = ApplicationStatus(model.status)
            action = WorkflowAction.SYSTEM_OVERRIDE

            allowed, denial = evaluate_override(actor)
            if not allowed:
                _emit_workflow_trace(
                    application_id, action.value, current.value,
                    OUTCOME_PERMISSION_DENIED, denial,
                    (time.monotonic() - t0) * 1000,
                    outcome_sink=self._outcome_sink,
                )
                require_override(actor)

            if not (reason or "").strip():
                raise OverrideReasonRequiredError(str(application_id), current.value)
            if current in TERMINAL_STATUSES:
                raise InvalidTransitionError(
                    str(application_id), current.value, action.value,
                    "terminal applications cannot be overridden",
                )
            try:
                target = ApplicationStatus(target_status)
            except ValueError:
                raise InvalidTransitionError(
                    str(application_id), current.value, action.value,
                    f"unknown target status '{target_status}'",
                ) from None
            if target == current:
                raise InvalidTransitionError(
                    str(application_id), current.value, action.value,
                    "target status equals current status",
                )

            decision = (
                ReviewDecision.REJECTED if "rejected" in target.value
                else ReviewDecision.APPROVED
            )
            now = self._clock.now()
            model.status = target.value
            model.updated_at = now
            if target in TERMINAL_STATUSES:
                model.completed_at = now
            self._write_review(
                model,
                actor=actor,
                action=action,
                from_status=current,
                to_status=target,
                reviewer_role=ReviewerRole.SYSTEM_ADMIN,
                decision=decision,
                comments=reason.strip(),
            )
            self._flush(action.value, model.id)

            if target == ApplicationStatus.PUBLISHED:
                self._incentives.credit_on_publish(model)

            logger.warning(
                "system_override_applied",
                extra={
                    "from_status": current.value,
                    "to_status": target.value,
                    "reason": reason.strip(),
                },
            )
            self._stage_status_changed(model.id, current, target, action, actor)
            _emit_workflow_trace(
                application_id, action.value, current.value, OUTCOME_OVERRIDE,
                reason.strip(), (time.monotonic() - t0) * 1000,
                to_state=target.value,
                outcome_sink=self._outcome_sink,
            )
            return model.to_dto()

    def available_actions(self, application_id: UUID, actor: Actor) -> tuple[WorkflowAction, ...]:
        """Actions this actor may currently fire, re-evaluated on every call."""
        model = self._load_application(application_id, for_update=False)
        application = model.to_dto()
        actions: list[WorkflowAction] = []
        for action in self._workflow.actions_from(application.status):
            first = self._workflow.candidates(application.status, action)[0]
            allowed, _ = evaluate_transition(actor, first, application)
            if allowed:
                actions.append(action)
        if application.status not in TERMINAL_STATUSES and evaluate_override(actor)[0]:
            actions.append(WorkflowAction.SYSTEM_OVERRIDE)
        return tuple(actions)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _select_transition(
        self,
        model: ApplicationModel,
        current: ApplicationStatus,
        action: WorkflowAction,
        actor: Actor,
        t0: float,
    ) -> tuple[Transition, dict[str, Any]]:
        candidates = self._workflow.candidates(current, action)
        if not candidates:
            reason = f"no '{action.value}' transition from '{current.value}'"
            _emit_workflow_trace(
                model.id, action.value, current.value, OUTCOME_NO_TRANSITION, reason,
                (time.monotonic() - t0) * 1000,
                outcome_sink=self._outcome_sink,
            )
            raise InvalidTransitionError(str(model.id), current.value, action.value, reason)

        application = model.to_dto()
        context: dict[str, Any] = {"application": application, "mentor_ref": None}
        if action == WorkflowAction.SUBMIT and candidates[0].party == Party.APPLICANT:
            # Directory is only consulted for the applicant's own submit.
            if actor.ref == application.applicant_ref:
                context["mentor_ref"] = self._mentor_gate.resolve_mentor(
                    application.applicant_ref,
                    EmployeeType(application.applicant_type),
                )

        for transition in candidates:
            if transition.guard is None or self._guards.evaluate(transition.guard, context):
                return transition, context

        reason = f"no guard satisfied for '{action.value}'"
        _emit_workflow_trace(
            model.id, action.value, current.value, OUTCOME_GUARD_FAILED, reason,
            (time.monotonic() - t0) * 1000,
            outcome_sink=self._outcome_sink,
        )
        raise InvalidTransitionError(str(model.id), current.value, action.value, reason)

    def _check_permission(
        self,
        model: ApplicationModel,
        transition: Transition,
        actor: Actor,
        t0: float,
    ) -> None:
        application = model.to_dto()
        allowed, reason = evaluate_transition(actor, transition, application)
        if not allowed:
            _emit_workflow_trace(
                model.id, transition.action.value, transition.from_state.value,
                OUTCOME_PERMISSION_DENIED, reason,
                (time.monotonic() - t0) * 1000,
                outcome_sink=self._outcome_sink,
            )
            require_transition(actor, transition, application)

    def _check_preconditions(
        self,
        model: ApplicationModel,
        transition: Transition,
        value: str | None,
        comments: str | None,
        acknowledge_pending: bool,
    ) -> str | None:
        """Raise if the action cannot proceed; return the Review comments."""
        if transition.required_value and not (value or "").strip():
            raise MissingValueError(transition.required_value)

        if transition.action == WorkflowAction.RESUBMIT:
            pending = self._suggestions.get_pending_count(model.id)
            if pending:
                if not acknowledge_pending:
                    raise PendingSuggestionsError(str(model.id), pending)
                logger.warning(
                    "resubmit_with_pending_suggestions",
                    extra={"pending_count": pending},
                )
                note = f"Resubmitted with {pending} pending suggestion(s) acknowledged"
                return f"{note}. {comments}" if comments else note
        return comments

    def _mutate(
        self,
        model: ApplicationModel,
        transition: Transition,
        context: dict[str, Any],
        value: str | None,
        filing_date: date | None,
    ) -> None:
        now = self._clock.now()
        action = transition.action
        model.status = transition.to_state.value
        model.updated_at = now

        if action == WorkflowAction.SUBMIT:
            model.submitted_at = now
            model.mentor_ref = context["mentor_ref"]
            model.changes_requested_by_mentor = False
        elif transition.party == Party.MENTOR:
            model.changes_requested_by_mentor = action != WorkflowAction.APPROVE
        elif action == WorkflowAction.REQUEST_CHANGES:
            model.changes_requested_by_mentor = False
        elif action == WorkflowAction.RESUBMIT:
            if transition.to_state == ApplicationStatus.RESUBMITTED:
                model.revision_count = (model.revision_count or 0) + 1
            model.changes_requested_by_mentor = False
        elif action == WorkflowAction.ASSIGN_REVIEWER and value:
            model.current_reviewer_ref = value.strip()
        elif action == WorkflowAction.ADD_GOVT_ID:
            model.govt_application_id = value.strip()
            model.govt_filing_date = filing_date or now.date()
        elif action == WorkflowAction.ADD_PUBLICATION_ID:
            model.publication_id = value.strip()

        if transition.to_state in TERMINAL_STATUSES:
            model.completed_at = now

    def _write_review(
        self,
        model: ApplicationModel,
        *,
        actor: Actor,
        action: WorkflowAction,
        from_status: ApplicationStatus,
        to_status: ApplicationStatus,
        reviewer_role: ReviewerRole,
        decision: ReviewDecision | None,
        comments: str | None,
    ) -> ReviewModel:
        stmt = select(func.coalesce(func.max(ReviewModel.sequence), 0)).where(
            ReviewModel.application_id == model.id,
        )
        with persistence_boundary("next_review_sequence", model.id):
            next_sequence = self.session.execute(stmt).scalar_one() + 1
        review = ReviewModel(
            application_id=model.id,
            sequence=next_sequence,
            reviewer_ref=actor.ref,
            reviewer_role=reviewer_role.value,
            action=action.value,
            from_status=from_status.value,
            to_status=to_status.value,
            decision=decision.value if decision else None,
            comments=comments,
            reviewed_at=self._clock.now(),
        )
        self.session.add(review)
        return review

    def _replay_publication(
        self,
        model: ApplicationModel,
        actor: Actor,
        value: str | None,
        t0: float,
    ) -> Application:
        require_capability(actor, "review", WorkflowAction.ADD_PUBLICATION_ID.value)
        if value and value.strip() != model.publication_id:
            raise InvalidTransitionError(
                str(model.id), model.status, WorkflowAction.ADD_PUBLICATION_ID.value,
                "already published under a different publication id",
            )
        _emit_workflow_trace(
            model.id, WorkflowAction.ADD_PUBLICATION_ID.value, model.status,
            OUTCOME_IDEMPOTENT, "already published",
            (time.monotonic() - t0) * 1000,
            to_state=model.status,
            outcome_sink=self._outcome_sink,
        )
        return model.to_dto()

    def _stage_status_changed(
        self,
        application_id: UUID,
        from_status: ApplicationStatus,
        to_status: ApplicationStatus,
        action: WorkflowAction,
        actor: Actor,
    ) -> None:
        self._outbox.stage(
            StatusChanged(
                application_id=application_id,
                occurred_at=self._clock.now(),
                from_status=from_status.value,
                to_status=to_status.value,
                action=action.value,
                actor_ref=actor.ref,
            )
        )
