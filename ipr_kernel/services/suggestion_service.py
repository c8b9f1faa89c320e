"""
ipr_kernel.services.suggestion_service -- Collaborative field suggestions.

Responsibility:
    Reviewers propose replacement values for single fields; the applicant
    accepts (field overwritten) or rejects (field untouched) each one.
    Batch responses run one SAVEPOINT per item inside the caller's
    transaction and report every item's outcome.

Architecture position:
    Kernel > Services.  Reads go through SuggestionSelector.  Never commits.

Invariants enforced:
    - Suggestions only while the application is in a review stage.
    - pending -> accepted | rejected, exactly once.
    - Accepting a value outside an enumerated field's domain fails with
      InvalidEnumValueError and changes neither field nor suggestion.
    - Only the applicant responds.

Failure modes:
    - InvalidStateError, PermissionDeniedError, UnknownFieldError on propose.
    - SuggestionNotFoundError, SuggestionAlreadyResolvedError,
      InvalidEnumValueError, PermissionDeniedError on respond.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ipr_engines.permissions import evaluate_propose_suggestion, require_applicant
from ipr_kernel.domain.application import (
    SUGGESTION_STAGES,
    TERMINAL_STATUSES,
    ApplicationStatus,
    normalize_field_name,
    validate_field_value,
)
from ipr_kernel.domain.capabilities import Actor
from ipr_kernel.domain.clock import Clock
from ipr_kernel.domain.events import SuggestionProposed, SuggestionResolved
from ipr_kernel.domain.suggestion import (
    BatchItemResult,
    BatchRespondResult,
    EditSuggestion,
    SuggestionAction,
    SuggestionResponse,
    SuggestionStatus,
)
from ipr_kernel.exceptions import (
    InvalidEnumValueError,
    InvalidStateError,
    IprKernelError,
    PermissionDeniedError,
    PersistenceUnavailableError,
    SuggestionAlreadyResolvedError,
    SuggestionNotFoundError,
)
from ipr_kernel.logging_config import LogContext, get_logger
from ipr_kernel.models.application import ApplicationModel
from ipr_kernel.models.suggestion import EditSuggestionModel
from ipr_kernel.selectors.suggestion_selector import SuggestionSelector
from ipr_kernel.services.base import BaseService, persistence_boundary
from ipr_kernel.services.event_outbox import DomainEventOutbox

logger = get_logger("services.suggestion")


def _parse_action(action: SuggestionAction | str) -> SuggestionAction:
    try:
        return SuggestionAction(action)
    except ValueError:
        raise InvalidEnumValueError(
            "action", str(action), tuple(a.value for a in SuggestionAction),
        ) from None


def _as_text(value) -> str | None:
    if value is None:
        return None
    return value.value if hasattr(value, "value") else str(value)


class SuggestionLedger(BaseService):
    """Propose, resolve and query edit suggestions."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        outbox: DomainEventOutbox | None = None,
    ):
        super().__init__(session, clock)
        self._outbox = outbox or DomainEventOutbox.for_session(session)
        self._selector = SuggestionSelector(session)

    # ------------------------------------------------------------------
    # Proposal
    # ------------------------------------------------------------------

    def propose_suggestion(
        self,
        application_id: UUID,
        field_name: str,
        suggested_value: str | None,
        actor: Actor,
        field_path: str | None = None,
        note: str | None = None,
    ) -> EditSuggestion:
        """Record a pending suggestion, snapshotting the field's current value."""
        with LogContext.bind(application_id=str(application_id), actor_ref=actor.ref):
            model = self._load_application(application_id)
            status = ApplicationStatus(model.status)
            if status not in SUGGESTION_STAGES:
                raise InvalidStateError(str(application_id), status.value, "propose suggestions")

            allowed, reason = evaluate_propose_suggestion(actor, model.to_dto())
            if not allowed:
                raise PermissionDeniedError(actor.ref, "propose_suggestion", reason)

            name = normalize_field_name(field_name)
            now = self._clock.now()
            suggestion = EditSuggestionModel(
                application_id=model.id,
                sequence=self._next_sequence(model.id),
                field_name=name,
                field_path=field_path,
                original_value=_as_text(getattr(model, name)),
                suggested_value=suggested_value,
                note=note,
                status=SuggestionStatus.PENDING.value,
                reviewer_ref=actor.ref,
                created_at=now,
            )
            self.session.add(suggestion)
            self._flush("propose_suggestion", model.id)

            self._outbox.stage(
                SuggestionProposed(
                    application_id=model.id,
                    occurred_at=now,
                    suggestion_id=suggestion.id,
                    field_name=name,
                    reviewer_ref=actor.ref,
                )
            )
            logger.info(
                "suggestion_proposed",
                extra={
                    "suggestion_id": str(suggestion.id),
                    "field_name": name,
                    "sequence": suggestion.sequence,
                    "application_status": status.value,
                },
            )
            return suggestion.to_dto()

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    def respond_to_suggestion(
        self,
        suggestion_id: UUID,
        action: SuggestionAction | str,
        actor: Actor,
        note: str | None = None,
    ) -> EditSuggestion:
        """Accept or reject one suggestion."""
        suggestion = self._load_suggestion(suggestion_id)
        with LogContext.bind(
            application_id=str(suggestion.application_id),
            actor_ref=actor.ref,
            suggestion_id=str(suggestion_id),
        ):
            application = self._load_application(suggestion.application_id)
            # Re-read under the application lock.
            suggestion = self._load_suggestion(suggestion_id)
            return self._resolve(application, suggestion, _parse_action(action), actor, note)

    def batch_respond(
        self,
        application_id: UUID,
        responses: Iterable[SuggestionResponse],
        actor: Actor,
    ) -> BatchRespondResult:
        """Resolve several suggestions of one application.

        Each item runs in its own SAVEPOINT: a failing item is rolled back
        and reported, the others stand.  A persistence outage aborts the
        whole batch.
        """
        with LogContext.bind(application_id=str(application_id), actor_ref=actor.ref):
            application = self._load_application(application_id)
            require_applicant(actor, application.to_dto(), "respond to suggestions")

            results: list[BatchItemResult] = []
            for response in responses:
                savepoint = self.session.begin_nested()
                try:
                    suggestion = self._load_suggestion(response.suggestion_id)
                    if suggestion.application_id != application.id:
                        raise SuggestionNotFoundError(str(response.suggestion_id))
                    resolved = self._resolve(
                        application, suggestion, _parse_action(response.action),
                        actor, response.note,
                    )
                    savepoint.commit()
                    results.append(
                        BatchItemResult(
                            suggestion_id=response.suggestion_id,
                            success=True,
                            status=resolved.status,
                        )
                    )
                except PersistenceUnavailableError:
                    savepoint.rollback()
                    raise
                except IprKernelError as exc:
                    savepoint.rollback()
                    logger.info(
                        "suggestion_batch_item_failed",
                        extra={
                            "suggestion_id": str(response.suggestion_id),
                            "error_code": exc.code,
                        },
                    )
                    results.append(
                        BatchItemResult(
                            suggestion_id=response.suggestion_id,
                            success=False,
                            error_code=exc.code,
                            error_message=str(exc),
                        )
                    )

            batch = BatchRespondResult(
                application_id=application.id,
                items=tuple(results),
                pending_count=self._selector.get_pending_count(application.id),
            )
            logger.info(
                "suggestion_batch_completed",
                extra={
                    "succeeded": batch.succeeded,
                    "failed": batch.failed,
                    "pending_count": batch.pending_count,
                },
            )
            return batch

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_pending_count(self, application_id: UUID) -> int:
        return self._selector.get_pending_count(application_id)

    def get_suggestions(
        self,
        application_id: UUID,
        status: SuggestionStatus | str | None = None,
    ) -> list[EditSuggestion]:
        return self._selector.get_suggestions(application_id, status)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_suggestion(self, suggestion_id: UUID) -> EditSuggestionModel:
        stmt = (
            select(EditSuggestionModel)
            .where(EditSuggestionModel.id == suggestion_id)
            .execution_options(populate_existing=True)
        )
        with persistence_boundary("load_suggestion"):
            suggestion = self.session.execute(stmt).scalar_one_or_none()
        if suggestion is None:
            raise SuggestionNotFoundError(str(suggestion_id))
        return suggestion

    def _next_sequence(self, application_id: UUID) -> int:
        stmt = select(func.coalesce(func.max(EditSuggestionModel.sequence), 0)).where(
            EditSuggestionModel.application_id == application_id,
        )
        with persistence_boundary("next_suggestion_sequence", application_id):
            return int(self.session.execute(stmt).scalar_one()) + 1

    def _resolve(
        self,
        application: ApplicationModel,
        suggestion: EditSuggestionModel,
        action: SuggestionAction,
        actor: Actor,
        note: str | None,
    ) -> EditSuggestion:
        require_applicant(actor, application.to_dto(), "respond to suggestions")
        if ApplicationStatus(application.status) in TERMINAL_STATUSES:
            raise InvalidStateError(
                str(application.id), application.status, "respond to suggestions",
            )
        if suggestion.status != SuggestionStatus.PENDING.value:
            raise SuggestionAlreadyResolvedError(str(suggestion.id), suggestion.status)

        now = self._clock.now()
        if action == SuggestionAction.ACCEPT:
            value = validate_field_value(suggestion.field_name, suggestion.suggested_value)
            setattr(application, suggestion.field_name, value)
            application.updated_at = now
            suggestion.status = SuggestionStatus.ACCEPTED.value
        else:
            suggestion.status = SuggestionStatus.REJECTED.value
        suggestion.applicant_response = note
        suggestion.responded_by = actor.ref
        suggestion.resolved_at = now
        self._flush("respond_to_suggestion", application.id)

        self._outbox.stage(
            SuggestionResolved(
                application_id=application.id,
                occurred_at=now,
                suggestion_id=suggestion.id,
                status=suggestion.status,
                responded_by=actor.ref,
            )
        )
        logger.info(
            "suggestion_resolved",
            extra={
                "suggestion_id": str(suggestion.id),
                "field_name": suggestion.field_name,
                "status": suggestion.status,
            },
        )
        return suggestion.to_dto()
