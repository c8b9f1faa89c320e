"""
Module: ipr_kernel.selectors.suggestion_selector
Responsibility: Read-only access to edit suggestions and review history.

Invariants enforced:
    - Suggestions are listed newest first; ties on created_at fall back to
      the per-application sequence, so ordering is total.
    - Reviews are listed in the order they were written.
    - Reads run inside ``persistence_boundary``; an outage surfaces as
      PersistenceUnavailableError.

Failure modes:
    - Returns empty lists and zero counts on absence of data; only
      ``get_suggestion`` raises (SuggestionNotFoundError).
    - An unknown status filter raises InvalidEnumValueError.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select

from ipr_kernel.db.boundary import persistence_boundary
from ipr_kernel.domain.application import ReviewRecord
from ipr_kernel.domain.suggestion import EditSuggestion, SuggestionStatus
from ipr_kernel.exceptions import InvalidEnumValueError, SuggestionNotFoundError
from ipr_kernel.models.review import ReviewModel
from ipr_kernel.models.suggestion import EditSuggestionModel
from ipr_kernel.selectors.base import BaseSelector


def _parse_status(status: SuggestionStatus | str) -> SuggestionStatus:
    try:
        return SuggestionStatus(status)
    except ValueError:
        raise InvalidEnumValueError(
            "status", str(status), tuple(s.value for s in SuggestionStatus),
        ) from None


class SuggestionSelector(BaseSelector):
    """Queries over ``ipr_edit_suggestions``."""

    def get_pending_count(self, application_id: UUID) -> int:
        stmt = select(func.count(EditSuggestionModel.id)).where(
            EditSuggestionModel.application_id == application_id,
            EditSuggestionModel.status == SuggestionStatus.PENDING.value,
        )
        with persistence_boundary("count_pending_suggestions", application_id):
            return int(self.session.execute(stmt).scalar_one())

    def get_suggestions(
        self,
        application_id: UUID,
        status: SuggestionStatus | str | None = None,
    ) -> list[EditSuggestion]:
        """All suggestions for an application, newest first.

        Args:
            status: Restrict to one status (enum member or its value).
        """
        stmt = select(EditSuggestionModel).where(
            EditSuggestionModel.application_id == application_id,
        )
        if status is not None:
            stmt = stmt.where(EditSuggestionModel.status == _parse_status(status).value)
        stmt = stmt.order_by(
            EditSuggestionModel.created_at.desc(),
            EditSuggestionModel.sequence.desc(),
        )
        with persistence_boundary("list_suggestions", application_id):
            models = self.session.execute(stmt).scalars().all()
        return [m.to_dto() for m in models]

    def get_suggestion(self, suggestion_id: UUID) -> EditSuggestion:
        with persistence_boundary("get_suggestion"):
            model = self.session.get(EditSuggestionModel, suggestion_id)
        if model is None:
            raise SuggestionNotFoundError(str(suggestion_id))
        return model.to_dto()


class ReviewSelector(BaseSelector):
    """Queries over the append-only ``ipr_reviews`` trail."""

    def get_reviews(self, application_id: UUID) -> list[ReviewRecord]:
        stmt = (
            select(ReviewModel)
            .where(ReviewModel.application_id == application_id)
            .order_by(ReviewModel.sequence)
        )
        with persistence_boundary("list_reviews", application_id):
            models = self.session.execute(stmt).scalars().all()
        return [m.to_dto() for m in models]

    def count_reviews(self, application_id: UUID) -> int:
        stmt = select(func.count(ReviewModel.id)).where(
            ReviewModel.application_id == application_id,
        )
        with persistence_boundary("count_reviews", application_id):
            return int(self.session.execute(stmt).scalar_one())
