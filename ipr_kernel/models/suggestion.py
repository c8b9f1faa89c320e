"""
Module: ipr_kernel.models.suggestion
Responsibility: ORM persistence for reviewer edit suggestions.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Status limited to pending/accepted/rejected by check constraint.
    - UNIQUE(application_id, sequence) keeps per-application ordering total.
    - A resolved suggestion is frozen: the ORM listener rejects any UPDATE
      of a row whose stored status is not pending, and any DELETE of one.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, attributes, mapped_column

from ipr_kernel.db.base import Base, UUIDString
from ipr_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from ipr_kernel.domain.suggestion import EditSuggestion


class EditSuggestionModel(Base):
    """Persistent edit suggestion."""

    __tablename__ = "ipr_edit_suggestions"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected')",
            name="ck_ipr_edit_suggestions_valid_status",
        ),
        UniqueConstraint(
            "application_id", "sequence",
            name="uq_ipr_edit_suggestions_sequence",
        ),
        Index("ix_ipr_edit_suggestions_pending", "application_id", "status"),
    )

    application_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ipr_applications.id"), nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    field_name: Mapped[str] = mapped_column(String(50), nullable=False)
    field_path: Mapped[str | None] = mapped_column(String(200), nullable=True)
    original_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    suggested_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", active_history=True,
    )
    reviewer_ref: Mapped[str] = mapped_column(String(200), nullable=False)
    applicant_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    responded_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<EditSuggestion #{self.sequence} {self.field_name} "
            f"status={self.status}>"
        )

    def to_dto(self) -> EditSuggestion:
        from ipr_kernel.domain.suggestion import (
            EditSuggestion as SuggestionDTO,
            SuggestionStatus,
        )

        return SuggestionDTO(
            suggestion_id=self.id,
            application_id=self.application_id,
            sequence=self.sequence,
            field_name=self.field_name,
            suggested_value=self.suggested_value,
            status=SuggestionStatus(self.status),
            reviewer_ref=self.reviewer_ref,
            created_at=self.created_at,
            original_value=self.original_value,
            field_path=self.field_path,
            note=self.note,
            applicant_response=self.applicant_response,
            responded_by=self.responded_by,
            resolved_at=self.resolved_at,
        )


def _stored_status(target: EditSuggestionModel) -> str | None:
    history = attributes.get_history(target, "status")
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


@event.listens_for(EditSuggestionModel, "before_update")
def prevent_resolved_suggestion_update(mapper, connection, target):
    """Only a pending suggestion may be written."""
    stored = _stored_status(target)
    if stored is not None and stored != "pending":
        raise ImmutabilityViolationError(
            entity_type="EditSuggestion",
            entity_id=str(target.id),
            reason=f"Suggestion already {stored} -- cannot modify",
        )


@event.listens_for(EditSuggestionModel, "before_delete")
def prevent_resolved_suggestion_delete(mapper, connection, target):
    """Resolved suggestions are part of the audit trail."""
    stored = _stored_status(target)
    if stored is not None and stored != "pending":
        raise ImmutabilityViolationError(
            entity_type="EditSuggestion",
            entity_id=str(target.id),
            reason=f"Suggestion already {stored} -- cannot delete",
        )
