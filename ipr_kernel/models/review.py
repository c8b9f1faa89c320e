"""
Module: ipr_kernel.models.review
Responsibility: ORM persistence for workflow review records.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: one row per transition, never updated or deleted.
    - UNIQUE(application_id, sequence) gives each application a total order.

Failure modes:
    - ImmutabilityViolationError on UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from ipr_kernel.db.base import Base, UUIDString
from ipr_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from ipr_kernel.domain.application import ReviewRecord


class ReviewModel(Base):
    """Persistent review record.  Immutable once flushed."""

    __tablename__ = "ipr_reviews"

    __table_args__ = (
        CheckConstraint(
            "reviewer_role IN ('applicant', 'mentor', 'drd_member', "
            "'drd_head', 'system_admin')",
            name="ck_ipr_reviews_valid_role",
        ),
        CheckConstraint(
            "decision IS NULL OR decision IN ('approved', 'rejected', "
            "'changes_required', 'recommended')",
            name="ck_ipr_reviews_valid_decision",
        ),
        UniqueConstraint(
            "application_id", "sequence",
            name="uq_ipr_reviews_application_sequence",
        ),
    )

    application_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ipr_applications.id"), nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    reviewer_ref: Mapped[str] = mapped_column(String(200), nullable=False)
    reviewer_role: Mapped[str] = mapped_column(String(20), nullable=False)
    action: Mapped[str] = mapped_column(String(40), nullable=False)
    from_status: Mapped[str] = mapped_column(String(40), nullable=False)
    to_status: Mapped[str] = mapped_column(String(40), nullable=False)
    decision: Mapped[str | None] = mapped_column(String(20), nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<Review {self.action} {self.from_status}->{self.to_status} "
            f"by {self.reviewer_ref}>"
        )

    def to_dto(self) -> ReviewRecord:
        from ipr_kernel.domain.application import (
            ApplicationStatus,
            ReviewDecision,
            ReviewerRole,
            ReviewRecord as ReviewDTO,
            WorkflowAction,
        )

        return ReviewDTO(
            review_id=self.id,
            application_id=self.application_id,
            sequence=self.sequence,
            reviewer_ref=self.reviewer_ref,
            reviewer_role=ReviewerRole(self.reviewer_role),
            action=WorkflowAction(self.action),
            from_status=ApplicationStatus(self.from_status),
            to_status=ApplicationStatus(self.to_status),
            decision=ReviewDecision(self.decision) if self.decision else None,
            comments=self.comments,
            reviewed_at=self.reviewed_at,
        )


# =============================================================================
# ORM-Level Immutability for Reviews (Append-Only)
# =============================================================================


@event.listens_for(ReviewModel, "before_update")
def prevent_review_update(mapper, connection, target):
    """Prevent updates to review records."""
    raise ImmutabilityViolationError(
        entity_type="Review",
        entity_id=str(target.id),
        reason="Review records are immutable -- cannot modify",
    )


@event.listens_for(ReviewModel, "before_delete")
def prevent_review_delete(mapper, connection, target):
    """Prevent deletion of review records."""
    raise ImmutabilityViolationError(
        entity_type="Review",
        entity_id=str(target.id),
        reason="Review records are immutable -- cannot delete",
    )
