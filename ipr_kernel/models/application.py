"""
Module: ipr_kernel.models.application
Responsibility: ORM persistence for the application aggregate and its
    contributor roster.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Status values limited by a DB check constraint; the state machine
      enforces which changes are legal.
    - version is a SQLAlchemy version_id_col; every UPDATE checks and bumps
      it, and a mismatch surfaces as StaleDataError.
    - incentive_amount and points_awarded are write-once: the ORM listener
      rejects any update that changes an already-set value.
    - UNIQUE(application_id, identity) on contributors.

Failure modes:
    - IntegrityError on duplicate application_number or contributor identity.
    - ImmutabilityViolationError on rewriting a credited incentive.
    - StaleDataError when a concurrent transaction bumped the version.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, attributes, mapped_column, relationship

from ipr_kernel.db.base import Base, UUIDString
from ipr_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from ipr_kernel.domain.application import Application, ContributorInfo


_STATUS_VALUES = (
    "'draft', 'pending_mentor_approval', 'submitted', 'under_drd_review', "
    "'changes_required', 'resubmitted', 'recommended_to_head', 'drd_approved', "
    "'under_head_review', 'head_approved', 'drd_rejected', 'head_rejected', "
    "'submitted_to_govt', 'govt_application_filed', 'govt_rejected', "
    "'published', 'completed', 'cancelled'"
)


class ApplicationModel(Base):
    """Persistent IPR disclosure.

    Contract:
        Status is only written by ApplicationStateMachine.  Every flush that
        updates the row increments ``version``.

    Guarantees:
        - application_number is unique.
        - incentive_amount / points_awarded never change once set.
    """

    __tablename__ = "ipr_applications"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_ipr_applications_valid_status",
        ),
        CheckConstraint(
            "ipr_type IN ('patent', 'copyright', 'design', 'trademark')",
            name="ck_ipr_applications_valid_ipr_type",
        ),
        CheckConstraint(
            "filing_type IN ('provisional', 'complete')",
            name="ck_ipr_applications_valid_filing_type",
        ),
        CheckConstraint(
            "applicant_type IN ('staff', 'faculty', 'student')",
            name="ck_ipr_applications_valid_applicant_type",
        ),
        Index("ix_ipr_applications_status", "status"),
        Index("ix_ipr_applications_applicant", "applicant_ref", "status"),
    )

    application_number: Mapped[str] = mapped_column(
        String(20), nullable=False, unique=True,
    )
    ipr_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(40), nullable=False, default="draft")
    filing_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="complete",
    )
    project_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    applicant_ref: Mapped[str] = mapped_column(String(200), nullable=False)
    applicant_type: Mapped[str] = mapped_column(String(20), nullable=False)
    mentor_ref: Mapped[str | None] = mapped_column(String(200), nullable=True)
    current_reviewer_ref: Mapped[str | None] = mapped_column(
        String(200), nullable=True,
    )
    sdg_codes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    govt_application_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    govt_filing_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    publication_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    incentive_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 2), nullable=True, active_history=True,
    )
    points_awarded: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 2), nullable=True, active_history=True,
    )
    credited_at: Mapped[datetime | None] = mapped_column(nullable=True)

    source_provisional_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("ipr_applications.id"), nullable=True,
    )
    changes_requested_by_mentor: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    revision_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    contributors: Mapped[list["ContributorModel"]] = relationship(
        "ContributorModel",
        back_populates="application",
        order_by="ContributorModel.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Application {self.application_number} "
            f"status={self.status} v{self.version}>"
        )

    def to_dto(self) -> Application:
        """Convert ORM model to frozen domain DTO."""
        from ipr_kernel.domain.application import (
            Application as ApplicationDTO,
            ApplicationStatus,
            EmployeeType,
            FilingType,
            IprType,
            ProjectType,
        )

        return ApplicationDTO(
            application_id=self.id,
            application_number=self.application_number,
            ipr_type=IprType(self.ipr_type),
            status=ApplicationStatus(self.status),
            filing_type=FilingType(self.filing_type),
            title=self.title,
            applicant_ref=self.applicant_ref,
            applicant_type=EmployeeType(self.applicant_type),
            version=self.version,
            created_at=self.created_at,
            updated_at=self.updated_at,
            project_type=ProjectType(self.project_type) if self.project_type else None,
            description=self.description,
            remarks=self.remarks,
            mentor_ref=self.mentor_ref,
            current_reviewer_ref=self.current_reviewer_ref,
            contributors=tuple(c.to_dto() for c in self.contributors),
            sdg_codes=tuple(self.sdg_codes or ()),
            submitted_at=self.submitted_at,
            completed_at=self.completed_at,
            govt_application_id=self.govt_application_id,
            govt_filing_date=self.govt_filing_date,
            publication_id=self.publication_id,
            incentive_amount=self.incentive_amount,
            points_awarded=self.points_awarded,
            credited_at=self.credited_at,
            source_provisional_id=self.source_provisional_id,
            changes_requested_by_mentor=bool(self.changes_requested_by_mentor),
            revision_count=self.revision_count or 0,
        )


class ContributorModel(Base):
    """A person credited on an application, in roster order."""

    __tablename__ = "ipr_contributors"

    __table_args__ = (
        UniqueConstraint(
            "application_id", "identity",
            name="uq_ipr_contributors_application_identity",
        ),
        CheckConstraint(
            "employee_category IN ('internal', 'external')",
            name="ck_ipr_contributors_valid_category",
        ),
        CheckConstraint(
            "employee_category = 'internal' OR employee_type IS NULL",
            name="ck_ipr_contributors_external_untyped",
        ),
    )

    application_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ipr_applications.id"), nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    employee_category: Mapped[str] = mapped_column(String(20), nullable=False)
    employee_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    identity: Mapped[str] = mapped_column(String(200), nullable=False)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="inventor")

    application: Mapped[ApplicationModel] = relationship(
        "ApplicationModel", back_populates="contributors",
    )

    def __repr__(self) -> str:
        return f"<Contributor {self.identity} ({self.employee_category})>"

    def to_dto(self) -> ContributorInfo:
        from ipr_kernel.domain.application import (
            ContributorInfo as ContributorDTO,
            EmployeeCategory,
            EmployeeType,
        )

        return ContributorDTO(
            identity=self.identity,
            employee_category=EmployeeCategory(self.employee_category),
            employee_type=EmployeeType(self.employee_type) if self.employee_type else None,
            name=self.name,
            role=self.role,
            position=self.position,
        )


# =============================================================================
# ORM-Level write-once guard for credited incentives
# =============================================================================

_WRITE_ONCE_FIELDS = ("incentive_amount", "points_awarded")


@event.listens_for(ApplicationModel, "before_update")
def prevent_incentive_rewrite(mapper, connection, target):
    """Reject changing an incentive value that is already set."""
    for field_name in _WRITE_ONCE_FIELDS:
        history = attributes.get_history(target, field_name)
        if not history.added:
            continue
        previous = history.deleted[0] if history.deleted else None
        if previous is not None and history.added[0] != previous:
            raise ImmutabilityViolationError(
                entity_type="Application",
                entity_id=str(target.id),
                reason=f"{field_name} is already credited -- cannot modify",
            )
