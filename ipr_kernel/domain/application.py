"""
Application domain types (``ipr_kernel.domain.application``).

Responsibility
--------------
Pure value objects for an IPR disclosure: the status vocabulary, the fixed
enumerated field domains, the editable field surface, and immutable DTOs for
applications, contributors and review records.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Terminal statuses have no outgoing workflow edge; ``system_override``
  refuses to leave them.
* ``ipr_type``, ``project_type`` and ``filing_type`` only ever hold values
  from ``ENUM_FIELD_DOMAINS``.
* Contributor identities are compared lower-cased.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ipr_kernel.exceptions import (
    InvalidEnumValueError,
    MissingValueError,
    UnknownFieldError,
)


# =========================================================================
# Enumerations
# =========================================================================


class IprType(str, Enum):
    PATENT = "patent"
    COPYRIGHT = "copyright"
    DESIGN = "design"
    TRADEMARK = "trademark"


class ProjectType(str, Enum):
    PHD = "phd"
    PG_PROJECT = "pg_project"
    UG_PROJECT = "ug_project"
    FACULTY_RESEARCH = "faculty_research"
    INDUSTRY_COLLABORATION = "industry_collaboration"
    ANY_OTHER = "any_other"


class FilingType(str, Enum):
    PROVISIONAL = "provisional"
    COMPLETE = "complete"


class EmployeeType(str, Enum):
    """Type of an internal person.  Also used as the applicant type."""

    STAFF = "staff"
    FACULTY = "faculty"
    STUDENT = "student"


class EmployeeCategory(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"


class ApplicationStatus(str, Enum):
    """Disclosure lifecycle states."""

    DRAFT = "draft"
    PENDING_MENTOR_APPROVAL = "pending_mentor_approval"
    SUBMITTED = "submitted"
    UNDER_DRD_REVIEW = "under_drd_review"
    CHANGES_REQUIRED = "changes_required"
    RESUBMITTED = "resubmitted"
    RECOMMENDED_TO_HEAD = "recommended_to_head"
    DRD_APPROVED = "drd_approved"
    UNDER_HEAD_REVIEW = "under_head_review"
    HEAD_APPROVED = "head_approved"
    DRD_REJECTED = "drd_rejected"
    HEAD_REJECTED = "head_rejected"
    SUBMITTED_TO_GOVT = "submitted_to_govt"
    GOVT_APPLICATION_FILED = "govt_application_filed"
    GOVT_REJECTED = "govt_rejected"
    PUBLISHED = "published"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: frozenset[ApplicationStatus] = frozenset({
    ApplicationStatus.PUBLISHED,
    ApplicationStatus.COMPLETED,
    ApplicationStatus.DRD_REJECTED,
    ApplicationStatus.HEAD_REJECTED,
    ApplicationStatus.GOVT_REJECTED,
    ApplicationStatus.CANCELLED,
})

# Stages in which reviewers may attach edit suggestions.
SUGGESTION_STAGES: frozenset[ApplicationStatus] = frozenset({
    ApplicationStatus.PENDING_MENTOR_APPROVAL,
    ApplicationStatus.SUBMITTED,
    ApplicationStatus.UNDER_DRD_REVIEW,
    ApplicationStatus.RESUBMITTED,
    ApplicationStatus.CHANGES_REQUIRED,
})

# Stages in which the applicant may edit the contributor roster.
ROSTER_EDIT_STAGES: frozenset[ApplicationStatus] = frozenset({
    ApplicationStatus.DRAFT,
    ApplicationStatus.CHANGES_REQUIRED,
})


class WorkflowAction(str, Enum):
    """Every action that can move an application between statuses."""

    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_CHANGES = "request_changes"
    RECOMMEND = "recommend"
    ASSIGN_REVIEWER = "assign_reviewer"
    RESUBMIT = "resubmit"
    HEAD_APPROVE = "head_approve"
    HEAD_REJECT = "head_reject"
    ADD_GOVT_ID = "add_govt_id"
    ADD_PUBLICATION_ID = "add_publication_id"
    MARK_REJECTED = "mark_rejected"
    SYSTEM_OVERRIDE = "system_override"


class ReviewerRole(str, Enum):
    APPLICANT = "applicant"
    MENTOR = "mentor"
    DRD_MEMBER = "drd_member"
    DRD_HEAD = "drd_head"
    SYSTEM_ADMIN = "system_admin"


class ReviewDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    CHANGES_REQUIRED = "changes_required"
    RECOMMENDED = "recommended"


APPLICATION_NUMBER_PREFIX: dict[IprType, str] = {
    IprType.PATENT: "PAT",
    IprType.COPYRIGHT: "CPY",
    IprType.TRADEMARK: "TRM",
    IprType.DESIGN: "DES",
}


def format_application_number(ipr_type: IprType, year: int, ordinal: int) -> str:
    """``PAT-2026-0007`` style number; ordinal is 1-based per type and year."""
    return f"{APPLICATION_NUMBER_PREFIX[ipr_type]}-{year}-{ordinal:04d}"


# =========================================================================
# Editable field surface
# =========================================================================

ENUM_FIELD_DOMAINS: dict[str, tuple[str, ...]] = {
    "ipr_type": tuple(m.value for m in IprType),
    "project_type": tuple(m.value for m in ProjectType),
    "filing_type": tuple(m.value for m in FilingType),
}

TEXT_FIELDS: tuple[str, ...] = ("title", "description", "remarks")

SUGGESTABLE_FIELDS: frozenset[str] = frozenset(TEXT_FIELDS) | frozenset(
    ENUM_FIELD_DOMAINS
)

FIELD_ALIASES: dict[str, str] = {
    "iprType": "ipr_type",
    "projectType": "project_type",
    "filingType": "filing_type",
}


def normalize_field_name(field_name: str) -> str:
    """Map a caller-supplied field name onto the stored attribute name.

    Raises:
        UnknownFieldError: The field is not part of the editable surface.
    """
    name = (field_name or "").strip()
    name = FIELD_ALIASES.get(name, name)
    if name not in SUGGESTABLE_FIELDS:
        raise UnknownFieldError(field_name)
    return name


def validate_field_value(field_name: str, value: str | None) -> str | None:
    """Check a value against the field's domain and return it normalized.

    Enumerated fields are trimmed and must match a domain value exactly.
    ``title`` may not be blank.  Other text fields are returned as given.
    """
    if field_name in ENUM_FIELD_DOMAINS:
        candidate = (value or "").strip()
        allowed = ENUM_FIELD_DOMAINS[field_name]
        if candidate not in allowed:
            raise InvalidEnumValueError(field_name, value or "", allowed)
        return candidate
    if field_name == "title" and not (value or "").strip():
        raise MissingValueError("title")
    return value


def normalize_identity(identity: str) -> str:
    """Contributor identities (uid or email) compare case-insensitively."""
    normalized = (identity or "").strip().lower()
    if not normalized:
        raise MissingValueError("identity")
    return normalized


# =========================================================================
# DTOs
# =========================================================================


@dataclass(frozen=True)
class ContributorInfo:
    """A person credited on a disclosure."""

    identity: str
    employee_category: EmployeeCategory
    employee_type: EmployeeType | None = None
    name: str | None = None
    role: str = "inventor"
    position: int = 0

    @property
    def is_internal(self) -> bool:
        return self.employee_category == EmployeeCategory.INTERNAL


@dataclass(frozen=True)
class ReviewRecord:
    """One immutable audit row per transition."""

    review_id: UUID
    application_id: UUID
    sequence: int
    reviewer_ref: str
    reviewer_role: ReviewerRole
    action: WorkflowAction
    from_status: ApplicationStatus
    to_status: ApplicationStatus
    decision: ReviewDecision | None
    comments: str | None
    reviewed_at: datetime


@dataclass(frozen=True)
class Application:
    """Immutable snapshot of an application aggregate."""

    application_id: UUID
    application_number: str
    ipr_type: IprType
    status: ApplicationStatus
    filing_type: FilingType
    title: str
    applicant_ref: str
    applicant_type: EmployeeType
    version: int
    created_at: datetime
    updated_at: datetime
    project_type: ProjectType | None = None
    description: str | None = None
    remarks: str | None = None
    mentor_ref: str | None = None
    current_reviewer_ref: str | None = None
    contributors: tuple[ContributorInfo, ...] = ()
    sdg_codes: tuple[str, ...] = ()
    submitted_at: datetime | None = None
    completed_at: datetime | None = None
    govt_application_id: str | None = None
    govt_filing_date: date | None = None
    publication_id: str | None = None
    incentive_amount: Decimal | None = None
    points_awarded: Decimal | None = None
    credited_at: datetime | None = None
    source_provisional_id: UUID | None = None
    changes_requested_by_mentor: bool = False
    revision_count: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def needs_mentor_review(self) -> bool:
        return self.applicant_type == EmployeeType.STUDENT and bool(self.mentor_ref)


@dataclass(frozen=True)
class DraftRequest:
    """Input for creating a new draft disclosure."""

    ipr_type: str
    title: str
    applicant_type: str
    filing_type: str = FilingType.COMPLETE.value
    project_type: str | None = None
    description: str | None = None
    remarks: str | None = None
    sdg_codes: tuple[str, ...] = field(default_factory=tuple)
    source_provisional_id: UUID | None = None
