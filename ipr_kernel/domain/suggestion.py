"""
Edit suggestion domain types (``ipr_kernel.domain.suggestion``).

Responsibility
--------------
Value objects for reviewer-proposed field edits and the applicant's
accept/reject responses, including per-item batch results.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``SUGGESTION_TRANSITIONS`` defines the only valid status changes;
  accepted and rejected are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


SUGGESTION_TRANSITIONS: dict[SuggestionStatus, frozenset[SuggestionStatus]] = {
    SuggestionStatus.PENDING: frozenset({
        SuggestionStatus.ACCEPTED,
        SuggestionStatus.REJECTED,
    }),
    SuggestionStatus.ACCEPTED: frozenset(),
    SuggestionStatus.REJECTED: frozenset(),
}


class SuggestionAction(str, Enum):
    """Applicant response to a suggestion."""

    ACCEPT = "accept"
    REJECT = "reject"


@dataclass(frozen=True)
class EditSuggestion:
    """Immutable snapshot of an edit suggestion."""

    suggestion_id: UUID
    application_id: UUID
    sequence: int
    field_name: str
    suggested_value: str | None
    status: SuggestionStatus
    reviewer_ref: str
    created_at: datetime
    original_value: str | None = None
    field_path: str | None = None
    note: str | None = None
    applicant_response: str | None = None
    responded_by: str | None = None
    resolved_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == SuggestionStatus.PENDING


@dataclass(frozen=True)
class SuggestionResponse:
    """One item of a batch response."""

    suggestion_id: UUID
    action: SuggestionAction
    note: str | None = None


@dataclass(frozen=True)
class BatchItemResult:
    """Outcome of one item in ``batch_respond``.

    Failed items carry the error code and message of the exception that
    rolled back their savepoint.
    """

    suggestion_id: UUID
    success: bool
    status: SuggestionStatus | None = None
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class BatchRespondResult:
    application_id: UUID
    items: tuple[BatchItemResult, ...]
    pending_count: int

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.success)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.items if not item.success)
