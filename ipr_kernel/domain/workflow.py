"""
Disclosure workflow definition (``ipr_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the disclosure state machine and the single
transition table ``IPR_WORKFLOW``.  Every permitted status change is one
row: source status, action, target status, the capabilities and party
relation the actor needs, and the review metadata the audit record gets.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* Terminal states have no outgoing transitions.
* ``approve`` from a DRD review stage requires BOTH ``review`` and
  ``approve``; every other DRD decision requires ``review`` alone.
* When several rows share (from_state, action) they carry guards and the
  first row whose guard passes wins; the last row is unguarded.

``system_override`` is not a row: its target is caller-chosen and is
validated by the state machine against ``Workflow.states``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ipr_kernel.domain.application import (
    TERMINAL_STATUSES,
    ApplicationStatus as S,
    ReviewDecision,
    ReviewerRole,
    WorkflowAction as A,
)


class Party(str, Enum):
    """Relation to the application an actor must have for a transition."""

    APPLICANT = "applicant"
    MENTOR = "mentor"
    ANY = "any"


# Capability names, matching the boolean fields of ActorCapabilities.
CAP_FILE_NEW = "file_new"
CAP_REVIEW = "review"
CAP_APPROVE = "approve"
CAP_ASSIGN_SCHOOL = "assign_school"
CAP_ADMIN = "admin"


@dataclass(frozen=True)
class Guard:
    """A condition on the application that must hold for a transition to fire.

    Descriptive only: the state machine holds the evaluator per name.
    """
    name: str
    description: str


GUARD_MENTOR_REVIEW_REQUIRED = Guard(
    name="mentor_review_required",
    description="Applicant is a student and a mentor was found at submit",
)
GUARD_MENTOR_REQUESTED_CHANGES = Guard(
    name="mentor_requested_changes",
    description="The changes being answered were requested by the mentor",
)


@dataclass(frozen=True)
class Transition:
    """A valid state transition in the disclosure workflow."""
    from_state: S
    action: A
    to_state: S
    party: Party = Party.ANY
    required_capabilities: frozenset[str] = frozenset()
    reviewer_role: ReviewerRole = ReviewerRole.DRD_MEMBER
    decision: ReviewDecision | None = None
    guard: Guard | None = None
    required_value: str | None = None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for the disclosure lifecycle."""
    name: str
    description: str
    initial_state: S
    states: tuple[S, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[S, ...] = ()

    def candidates(self, from_state: S, action: A) -> tuple[Transition, ...]:
        """Rows for (from_state, action) in declaration order."""
        return tuple(
            t for t in self.transitions
            if t.from_state == from_state and t.action == action
        )

    def actions_from(self, from_state: S) -> tuple[A, ...]:
        """Distinct actions with at least one row leaving ``from_state``."""
        seen: list[A] = []
        for t in self.transitions:
            if t.from_state == from_state and t.action not in seen:
                seen.append(t.action)
        return tuple(seen)


_REVIEW = frozenset({CAP_REVIEW})
_REVIEW_AND_APPROVE = frozenset({CAP_REVIEW, CAP_APPROVE})
_APPROVE = frozenset({CAP_APPROVE})
_ASSIGN = frozenset({CAP_ASSIGN_SCHOOL})


def _drd_decisions(source: S) -> tuple[Transition, ...]:
    return (
        Transition(source, A.RECOMMEND, S.RECOMMENDED_TO_HEAD,
                   required_capabilities=_REVIEW,
                   decision=ReviewDecision.RECOMMENDED),
        Transition(source, A.APPROVE, S.DRD_APPROVED,
                   required_capabilities=_REVIEW_AND_APPROVE,
                   decision=ReviewDecision.APPROVED),
        Transition(source, A.REJECT, S.DRD_REJECTED,
                   required_capabilities=_REVIEW,
                   decision=ReviewDecision.REJECTED),
        Transition(source, A.REQUEST_CHANGES, S.CHANGES_REQUIRED,
                   required_capabilities=_REVIEW,
                   decision=ReviewDecision.CHANGES_REQUIRED),
    )


def _head_decisions(source: S) -> tuple[Transition, ...]:
    return (
        Transition(source, A.HEAD_APPROVE, S.SUBMITTED_TO_GOVT,
                   required_capabilities=_APPROVE,
                   reviewer_role=ReviewerRole.DRD_HEAD,
                   decision=ReviewDecision.APPROVED),
        Transition(source, A.HEAD_REJECT, S.HEAD_REJECTED,
                   required_capabilities=_APPROVE,
                   reviewer_role=ReviewerRole.DRD_HEAD,
                   decision=ReviewDecision.REJECTED),
    )


IPR_TRANSITIONS: tuple[Transition, ...] = (
    # Applicant submission
    Transition(S.DRAFT, A.SUBMIT, S.PENDING_MENTOR_APPROVAL,
               party=Party.APPLICANT,
               reviewer_role=ReviewerRole.APPLICANT,
               guard=GUARD_MENTOR_REVIEW_REQUIRED),
    Transition(S.DRAFT, A.SUBMIT, S.SUBMITTED,
               party=Party.APPLICANT,
               reviewer_role=ReviewerRole.APPLICANT),
    # Mentor gate
    Transition(S.PENDING_MENTOR_APPROVAL, A.APPROVE, S.SUBMITTED,
               party=Party.MENTOR,
               reviewer_role=ReviewerRole.MENTOR,
               decision=ReviewDecision.APPROVED),
    Transition(S.PENDING_MENTOR_APPROVAL, A.REJECT, S.CHANGES_REQUIRED,
               party=Party.MENTOR,
               reviewer_role=ReviewerRole.MENTOR,
               decision=ReviewDecision.REJECTED),
    Transition(S.PENDING_MENTOR_APPROVAL, A.REQUEST_CHANGES, S.CHANGES_REQUIRED,
               party=Party.MENTOR,
               reviewer_role=ReviewerRole.MENTOR,
               decision=ReviewDecision.CHANGES_REQUIRED),
    # Reviewer assignment
    Transition(S.SUBMITTED, A.ASSIGN_REVIEWER, S.UNDER_DRD_REVIEW,
               required_capabilities=_ASSIGN),
    Transition(S.RESUBMITTED, A.ASSIGN_REVIEWER, S.UNDER_DRD_REVIEW,
               required_capabilities=_ASSIGN),
    # DRD review
    *_drd_decisions(S.SUBMITTED),
    *_drd_decisions(S.RESUBMITTED),
    *_drd_decisions(S.UNDER_DRD_REVIEW),
    # Applicant resubmission
    Transition(S.CHANGES_REQUIRED, A.RESUBMIT, S.PENDING_MENTOR_APPROVAL,
               party=Party.APPLICANT,
               reviewer_role=ReviewerRole.APPLICANT,
               guard=GUARD_MENTOR_REQUESTED_CHANGES),
    Transition(S.CHANGES_REQUIRED, A.RESUBMIT, S.RESUBMITTED,
               party=Party.APPLICANT,
               reviewer_role=ReviewerRole.APPLICANT),
    # Head review
    *_head_decisions(S.RECOMMENDED_TO_HEAD),
    *_head_decisions(S.DRD_APPROVED),
    # Government filing
    Transition(S.SUBMITTED_TO_GOVT, A.ADD_GOVT_ID, S.GOVT_APPLICATION_FILED,
               required_capabilities=_REVIEW,
               required_value="govt_application_id"),
    Transition(S.GOVT_APPLICATION_FILED, A.ADD_PUBLICATION_ID, S.PUBLISHED,
               required_capabilities=_REVIEW,
               required_value="publication_id"),
    Transition(S.GOVT_APPLICATION_FILED, A.MARK_REJECTED, S.GOVT_REJECTED,
               required_capabilities=_REVIEW,
               decision=ReviewDecision.REJECTED),
)


IPR_WORKFLOW = Workflow(
    name="ipr_disclosure",
    description="Submission and multi-party review of an IPR disclosure",
    initial_state=S.DRAFT,
    states=tuple(S),
    transitions=IPR_TRANSITIONS,
    terminal_states=tuple(s for s in S if s in TERMINAL_STATUSES),
)
