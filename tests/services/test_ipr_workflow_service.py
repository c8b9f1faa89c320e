"""
Tests for ApplicationStateMachine (``ipr_kernel.services.workflow_service``).

Covers:
- The approve path from draft to published, with one Review per step
- The recommend path and head rejection
- Permission denials leave status and audit trail untouched
- Required values on government actions
- Idempotent publication and incentive crediting on publish
- Student submissions routed through the mentor
- Resubmission with pending suggestions
- system_override validation and auditing
- available_actions per actor
"""

from datetime import date
from decimal import Decimal

import pytest

from ipr_kernel.domain.application import (
    ApplicationStatus,
    ReviewDecision,
    ReviewerRole,
    WorkflowAction,
)
from ipr_kernel.exceptions import (
    InvalidTransitionError,
    MissingValueError,
    OverrideReasonRequiredError,
    PendingSuggestionsError,
    PermissionDeniedError,
)
from ipr_kernel.services.workflow_service import (
    OUTCOME_IDEMPOTENT,
    OUTCOME_NO_TRANSITION,
    OUTCOME_PERMISSION_DENIED,
    OUTCOME_SUCCESS,
)


# =============================================================================
# Happy paths
# =============================================================================


class TestApprovePath:
    def test_full_path_to_published(
        self, machine, create_draft, applicant, assigner, approver, head, reviewer, reviews,
    ):
        app = create_draft()
        app_id = app.application_id

        app = machine.submit(app_id, applicant)
        assert app.status == ApplicationStatus.SUBMITTED
        assert app.submitted_at is not None
        assert app.mentor_ref is None

        app = machine.assign_reviewer(app_id, assigner, reviewer_ref=approver.ref)
        assert app.status == ApplicationStatus.UNDER_DRD_REVIEW
        assert app.current_reviewer_ref == approver.ref

        app = machine.approve(app_id, approver, comments="Novel and useful")
        assert app.status == ApplicationStatus.DRD_APPROVED

        app = machine.head_approve(app_id, head)
        assert app.status == ApplicationStatus.SUBMITTED_TO_GOVT

        app = machine.add_govt_id(
            app_id, reviewer, govt_application_id=" IN202641000123 ",
            filing_date=date(2026, 3, 15),
        )
        assert app.status == ApplicationStatus.GOVT_APPLICATION_FILED
        assert app.govt_application_id == "IN202641000123"
        assert app.govt_filing_date == date(2026, 3, 15)

        app = machine.add_publication_id(app_id, reviewer, publication_id="PUB-77")
        assert app.status == ApplicationStatus.PUBLISHED
        assert app.publication_id == "PUB-77"
        assert app.completed_at is not None
        assert app.incentive_amount == Decimal("25000.00")
        assert app.points_awarded == Decimal("25.00")

        trail = reviews.get_reviews(app_id)
        assert [r.action for r in trail] == [
            WorkflowAction.SUBMIT,
            WorkflowAction.ASSIGN_REVIEWER,
            WorkflowAction.APPROVE,
            WorkflowAction.HEAD_APPROVE,
            WorkflowAction.ADD_GOVT_ID,
            WorkflowAction.ADD_PUBLICATION_ID,
        ]
        assert [r.sequence for r in trail] == [1, 2, 3, 4, 5, 6]
        assert trail[0].reviewer_role == ReviewerRole.APPLICANT
        assert trail[2].decision == ReviewDecision.APPROVED
        assert trail[2].comments == "Novel and useful"
        assert trail[3].reviewer_role == ReviewerRole.DRD_HEAD
        for previous, current in zip(trail, trail[1:]):
            assert previous.to_status == current.from_status

    def test_filing_date_defaults_to_clock(self, machine, drive_to_filed, deterministic_clock):
        app = drive_to_filed()
        assert app.govt_filing_date == deterministic_clock.now().date()

    def test_version_increments_per_transition(self, machine, create_draft, applicant):
        app = create_draft()
        before = app.version
        after = machine.submit(app.application_id, applicant)
        assert after.version > before

    def test_successful_transition_traced(self, machine, create_draft, applicant, workflow_trace):
        app = create_draft()
        machine.submit(app.application_id, applicant)
        assert workflow_trace[-1]["outcome"] == OUTCOME_SUCCESS
        assert workflow_trace[-1]["to_state"] == "submitted"
        assert workflow_trace[-1]["action"] == "submit"


class TestRecommendPath:
    def test_recommend_then_head_reject(self, machine, create_draft, applicant, reviewer, head, reviews):
        app = create_draft()
        app_id = app.application_id
        machine.submit(app_id, applicant)

        app = machine.recommend(app_id, reviewer, comments="Looks promising")
        assert app.status == ApplicationStatus.RECOMMENDED_TO_HEAD

        app = machine.head_reject(app_id, head, comments="Prior art")
        assert app.status == ApplicationStatus.HEAD_REJECTED
        assert app.is_terminal
        assert reviews.get_reviews(app_id)[-1].decision == ReviewDecision.REJECTED

    def test_drd_reject_is_terminal(self, machine, create_draft, applicant, reviewer):
        app = create_draft()
        machine.submit(app.application_id, applicant)
        app = machine.reject(app.application_id, reviewer)
        assert app.status == ApplicationStatus.DRD_REJECTED
        with pytest.raises(InvalidTransitionError):
            machine.resubmit(app.application_id, applicant)

    def test_mark_rejected_after_filing(self, machine, drive_to_filed, reviewer):
        app = drive_to_filed()
        app = machine.mark_rejected(app.application_id, reviewer)
        assert app.status == ApplicationStatus.GOVT_REJECTED
        assert app.incentive_amount is None


class TestChangesRequested:
    def test_request_changes_and_resubmit(self, machine, create_draft, applicant, reviewer, assigner):
        app = create_draft()
        app_id = app.application_id
        machine.submit(app_id, applicant)

        app = machine.request_changes(app_id, reviewer, comments="Clarify claims")
        assert app.status == ApplicationStatus.CHANGES_REQUIRED
        assert not app.changes_requested_by_mentor

        app = machine.resubmit(app_id, applicant)
        assert app.status == ApplicationStatus.RESUBMITTED
        assert app.revision_count == 1

        app = machine.assign_reviewer(app_id, assigner, reviewer_ref=reviewer.ref)
        assert app.status == ApplicationStatus.UNDER_DRD_REVIEW

    def test_only_applicant_resubmits(self, machine, create_draft, applicant, reviewer):
        app = create_draft()
        machine.submit(app.application_id, applicant)
        machine.request_changes(app.application_id, reviewer)
        with pytest.raises(PermissionDeniedError):
            machine.resubmit(app.application_id, reviewer)


# =============================================================================
# Permission and precondition failures
# =============================================================================


class TestDenials:
    def test_review_only_cannot_approve(
        self, machine, registry, create_draft, applicant, reviewer, reviews, workflow_trace,
    ):
        """Status and audit trail stay unchanged on denial."""
        app = create_draft()
        machine.submit(app.application_id, applicant)
        count_before = reviews.count_reviews(app.application_id)

        with pytest.raises(PermissionDeniedError) as exc_info:
            machine.approve(app.application_id, reviewer)

        assert "requires both review and approve" in exc_info.value.reason
        current = machine.available_actions(app.application_id, reviewer)
        assert WorkflowAction.APPROVE not in current
        assert reviews.count_reviews(app.application_id) == count_before
        assert workflow_trace[-1]["outcome"] == OUTCOME_PERMISSION_DENIED

        assert registry.get_application(app.application_id).status == ApplicationStatus.SUBMITTED

    def test_non_applicant_cannot_submit(self, machine, create_draft, admin):
        app = create_draft()
        with pytest.raises(PermissionDeniedError):
            machine.submit(app.application_id, admin)

    def test_no_edge_from_current_status(self, machine, create_draft, head, workflow_trace):
        app = create_draft()
        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.head_approve(app.application_id, head)
        assert exc_info.value.from_status == "draft"
        assert workflow_trace[-1]["outcome"] == OUTCOME_NO_TRANSITION

    def test_unknown_action_rejected(self, machine, create_draft, applicant):
        app = create_draft()
        with pytest.raises(InvalidTransitionError):
            machine.apply(app.application_id, "teleport", applicant)

    def test_override_not_reachable_through_apply(self, machine, create_draft, admin):
        app = create_draft()
        with pytest.raises(InvalidTransitionError):
            machine.apply(app.application_id, WorkflowAction.SYSTEM_OVERRIDE, admin)

    def test_govt_id_required(self, machine, create_draft, applicant, approver, head, reviewer, reviews):
        app = create_draft()
        app_id = app.application_id
        machine.submit(app_id, applicant)
        machine.approve(app_id, approver)
        machine.head_approve(app_id, head)
        count_before = reviews.count_reviews(app_id)

        with pytest.raises(MissingValueError) as exc_info:
            machine.add_govt_id(app_id, reviewer, govt_application_id="   ")
        assert exc_info.value.field_name == "govt_application_id"
        assert reviews.count_reviews(app_id) == count_before

    def test_publication_id_required(self, machine, drive_to_filed, reviewer):
        app = drive_to_filed()
        with pytest.raises(MissingValueError):
            machine.add_publication_id(app.application_id, reviewer, publication_id="")

    def test_head_decision_needs_approve(self, machine, create_draft, applicant, reviewer):
        app = create_draft()
        machine.submit(app.application_id, applicant)
        machine.recommend(app.application_id, reviewer)
        with pytest.raises(PermissionDeniedError):
            machine.head_approve(app.application_id, reviewer)


# =============================================================================
# Publication and incentives
# =============================================================================


class TestPublication:
    def test_repeat_publication_is_noop(self, machine, drive_to_filed, reviewer, reviews, incentive_service, workflow_trace):
        app = drive_to_filed()
        app_id = app.application_id
        published = machine.add_publication_id(app_id, reviewer, publication_id="PUB-1")
        count = reviews.count_reviews(app_id)

        again = machine.add_publication_id(app_id, reviewer, publication_id="PUB-1")

        assert again.status == ApplicationStatus.PUBLISHED
        assert again.version == published.version
        assert reviews.count_reviews(app_id) == count
        assert len(incentive_service.get_credits(app_id)) == 2
        assert workflow_trace[-1]["outcome"] == OUTCOME_IDEMPOTENT

    def test_repeat_with_different_id_rejected(self, machine, drive_to_filed, reviewer):
        app = drive_to_filed()
        machine.add_publication_id(app.application_id, reviewer, publication_id="PUB-1")
        with pytest.raises(InvalidTransitionError):
            machine.add_publication_id(app.application_id, reviewer, publication_id="PUB-2")

    def test_repeat_still_requires_review(self, machine, drive_to_filed, reviewer, outsider):
        app = drive_to_filed()
        machine.add_publication_id(app.application_id, reviewer, publication_id="PUB-1")
        with pytest.raises(PermissionDeniedError):
            machine.add_publication_id(app.application_id, outsider, publication_id="PUB-1")

    def test_credits_written_per_contributor(self, machine, drive_to_filed, reviewer, incentive_service):
        app = drive_to_filed()
        machine.add_publication_id(app.application_id, reviewer, publication_id="PUB-1")
        credits = incentive_service.get_credits(app.application_id)
        assert credits == [
            ("alice@univ.edu", Decimal("25000.00"), Decimal("25.00")),
            ("fac-001", Decimal("25000.00"), Decimal("25.00")),
        ]

    def test_mixed_roster_split(self, machine, drive_to_filed, reviewer, incentive_service):
        from ipr_kernel.domain.application import EmployeeCategory, EmployeeType

        app = drive_to_filed(
            contributors=(
                ("stu@univ.edu", EmployeeCategory.INTERNAL, EmployeeType.STUDENT),
                ("staff@univ.edu", EmployeeCategory.INTERNAL, EmployeeType.STAFF),
                ("partner@corp.com", EmployeeCategory.EXTERNAL, None),
            ),
        )
        machine.add_publication_id(app.application_id, reviewer, publication_id="PUB-9")
        credits = {identity: (amount, points) for identity, amount, points in incentive_service.get_credits(app.application_id)}
        assert credits["fac-001"] == (Decimal("16666.67"), Decimal("25.00"))
        assert credits["stu@univ.edu"] == (Decimal("16666.67"), Decimal("0.00"))
        assert credits["staff@univ.edu"] == (Decimal("16666.67"), Decimal("25.00"))
        assert credits["partner@corp.com"] == (Decimal("0.00"), Decimal("0.00"))


# =============================================================================
# Mentor routing
# =============================================================================


class TestMentorPath:
    def test_student_with_mentor_goes_to_mentor(self, machine, create_draft, student, mentor):
        app = create_draft(actor=student)
        app = machine.submit(app.application_id, student)
        assert app.status == ApplicationStatus.PENDING_MENTOR_APPROVAL
        assert app.mentor_ref == mentor.ref

        app = machine.approve(app.application_id, mentor)
        assert app.status == ApplicationStatus.SUBMITTED

    def test_student_without_mentor_skips_gate(self, machine, registry, actor_factory):
        from ipr_kernel.domain.application import DraftRequest

        lone = actor_factory("stu-lone", role="student")
        app = registry.create_draft(
            lone, DraftRequest(ipr_type="design", title="Chair", applicant_type="student"),
        )
        app = machine.submit(app.application_id, lone)
        assert app.status == ApplicationStatus.SUBMITTED
        assert app.mentor_ref is None

    def test_faculty_never_goes_to_mentor(self, machine, create_draft, applicant):
        app = create_draft()
        app = machine.submit(app.application_id, applicant)
        assert app.status == ApplicationStatus.SUBMITTED

    def test_only_recorded_mentor_decides(self, machine, create_draft, student, approver):
        app = create_draft(actor=student)
        machine.submit(app.application_id, student)
        with pytest.raises(PermissionDeniedError):
            machine.approve(app.application_id, approver)

    def test_mentor_changes_return_to_mentor(self, machine, create_draft, student, mentor, reviews):
        app = create_draft(actor=student)
        app_id = app.application_id
        machine.submit(app_id, student)

        app = machine.request_changes(app_id, mentor, comments="Tighten the abstract")
        assert app.status == ApplicationStatus.CHANGES_REQUIRED
        assert app.changes_requested_by_mentor
        assert reviews.get_reviews(app_id)[-1].reviewer_role == ReviewerRole.MENTOR

        app = machine.resubmit(app_id, student)
        assert app.status == ApplicationStatus.PENDING_MENTOR_APPROVAL
        assert app.revision_count == 0

        app = machine.approve(app_id, mentor)
        assert app.status == ApplicationStatus.SUBMITTED

    def test_mentor_reject_sends_back(self, machine, create_draft, student, mentor):
        app = create_draft(actor=student)
        machine.submit(app.application_id, student)
        app = machine.reject(app.application_id, mentor)
        assert app.status == ApplicationStatus.CHANGES_REQUIRED
        assert app.changes_requested_by_mentor

    def test_drd_changes_skip_mentor_on_resubmit(self, machine, create_draft, student, mentor, reviewer):
        app = create_draft(actor=student)
        app_id = app.application_id
        machine.submit(app_id, student)
        machine.approve(app_id, mentor)
        machine.request_changes(app_id, reviewer)
        app = machine.resubmit(app_id, student)
        assert app.status == ApplicationStatus.RESUBMITTED


# =============================================================================
# Resubmission with pending suggestions
# =============================================================================


class TestResubmitWithPendingSuggestions:
    @pytest.fixture
    def changes_required_with_three(self, machine, ledger, create_draft, applicant, reviewer):
        app = create_draft()
        app_id = app.application_id
        machine.submit(app_id, applicant)
        machine.request_changes(app_id, reviewer)
        for field, value in (
            ("title", "Better title"),
            ("description", "More detail"),
            ("remarks", "See annex"),
        ):
            ledger.propose_suggestion(app_id, field, value, reviewer)
        return app_id

    def test_blocked_without_acknowledgement(
        self, machine, registry, changes_required_with_three, applicant, reviews,
    ):
        app_id = changes_required_with_three
        before = reviews.count_reviews(app_id)
        with pytest.raises(PendingSuggestionsError) as exc_info:
            machine.resubmit(app_id, applicant)
        assert exc_info.value.pending_count == 3
        assert reviews.count_reviews(app_id) == before
        assert registry.get_application(app_id).status == ApplicationStatus.CHANGES_REQUIRED

    def test_acknowledged_resubmit_records_count(self, machine, changes_required_with_three, applicant, reviews, ledger):
        app_id = changes_required_with_three
        app = machine.resubmit(app_id, applicant, acknowledge_pending=True, comments="Addressed most")
        assert app.status == ApplicationStatus.RESUBMITTED
        last = reviews.get_reviews(app_id)[-1]
        assert last.comments.startswith("Resubmitted with 3 pending suggestion(s) acknowledged")
        assert last.comments.endswith("Addressed most")
        assert ledger.get_pending_count(app_id) == 3


# =============================================================================
# system_override
# =============================================================================


class TestSystemOverride:
    def test_override_requires_admin(self, machine, create_draft, approver):
        app = create_draft()
        with pytest.raises(PermissionDeniedError):
            machine.system_override(app.application_id, approver, "submitted", "fix")

    def test_override_requires_reason(self, machine, create_draft, admin):
        app = create_draft()
        with pytest.raises(OverrideReasonRequiredError):
            machine.system_override(app.application_id, admin, "submitted", "  ")

    def test_override_rejects_unknown_target(self, machine, create_draft, admin):
        app = create_draft()
        with pytest.raises(InvalidTransitionError):
            machine.system_override(app.application_id, admin, "limbo", "fix")

    def test_override_rejects_same_target(self, machine, create_draft, admin):
        app = create_draft()
        with pytest.raises(InvalidTransitionError):
            machine.system_override(app.application_id, admin, "draft", "fix")

    def test_override_cannot_leave_terminal(self, machine, create_draft, applicant, reviewer, admin):
        app = create_draft()
        machine.submit(app.application_id, applicant)
        machine.reject(app.application_id, reviewer)
        with pytest.raises(InvalidTransitionError):
            machine.system_override(app.application_id, admin, "submitted", "undo")

    def test_override_writes_review(self, machine, create_draft, admin, reviews, captured_logs):
        app = create_draft()
        app = machine.system_override(
            app.application_id, admin, ApplicationStatus.UNDER_DRD_REVIEW, "Migrated from paper",
        )
        assert app.status == ApplicationStatus.UNDER_DRD_REVIEW
        last = reviews.get_reviews(app.application_id)[-1]
        assert last.action == WorkflowAction.SYSTEM_OVERRIDE
        assert last.reviewer_role == ReviewerRole.SYSTEM_ADMIN
        assert last.comments == "Migrated from paper"
        assert last.decision == ReviewDecision.APPROVED
        assert any(r["message"] == "system_override_applied" for r in captured_logs())

    def test_override_to_rejected_records_rejection(self, machine, create_draft, admin, reviews):
        app = create_draft()
        app = machine.system_override(app.application_id, admin, "drd_rejected", "Withdrawn")
        assert app.is_terminal
        assert app.completed_at is not None
        assert reviews.get_reviews(app.application_id)[-1].decision == ReviewDecision.REJECTED

    def test_override_to_published_credits(self, machine, create_draft, admin, incentive_service):
        app = create_draft()
        app = machine.system_override(app.application_id, admin, "published", "Legacy record")
        assert app.incentive_amount == Decimal("25000.00")
        assert len(incentive_service.get_credits(app.application_id)) == 2


# =============================================================================
# available_actions
# =============================================================================


class TestAvailableActions:
    def test_review_only_sees_recommend_not_approve(self, machine, create_draft, applicant, reviewer):
        app = create_draft()
        machine.submit(app.application_id, applicant)
        actions = machine.available_actions(app.application_id, reviewer)
        assert WorkflowAction.RECOMMEND in actions
        assert WorkflowAction.APPROVE not in actions
        assert WorkflowAction.SYSTEM_OVERRIDE not in actions

    def test_approver_sees_approve(self, machine, create_draft, applicant, approver):
        app = create_draft()
        machine.submit(app.application_id, applicant)
        actions = machine.available_actions(app.application_id, approver)
        assert WorkflowAction.APPROVE in actions

    def test_applicant_sees_submit_on_draft(self, machine, create_draft, applicant, reviewer):
        app = create_draft()
        assert machine.available_actions(app.application_id, applicant) == (WorkflowAction.SUBMIT,)
        assert machine.available_actions(app.application_id, reviewer) == ()

    def test_admin_sees_override_until_terminal(self, machine, create_draft, admin):
        app = create_draft()
        assert WorkflowAction.SYSTEM_OVERRIDE in machine.available_actions(app.application_id, admin)
        machine.system_override(app.application_id, admin, "cancelled", "Duplicate filing")
        assert machine.available_actions(app.application_id, admin) == ()
