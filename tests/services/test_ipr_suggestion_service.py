"""
Tests for SuggestionLedger (``ipr_kernel.services.suggestion_service``).

Covers:
- Proposal: review stages only, reviewer or pending mentor only,
  original value snapshot, camelCase field aliases
- Response: accept overwrites the field, reject leaves it, exactly once
- Enumerated fields refuse out-of-domain values on accept
- Batch responses: one savepoint per item, partial failure reported
- Listing order and pending counts
"""

import pytest

from ipr_kernel.domain.application import ApplicationStatus
from ipr_kernel.domain.suggestion import (
    SuggestionAction,
    SuggestionResponse,
    SuggestionStatus,
)
from ipr_kernel.exceptions import (
    ImmutabilityViolationError,
    InvalidEnumValueError,
    InvalidStateError,
    PermissionDeniedError,
    SuggestionAlreadyResolvedError,
    SuggestionNotFoundError,
    UnknownFieldError,
)
from ipr_kernel.models.suggestion import EditSuggestionModel


@pytest.fixture
def submitted_app(machine, create_draft, applicant):
    app = create_draft()
    return machine.submit(app.application_id, applicant)


# =============================================================================
# Proposal
# =============================================================================


class TestPropose:
    def test_snapshot_of_current_value(self, ledger, submitted_app, reviewer):
        suggestion = ledger.propose_suggestion(
            submitted_app.application_id, "title", "Anti-soiling coating for PV", reviewer,
            note="Shorter title",
        )
        assert suggestion.status == SuggestionStatus.PENDING
        assert suggestion.original_value == "Self-cleaning solar panel coating"
        assert suggestion.suggested_value == "Anti-soiling coating for PV"
        assert suggestion.reviewer_ref == reviewer.ref
        assert suggestion.sequence == 1
        assert suggestion.note == "Shorter title"

    def test_camel_case_alias(self, ledger, submitted_app, reviewer):
        suggestion = ledger.propose_suggestion(
            submitted_app.application_id, "iprType", "design", reviewer,
        )
        assert suggestion.field_name == "ipr_type"
        assert suggestion.original_value == "patent"

    def test_unknown_field(self, ledger, submitted_app, reviewer):
        with pytest.raises(UnknownFieldError):
            ledger.propose_suggestion(submitted_app.application_id, "status", "published", reviewer)

    def test_not_in_draft(self, ledger, create_draft, reviewer):
        app = create_draft()
        with pytest.raises(InvalidStateError):
            ledger.propose_suggestion(app.application_id, "title", "x", reviewer)

    def test_not_after_decision(self, ledger, machine, submitted_app, approver, reviewer):
        machine.approve(submitted_app.application_id, approver)
        with pytest.raises(InvalidStateError):
            ledger.propose_suggestion(submitted_app.application_id, "title", "x", reviewer)

    def test_requires_review_capability(self, ledger, submitted_app, outsider):
        with pytest.raises(PermissionDeniedError):
            ledger.propose_suggestion(submitted_app.application_id, "title", "x", outsider)

    def test_pending_mentor_may_suggest(self, ledger, machine, create_draft, student, mentor):
        app = create_draft(actor=student)
        machine.submit(app.application_id, student)
        suggestion = ledger.propose_suggestion(app.application_id, "remarks", "Cite lab notebook", mentor)
        assert suggestion.reviewer_ref == mentor.ref

    def test_sequences_increase(self, ledger, submitted_app, reviewer):
        first = ledger.propose_suggestion(submitted_app.application_id, "title", "A", reviewer)
        second = ledger.propose_suggestion(submitted_app.application_id, "remarks", "B", reviewer)
        assert (first.sequence, second.sequence) == (1, 2)


# =============================================================================
# Response
# =============================================================================


class TestRespond:
    def test_accept_overwrites_field(self, ledger, registry, submitted_app, reviewer, applicant):
        app_id = submitted_app.application_id
        suggestion = ledger.propose_suggestion(app_id, "title", "Anti-soiling coating", reviewer)

        resolved = ledger.respond_to_suggestion(
            suggestion.suggestion_id, SuggestionAction.ACCEPT, applicant, note="Agreed",
        )

        assert resolved.status == SuggestionStatus.ACCEPTED
        assert resolved.responded_by == applicant.ref
        assert resolved.applicant_response == "Agreed"
        assert resolved.resolved_at is not None
        assert registry.get_application(app_id).title == "Anti-soiling coating"

    def test_reject_leaves_field(self, ledger, registry, submitted_app, reviewer, applicant):
        app_id = submitted_app.application_id
        suggestion = ledger.propose_suggestion(app_id, "title", "Something else", reviewer)

        resolved = ledger.respond_to_suggestion(suggestion.suggestion_id, "reject", applicant)

        assert resolved.status == SuggestionStatus.REJECTED
        assert registry.get_application(app_id).title == "Self-cleaning solar panel coating"

    def test_accept_enum_field(self, ledger, registry, submitted_app, reviewer, applicant):
        app_id = submitted_app.application_id
        suggestion = ledger.propose_suggestion(app_id, "iprType", "design", reviewer)
        ledger.respond_to_suggestion(suggestion.suggestion_id, "accept", applicant)
        assert registry.get_application(app_id).ipr_type.value == "design"

    def test_accept_out_of_domain_enum_rejected(self, ledger, registry, submitted_app, reviewer, applicant):
        """Neither the field nor the suggestion changes."""
        app_id = submitted_app.application_id
        suggestion = ledger.propose_suggestion(app_id, "iprType", "not_a_real_type", reviewer)

        with pytest.raises(InvalidEnumValueError) as exc_info:
            ledger.respond_to_suggestion(suggestion.suggestion_id, "accept", applicant)

        assert exc_info.value.field_name == "ipr_type"
        assert registry.get_application(app_id).ipr_type.value == "patent"
        assert ledger.get_suggestions(app_id)[0].status == SuggestionStatus.PENDING
        assert ledger.get_pending_count(app_id) == 1

    def test_out_of_domain_can_still_be_rejected(self, ledger, submitted_app, reviewer, applicant):
        suggestion = ledger.propose_suggestion(
            submitted_app.application_id, "filing_type", "interim", reviewer,
        )
        resolved = ledger.respond_to_suggestion(suggestion.suggestion_id, "reject", applicant)
        assert resolved.status == SuggestionStatus.REJECTED

    def test_resolved_exactly_once(self, ledger, submitted_app, reviewer, applicant):
        suggestion = ledger.propose_suggestion(submitted_app.application_id, "remarks", "x", reviewer)
        ledger.respond_to_suggestion(suggestion.suggestion_id, "accept", applicant)
        with pytest.raises(SuggestionAlreadyResolvedError) as exc_info:
            ledger.respond_to_suggestion(suggestion.suggestion_id, "reject", applicant)
        assert exc_info.value.status == "accepted"

    def test_only_applicant_responds(self, ledger, submitted_app, reviewer):
        suggestion = ledger.propose_suggestion(submitted_app.application_id, "remarks", "x", reviewer)
        with pytest.raises(PermissionDeniedError):
            ledger.respond_to_suggestion(suggestion.suggestion_id, "accept", reviewer)

    def test_unknown_suggestion(self, ledger, applicant):
        from uuid import uuid4

        with pytest.raises(SuggestionNotFoundError):
            ledger.respond_to_suggestion(uuid4(), "accept", applicant)

    def test_unknown_action(self, ledger, submitted_app, reviewer, applicant):
        suggestion = ledger.propose_suggestion(submitted_app.application_id, "remarks", "x", reviewer)
        with pytest.raises(InvalidEnumValueError):
            ledger.respond_to_suggestion(suggestion.suggestion_id, "maybe", applicant)

    def test_no_response_once_terminal(self, ledger, machine, submitted_app, reviewer, applicant):
        app_id = submitted_app.application_id
        suggestion = ledger.propose_suggestion(app_id, "remarks", "x", reviewer)
        machine.reject(app_id, reviewer)
        with pytest.raises(InvalidStateError):
            ledger.respond_to_suggestion(suggestion.suggestion_id, "accept", applicant)

    def test_resolved_row_is_frozen(self, ledger, session, submitted_app, reviewer, applicant):
        suggestion = ledger.propose_suggestion(submitted_app.application_id, "remarks", "x", reviewer)
        ledger.respond_to_suggestion(suggestion.suggestion_id, "reject", applicant)

        row = session.get(EditSuggestionModel, suggestion.suggestion_id)
        row.note = "rewritten"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


# =============================================================================
# Batch
# =============================================================================


class TestBatchRespond:
    def test_partial_failure(self, ledger, registry, submitted_app, reviewer, applicant):
        app_id = submitted_app.application_id
        good = ledger.propose_suggestion(app_id, "remarks", "Add figures", reviewer)
        bad = ledger.propose_suggestion(app_id, "iprType", "not_a_real_type", reviewer)
        other = ledger.propose_suggestion(app_id, "description", "Longer text", reviewer)

        result = ledger.batch_respond(
            app_id,
            [
                SuggestionResponse(good.suggestion_id, SuggestionAction.ACCEPT),
                SuggestionResponse(bad.suggestion_id, SuggestionAction.ACCEPT),
                SuggestionResponse(other.suggestion_id, SuggestionAction.REJECT),
            ],
            applicant,
        )

        assert result.succeeded == 2
        assert result.failed == 1
        assert result.pending_count == 1
        failed = next(item for item in result.items if not item.success)
        assert failed.suggestion_id == bad.suggestion_id
        assert failed.error_code == "INVALID_ENUM_VALUE"

        app = registry.get_application(app_id)
        assert app.remarks == "Add figures"
        assert app.ipr_type.value == "patent"
        assert app.description is None

    def test_already_resolved_item_reported(self, ledger, submitted_app, reviewer, applicant):
        app_id = submitted_app.application_id
        s = ledger.propose_suggestion(app_id, "remarks", "x", reviewer)
        ledger.respond_to_suggestion(s.suggestion_id, "reject", applicant)

        result = ledger.batch_respond(
            app_id, [SuggestionResponse(s.suggestion_id, SuggestionAction.ACCEPT)], applicant,
        )
        assert result.items[0].error_code == "SUGGESTION_ALREADY_RESOLVED"

    def test_suggestion_of_other_application(self, ledger, machine, create_draft, submitted_app, reviewer, applicant):
        other_app = create_draft(title="Second invention")
        machine.submit(other_app.application_id, applicant)
        foreign = ledger.propose_suggestion(other_app.application_id, "remarks", "x", reviewer)

        result = ledger.batch_respond(
            submitted_app.application_id,
            [SuggestionResponse(foreign.suggestion_id, SuggestionAction.ACCEPT)],
            applicant,
        )
        assert result.items[0].error_code == "SUGGESTION_NOT_FOUND"
        assert ledger.get_pending_count(other_app.application_id) == 1

    def test_batch_requires_applicant(self, ledger, submitted_app, reviewer):
        with pytest.raises(PermissionDeniedError):
            ledger.batch_respond(submitted_app.application_id, [], reviewer)

    def test_batch_logged(self, ledger, submitted_app, reviewer, applicant, captured_logs):
        app_id = submitted_app.application_id
        s = ledger.propose_suggestion(app_id, "remarks", "x", reviewer)
        ledger.batch_respond(app_id, [SuggestionResponse(s.suggestion_id, SuggestionAction.ACCEPT)], applicant)
        completed = [r for r in captured_logs() if r["message"] == "suggestion_batch_completed"]
        assert completed[-1]["succeeded"] == 1
        assert completed[-1]["application_id"] == str(app_id)


# =============================================================================
# Queries
# =============================================================================


class TestQueries:
    def test_newest_first(self, ledger, submitted_app, reviewer, deterministic_clock):
        app_id = submitted_app.application_id
        ledger.propose_suggestion(app_id, "title", "First", reviewer)
        deterministic_clock.advance(60)
        ledger.propose_suggestion(app_id, "remarks", "Second", reviewer)
        ledger.propose_suggestion(app_id, "description", "Third, same instant", reviewer)

        values = [s.suggested_value for s in ledger.get_suggestions(app_id)]
        assert values == ["Third, same instant", "Second", "First"]

    def test_filter_by_status(self, ledger, submitted_app, reviewer, applicant):
        app_id = submitted_app.application_id
        a = ledger.propose_suggestion(app_id, "title", "A", reviewer)
        ledger.propose_suggestion(app_id, "remarks", "B", reviewer)
        ledger.respond_to_suggestion(a.suggestion_id, "accept", applicant)

        pending = ledger.get_suggestions(app_id, status="pending")
        accepted = ledger.get_suggestions(app_id, status=SuggestionStatus.ACCEPTED)
        assert [s.suggested_value for s in pending] == ["B"]
        assert [s.suggested_value for s in accepted] == ["A"]
        assert ledger.get_pending_count(app_id) == 1

    def test_empty(self, ledger, submitted_app):
        assert ledger.get_suggestions(submitted_app.application_id) == []
        assert ledger.get_pending_count(submitted_app.application_id) == 0

    def test_application_unchanged_by_proposal(self, ledger, registry, submitted_app, reviewer):
        ledger.propose_suggestion(submitted_app.application_id, "title", "New", reviewer)
        app = registry.get_application(submitted_app.application_id)
        assert app.title == submitted_app.title
        assert app.status == ApplicationStatus.SUBMITTED
