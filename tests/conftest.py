"""
Pytest fixtures for the IPR kernel test suite.

Provides:
- An in-memory SQLite engine per test (tables created fresh)
- A file-backed SQLite engine for tests that need two real connections
- DeterministicClock, actors and service wiring
- Builders for drafts with contributors and for walking the workflow

Environment Variables:
- DATABASE_URL: run the suite against another database (e.g. PostgreSQL).
  If not set, SQLite is used.
"""

import json
import logging
import os
from datetime import UTC, datetime
from io import StringIO

import pytest
from sqlalchemy.orm import Session, sessionmaker

from ipr_engines.permissions import resolve_capabilities
from ipr_kernel.db.engine import build_engine, create_tables, drop_tables
from ipr_kernel.domain.application import DraftRequest, EmployeeCategory, EmployeeType
from ipr_kernel.domain.capabilities import Actor
from ipr_kernel.domain.clock import DeterministicClock
from ipr_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ipr_kernel.selectors.suggestion_selector import ReviewSelector, SuggestionSelector
from ipr_kernel.services.application_service import ApplicationRegistry
from ipr_kernel.services.event_outbox import DomainEventOutbox
from ipr_kernel.services.incentive_service import IncentiveService
from ipr_kernel.services.mentor_gate import MentorGate, StaticMentorDirectory
from ipr_kernel.services.suggestion_service import SuggestionLedger
from ipr_kernel.services.workflow_service import ApplicationStateMachine

DEFAULT_DATABASE_URL = "sqlite:///:memory:"

APPLICANT_REF = "fac-001"
STUDENT_REF = "stu-001"
MENTOR_REF = "fac-mentor"


def get_database_url() -> str:
    """Database URL from the environment, or in-memory SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture ipr_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, machine):
            machine.submit(...)
            logs = captured_logs()
            assert any(r["message"] == "workflow_transition" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ipr_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """Fresh database per test."""
    eng = build_engine(get_database_url())
    drop_tables(eng)
    create_tables(eng)
    yield eng
    drop_tables(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Session:
    """Session whose uncommitted work is rolled back after the test."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite: every session gets its own connection."""
    eng = build_engine(f"sqlite:///{tmp_path / 'ipr_kernel_test.db'}")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def file_session_factory(file_engine):
    return sessionmaker(bind=file_engine, expire_on_commit=False)


# =============================================================================
# Clock and actors
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(datetime(2026, 2, 1, 12, 0, 0, tzinfo=UTC))


def make_actor(ref: str, *keys: str, role: str | None = None) -> Actor:
    """Actor whose capabilities come from the canonical resolver."""
    return Actor(ref=ref, capabilities=resolve_capabilities(keys, role=role))


@pytest.fixture
def actor_factory():
    return make_actor


@pytest.fixture
def applicant() -> Actor:
    return make_actor(APPLICANT_REF, role="faculty")


@pytest.fixture
def student() -> Actor:
    return make_actor(STUDENT_REF, role="student")


@pytest.fixture
def mentor() -> Actor:
    return make_actor(MENTOR_REF, role="faculty")


@pytest.fixture
def reviewer() -> Actor:
    """DRD member with review only."""
    return make_actor("drd-reviewer", "ipr_review")


@pytest.fixture
def approver() -> Actor:
    """DRD member with review and approve."""
    return make_actor("drd-approver", "ipr_review", "ipr_approve")


@pytest.fixture
def head() -> Actor:
    return make_actor("drd-head", "ipr_review", "ipr_approve")


@pytest.fixture
def assigner() -> Actor:
    return make_actor("school-admin", "ipr_assign_school")


@pytest.fixture
def admin() -> Actor:
    return make_actor("sys-admin", role="admin")


@pytest.fixture
def outsider() -> Actor:
    return make_actor("nobody")


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def mentor_directory():
    return StaticMentorDirectory({STUDENT_REF: MENTOR_REF})


@pytest.fixture
def outbox(session):
    return DomainEventOutbox.for_session(session)


@pytest.fixture
def registry(session, deterministic_clock):
    return ApplicationRegistry(session, clock=deterministic_clock)


@pytest.fixture
def incentive_service(session, deterministic_clock, outbox):
    return IncentiveService(session, clock=deterministic_clock, outbox=outbox)


@pytest.fixture
def workflow_trace():
    """Records every workflow trace emitted by the state machine."""
    return []


@pytest.fixture
def machine(session, deterministic_clock, mentor_directory, incentive_service, outbox, workflow_trace):
    return ApplicationStateMachine(
        session,
        clock=deterministic_clock,
        mentor_gate=MentorGate(mentor_directory),
        incentive_service=incentive_service,
        outbox=outbox,
        outcome_sink=workflow_trace.append,
    )


@pytest.fixture
def ledger(session, deterministic_clock, outbox):
    return SuggestionLedger(session, clock=deterministic_clock, outbox=outbox)


@pytest.fixture
def reviews(session):
    return ReviewSelector(session)


@pytest.fixture
def suggestions(session):
    return SuggestionSelector(session)


# =============================================================================
# Builders
# =============================================================================


# With the faculty applicant this makes two inventors sharing the reward.
CO_INVENTOR = (
    ("alice@univ.edu", EmployeeCategory.INTERNAL, EmployeeType.STAFF),
)


@pytest.fixture
def create_draft(registry, applicant):
    """
    Create a draft and attach contributors.

    Usage::

        app = create_draft(ipr_type="patent", contributors=CO_INVENTOR)
    """

    def _create(
        actor: Actor | None = None,
        ipr_type: str = "patent",
        title: str = "Self-cleaning solar panel coating",
        applicant_type: str | None = None,
        contributors=CO_INVENTOR,
        **request_fields,
    ):
        owner = actor or applicant
        if applicant_type is None:
            applicant_type = "student" if owner.ref == STUDENT_REF else "faculty"
        app = registry.create_draft(
            owner,
            DraftRequest(
                ipr_type=ipr_type,
                title=title,
                applicant_type=applicant_type,
                **request_fields,
            ),
        )
        for identity, category, person_type in contributors:
            app = registry.add_contributor(
                app.application_id, owner, identity, category, person_type,
            )
        return app

    return _create


@pytest.fixture
def drive_to_filed(machine, create_draft, applicant, assigner, approver, head, reviewer):
    """Walk a fresh draft to govt_application_filed along the approve path."""

    def _drive(**draft_kwargs):
        app = create_draft(**draft_kwargs)
        app_id = app.application_id
        machine.submit(app_id, applicant)
        machine.assign_reviewer(app_id, assigner, reviewer_ref=approver.ref)
        machine.approve(app_id, approver, comments="Novel and useful")
        machine.head_approve(app_id, head)
        return machine.add_govt_id(app_id, reviewer, govt_application_id="IN202641000123")

    return _drive
