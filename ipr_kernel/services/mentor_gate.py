"""
MentorGate -- decides whether a submission needs mentor approval first.

A student's disclosure goes to their mentor before the DRD sees it, but
only when the directory actually knows a mentor for them.  The directory is
consulted once, at submit; the answer is stored on the application.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol, runtime_checkable

from ipr_kernel.domain.application import EmployeeType
from ipr_kernel.logging_config import get_logger

logger = get_logger("services.mentor_gate")


@runtime_checkable
class MentorDirectory(Protocol):
    def find_mentor(self, applicant_ref: str) -> str | None: ...


class StaticMentorDirectory:
    """In-memory directory keyed by applicant ref."""

    def __init__(self, mentors: Mapping[str, str] | None = None):
        self._mentors = dict(mentors or {})

    def find_mentor(self, applicant_ref: str) -> str | None:
        return self._mentors.get(applicant_ref)


class MentorGate:
    def __init__(self, directory: MentorDirectory | None = None):
        self._directory = directory or StaticMentorDirectory()

    def resolve_mentor(self, applicant_ref: str, applicant_type: EmployeeType) -> str | None:
        """Mentor ref when mentor review applies, else None."""
        if applicant_type != EmployeeType.STUDENT:
            return None
        mentor_ref = self._directory.find_mentor(applicant_ref)
        logger.info(
            "mentor_gate_resolved",
            extra={
                "applicant_ref": applicant_ref,
                "mentor_ref": mentor_ref,
                "mentor_review_required": mentor_ref is not None,
            },
        )
        return mentor_ref or None
