"""
ipr_engines.permissions -- Capability resolution and the permission gate.

Responsibility:
    The one server-side function that turns permission keys into
    capability booleans, and the pure checks that decide whether an actor
    may fire a workflow transition, propose or answer a suggestion, or
    edit a draft.  Every check returns ``(allowed, reason)``; the
    ``require_*`` variants raise PermissionDeniedError instead.

Architecture position:
    Engines -- pure functions over kernel domain types.  No I/O, no
    caching: callers re-evaluate on every request.

Invariants enforced:
    - Key matching is exact after trimming and lower-casing; a key that
      merely contains ``ipr_review`` does not grant review.
    - ``approve`` from a DRD stage needs BOTH review and approve.
    - Applicant-party transitions are open only to the applicant;
      mentor-party transitions only to the application's recorded mentor.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from ipr_kernel.domain.application import (
    Application,
    ApplicationStatus,
    WorkflowAction,
)
from ipr_kernel.domain.capabilities import (
    PERMISSION_APPROVE,
    PERMISSION_ASSIGN_SCHOOL,
    PERMISSION_FILE_NEW,
    PERMISSION_REVIEW,
    Actor,
    ActorCapabilities,
)
from ipr_kernel.domain.workflow import Party, Transition
from ipr_kernel.exceptions import PermissionDeniedError

_KEY_TO_CAPABILITY: dict[str, str] = {
    PERMISSION_FILE_NEW: "file_new",
    PERMISSION_REVIEW: "review",
    PERMISSION_APPROVE: "approve",
    PERMISSION_ASSIGN_SCHOOL: "assign_school",
}

# Roles that may file disclosures without an explicit key.
_DEFAULT_FILERS = frozenset({"faculty", "student"})
_ADMIN_ROLES = frozenset({"admin", "system_admin"})

REVIEW_ONLY_VOCABULARY: tuple[WorkflowAction, ...] = (
    WorkflowAction.RECOMMEND,
    WorkflowAction.REQUEST_CHANGES,
    WorkflowAction.REJECT,
)
REVIEW_AND_APPROVE_VOCABULARY: tuple[WorkflowAction, ...] = (
    WorkflowAction.APPROVE,
    WorkflowAction.REQUEST_CHANGES,
    WorkflowAction.REJECT,
)


def _canonical_key(key: str) -> str:
    return (key or "").strip().lower()


def resolve_capabilities(
    permission_keys: Iterable[str] | Mapping[str, bool],
    role: str | None = None,
) -> ActorCapabilities:
    """Map identity-provider permission keys onto capability booleans.

    Args:
        permission_keys: Granted keys, or a mapping of key -> granted flag.
        role: The actor's organizational role.  Faculty and students file
            by default; ``admin``/``system_admin`` unlocks system_override.
    """
    if isinstance(permission_keys, Mapping):
        granted = {_canonical_key(k) for k, v in permission_keys.items() if v}
    else:
        granted = {_canonical_key(k) for k in permission_keys}

    flags = {
        capability: key in granted
        for key, capability in _KEY_TO_CAPABILITY.items()
    }
    canonical_role = _canonical_key(role) if role else ""
    if canonical_role in _DEFAULT_FILERS:
        flags["file_new"] = True
    return ActorCapabilities(admin=canonical_role in _ADMIN_ROLES, **flags)


def decision_vocabulary(capabilities: ActorCapabilities) -> tuple[WorkflowAction, ...]:
    """DRD decisions this actor may be offered."""
    if capabilities.review and capabilities.approve:
        return REVIEW_AND_APPROVE_VOCABULARY
    if capabilities.review:
        return REVIEW_ONLY_VOCABULARY
    return ()


def evaluate_transition(
    actor: Actor,
    transition: Transition,
    application: Application,
) -> tuple[bool, str]:
    """Check party relation, then capabilities, for one transition row."""
    if transition.party == Party.APPLICANT and actor.ref != application.applicant_ref:
        return (False, f"only the applicant may {transition.action.value}")
    if transition.party == Party.MENTOR:
        if not application.mentor_ref or actor.ref != application.mentor_ref:
            return (False, f"only the assigned mentor may {transition.action.value}")

    missing = sorted(
        name for name in transition.required_capabilities
        if not actor.capabilities.has(name)
    )
    if missing:
        if (
            transition.action == WorkflowAction.APPROVE
            and actor.capabilities.review
            and missing == ["approve"]
        ):
            return (
                False,
                "approve requires both review and approve; "
                "review-only actors may recommend, reject or request changes",
            )
        return (False, f"missing capability: {', '.join(missing)}")
    return (True, "")


def require_transition(
    actor: Actor,
    transition: Transition,
    application: Application,
) -> None:
    allowed, reason = evaluate_transition(actor, transition, application)
    if not allowed:
        raise PermissionDeniedError(actor.ref, transition.action.value, reason)


def evaluate_override(actor: Actor) -> tuple[bool, str]:
    if not actor.capabilities.admin:
        return (False, "system_override requires administrator rights")
    return (True, "")


def require_override(actor: Actor) -> None:
    allowed, reason = evaluate_override(actor)
    if not allowed:
        raise PermissionDeniedError(
            actor.ref, WorkflowAction.SYSTEM_OVERRIDE.value, reason,
        )


def evaluate_propose_suggestion(actor: Actor, application: Application) -> tuple[bool, str]:
    """Reviewers, or the mentor while mentor approval is pending."""
    if actor.capabilities.review:
        return (True, "")
    if (
        application.status == ApplicationStatus.PENDING_MENTOR_APPROVAL
        and application.mentor_ref
        and actor.ref == application.mentor_ref
    ):
        return (True, "")
    return (False, "suggestions require review capability or the pending mentor")


def evaluate_applicant(actor: Actor, application: Application, operation: str) -> tuple[bool, str]:
    if actor.ref != application.applicant_ref:
        return (False, f"only the applicant may {operation}")
    return (True, "")


def require_applicant(actor: Actor, application: Application, operation: str) -> None:
    allowed, reason = evaluate_applicant(actor, application, operation)
    if not allowed:
        raise PermissionDeniedError(actor.ref, operation, reason)


def require_capability(actor: Actor, capability: str, operation: str) -> None:
    if not actor.capabilities.has(capability):
        raise PermissionDeniedError(
            actor.ref, operation, f"missing capability: {capability}",
        )
