"""
Actor capability types.

The identity provider hands the kernel a set of permission keys; the
canonical resolver in ``ipr_engines.permissions`` turns them into the
booleans below.  Nothing else in the kernel reads raw permission keys.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# Permission keys as issued by the identity provider.
PERMISSION_FILE_NEW = "ipr_file_new"
PERMISSION_REVIEW = "ipr_review"
PERMISSION_APPROVE = "ipr_approve"
PERMISSION_ASSIGN_SCHOOL = "ipr_assign_school"

PERMISSION_KEYS: tuple[str, ...] = (
    PERMISSION_FILE_NEW,
    PERMISSION_REVIEW,
    PERMISSION_APPROVE,
    PERMISSION_ASSIGN_SCHOOL,
)


@dataclass(frozen=True)
class ActorCapabilities:
    """Four independent capabilities plus the override-only admin flag."""

    file_new: bool = False
    review: bool = False
    approve: bool = False
    assign_school: bool = False
    admin: bool = False

    def has(self, capability: str) -> bool:
        return bool(getattr(self, capability, False))

    def names(self) -> frozenset[str]:
        return frozenset(
            name for name in ("file_new", "review", "approve", "assign_school", "admin")
            if getattr(self, name)
        )


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of a kernel operation."""

    ref: str
    capabilities: ActorCapabilities = field(default_factory=ActorCapabilities)
