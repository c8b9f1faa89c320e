"""
ipr_engines.incentive -- Reward split for a published disclosure.

Responsibility:
    Pure function of (policy, contributor roster) -> per-contributor
    incentive amounts and points.  No persistence, no clock.

Architecture position:
    Engines -- pure calculation.  ``IncentiveService`` supplies the policy
    and persists the result.

Algorithm:
    1. eligible_for_incentive = internal contributors (at least 1).
    2. eligible_for_points = internal non-student contributors (at least 1).
    3. per-person values = totals divided by the eligible counts, each
       quantized to 0.01 with ROUND_HALF_EVEN.
    4. external -> (0, 0); internal student -> (incentive, 0);
       internal staff/faculty -> (incentive, points).

    The primary applicant always shares in the reward: ``inventor_roster``
    puts them first as an internal contributor unless the listed
    contributors already include them.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import ROUND_HALF_EVEN, Decimal

from ipr_engines.tracer import traced_engine
from ipr_kernel.domain.application import (
    ContributorInfo,
    EmployeeCategory,
    EmployeeType,
    normalize_identity,
)
from ipr_kernel.domain.incentive import (
    ContributorShare,
    IncentiveDistribution,
    IncentivePolicy,
)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def quantize_share(value: Decimal) -> Decimal:
    """Bankers' rounding to two places."""
    return value.quantize(CENT, rounding=ROUND_HALF_EVEN)


def _is_internal(contributor: ContributorInfo) -> bool:
    return contributor.employee_category == EmployeeCategory.INTERNAL


def _earns_points(contributor: ContributorInfo) -> bool:
    return _is_internal(contributor) and contributor.employee_type != EmployeeType.STUDENT


@traced_engine("incentive", "1.0", fingerprint_fields=("policy", "contributors"))
def calculate_incentives(
    *,
    policy: IncentivePolicy,
    contributors: Sequence[ContributorInfo],
) -> IncentiveDistribution:
    eligible_for_incentive = max(1, sum(1 for c in contributors if _is_internal(c)))
    eligible_for_points = max(1, sum(1 for c in contributors if _earns_points(c)))

    per_person_incentive = quantize_share(
        Decimal(policy.base_incentive_amount) / eligible_for_incentive
    )
    per_person_points = quantize_share(
        Decimal(policy.base_points) / eligible_for_points
    )

    shares: list[ContributorShare] = []
    for contributor in contributors:
        if not _is_internal(contributor):
            amount, points = ZERO, ZERO
        elif contributor.employee_type == EmployeeType.STUDENT:
            amount, points = per_person_incentive, ZERO
        else:
            amount, points = per_person_incentive, per_person_points
        shares.append(
            ContributorShare(
                identity=contributor.identity,
                employee_category=contributor.employee_category,
                employee_type=contributor.employee_type,
                incentive_amount=amount,
                points=points,
            )
        )

    return IncentiveDistribution(
        ipr_type=policy.ipr_type,
        eligible_for_incentive=eligible_for_incentive,
        eligible_for_points=eligible_for_points,
        per_person_incentive=per_person_incentive,
        per_person_points=per_person_points,
        shares=tuple(shares),
    )


def inventor_roster(
    applicant_ref: str,
    applicant_type: EmployeeType | str,
    contributors: Sequence[ContributorInfo],
) -> tuple[ContributorInfo, ...]:
    """Listed contributors plus the applicant, who is never left out.

    Identity comparison is case-insensitive.  An applicant who is not
    listed is added ahead of the others as an internal primary inventor of
    their own employee type.
    """
    applicant_identity = normalize_identity(applicant_ref)
    if any(normalize_identity(c.identity) == applicant_identity for c in contributors):
        return tuple(contributors)
    applicant = ContributorInfo(
        identity=applicant_identity,
        employee_category=EmployeeCategory.INTERNAL,
        employee_type=EmployeeType(applicant_type),
        role="primary_inventor",
    )
    return (applicant, *contributors)
