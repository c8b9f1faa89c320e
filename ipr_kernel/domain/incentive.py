"""
Incentive domain types.

Inputs and outputs of the pure reward split in ``ipr_engines.incentive``.
Amounts and points are ``Decimal`` and already quantized to 0.01.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from ipr_kernel.domain.application import EmployeeCategory, EmployeeType, IprType


@dataclass(frozen=True)
class IncentivePolicy:
    """Total reward for one IPR type, split across contributors."""

    ipr_type: IprType
    base_points: int
    base_incentive_amount: Decimal
    is_default: bool = False


@dataclass(frozen=True)
class ContributorShare:
    identity: str
    employee_category: EmployeeCategory
    employee_type: EmployeeType | None
    incentive_amount: Decimal
    points: Decimal


@dataclass(frozen=True)
class IncentiveDistribution:
    """Result of splitting a policy across a roster."""

    ipr_type: IprType
    eligible_for_incentive: int
    eligible_for_points: int
    per_person_incentive: Decimal
    per_person_points: Decimal
    shares: tuple[ContributorShare, ...]

    @property
    def total_incentive(self) -> Decimal:
        return sum((s.incentive_amount for s in self.shares), Decimal("0"))

    @property
    def total_points(self) -> Decimal:
        return sum((s.points for s in self.shares), Decimal("0"))


@dataclass(frozen=True)
class CreditOutcome:
    """What ``IncentiveService.credit_on_publish`` did."""

    application_id: UUID
    credited: bool
    distribution: IncentiveDistribution | None = None
