"""
IPR defaults schema.

Typed, frozen form of ``defaults.yaml``.  The loader parses YAML into these
types; nothing downstream reads the raw dicts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class IncentiveDefault:
    """Fallback reward for one IPR type."""

    ipr_type: str
    base_points: int
    base_incentive_amount: Decimal


@dataclass(frozen=True)
class IprDefaultsConfig:
    config_id: str
    version: int
    incentive_policies: tuple[IncentiveDefault, ...]
    enum_domains: dict[str, tuple[str, ...]] = field(default_factory=dict)
    checksum: str = ""

    def policy_for(self, ipr_type: str) -> IncentiveDefault | None:
        for policy in self.incentive_policies:
            if policy.ipr_type == ipr_type:
                return policy
        return None
