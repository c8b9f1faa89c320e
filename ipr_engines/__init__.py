"""
Pure calculation engines for the IPR workflow.

Engines take kernel domain types and return kernel domain types.  They do
no I/O beyond emitting an IPR_ENGINE_TRACE log record.
"""

from ipr_engines.incentive import calculate_incentives, inventor_roster, quantize_share
from ipr_engines.permissions import (
    decision_vocabulary,
    evaluate_transition,
    require_transition,
    resolve_capabilities,
)

__all__ = [
    "calculate_incentives",
    "inventor_roster",
    "quantize_share",
    "decision_vocabulary",
    "evaluate_transition",
    "require_transition",
    "resolve_capabilities",
]
