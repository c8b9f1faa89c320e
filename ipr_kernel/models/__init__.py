"""ORM models for the IPR kernel."""

from ipr_kernel.models.application import ApplicationModel, ContributorModel
from ipr_kernel.models.incentive import IncentiveCreditModel, IncentivePolicyModel
from ipr_kernel.models.review import ReviewModel
from ipr_kernel.models.suggestion import EditSuggestionModel

__all__ = [
    "ApplicationModel",
    "ContributorModel",
    "EditSuggestionModel",
    "IncentiveCreditModel",
    "IncentivePolicyModel",
    "ReviewModel",
]
