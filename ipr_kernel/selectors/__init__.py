"""Read-only selectors for the IPR kernel."""

from ipr_kernel.selectors.suggestion_selector import ReviewSelector, SuggestionSelector

__all__ = [
    "ReviewSelector",
    "SuggestionSelector",
]
