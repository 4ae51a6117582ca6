"""Read-only selectors over the rulepack tables."""

from rulepack_kernel.selectors.base import BaseSelector
from rulepack_kernel.selectors.rulepack_selector import RulepackSelector

__all__ = [
    "BaseSelector",
    "RulepackSelector",
]
