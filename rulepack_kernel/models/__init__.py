"""ORM models for persisted rulepacks."""

from rulepack_kernel.models.rulepack import RulepackRegressionModel, TaxRulepackModel

__all__ = [
    "TaxRulepackModel",
    "RulepackRegressionModel",
]
