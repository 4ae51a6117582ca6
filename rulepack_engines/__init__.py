"""
rulepack_engines -- pure tax calculation layer.

Evaluator, filing-box projector and regression runner.  No database
access and no clock reads except the Clock injected into the regression
runner.
"""

from rulepack_engines.evaluator import (
    CalculationResult,
    TaxShape,
    compute_bracket_tax,
    evaluate,
    select_shape,
)
from rulepack_engines.filing_boxes import ProjectionContext, project, select_schema
from rulepack_engines.regression import (
    RegressionReport,
    RegressionResult,
    RegressionStatus,
    failed_case_ids,
    run_regression,
)

__all__ = [
    "CalculationResult",
    "ProjectionContext",
    "RegressionReport",
    "RegressionResult",
    "RegressionStatus",
    "TaxShape",
    "compute_bracket_tax",
    "evaluate",
    "failed_case_ids",
    "project",
    "run_regression",
    "select_schema",
    "select_shape",
]
