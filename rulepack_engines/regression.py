"""
Module: rulepack_engines.regression
Responsibility:
    Replay the regression cases embedded in a rulepack through the
    evaluator and compare each outcome with its expected values.

Architecture position:
    Engines -- pure calculation layer.  The only impurity is the injected
    Clock used to stamp ``last_run_at``.

Invariants enforced:
    - Tolerances: tax amount and filing boxes within 0.01, rate within
      0.0001 (inclusive).
    - Filing-box comparison is one-directional: boxes the calculation
      produces but the case does not expect are ignored; an expected box
      missing from the calculation compares as 0.
    - Mismatches never raise.  Any exception from the evaluator fails its
      case and carries the error message; the remaining cases still run.
    - A pack without cases yields an all-zero summary, not a failure.

Failure modes:
    (none) -- every outcome is reported in the RegressionReport.
"""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from rulepack_config.schema import (
    RegressionCase,
    RegressionExpectation,
    RegressionSummary,
    Rulepack,
)
from rulepack_engines.evaluator import CalculationResult, evaluate
from rulepack_engines.tracer import traced_engine
from rulepack_kernel.domain.clock import Clock, SystemClock
from rulepack_kernel.domain.values import AMOUNT_TOLERANCE, RATE_TOLERANCE, ZERO
from rulepack_kernel.exceptions import EvaluationError
from rulepack_kernel.logging_config import get_logger

logger = get_logger("engines.regression")


class RegressionStatus(str, Enum):
    """Outcome of one regression case."""

    PASS = "pass"
    FAIL = "fail"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RegressionResult:
    """
    Outcome of replaying one regression case.

    Guarantees:
        - ``error`` is set iff ``status`` is FAIL; it lists every
          mismatching field with expected, actual and difference.
        - ``actual`` is None when the evaluation raised or was skipped.
    """

    case_id: str
    status: RegressionStatus
    expected: RegressionExpectation
    actual: CalculationResult | None = None
    error: str | None = None
    description: str = ""

    @property
    def passed(self) -> bool:
        return self.status == RegressionStatus.PASS


@dataclass(frozen=True)
class RegressionReport:
    """Summary plus per-case results of one regression run."""

    summary: RegressionSummary
    results: tuple[RegressionResult, ...] = ()

    @property
    def failed_case_ids(self) -> tuple[str, ...]:
        return failed_case_ids(self.results)

    @property
    def errors(self) -> dict[str, str]:
        return {r.case_id: r.error or "" for r in self.results if r.status == RegressionStatus.FAIL}

    @property
    def is_clean(self) -> bool:
        return self.summary.failed == 0


def failed_case_ids(results: tuple[RegressionResult, ...]) -> tuple[str, ...]:
    """Ids of every failing case, in fixture order."""
    return tuple(r.case_id for r in results if r.status == RegressionStatus.FAIL)


def _mismatch(field_name: str, expected: Decimal, actual: Decimal) -> str:
    return (
        f"{field_name} mismatch: expected {expected}, got {actual} "
        f"(diff {actual - expected})"
    )


def compare_result(expected: RegressionExpectation, actual: CalculationResult) -> list[str]:
    """Every mismatch between an expectation and a calculation, empty if it passes."""
    mismatches: list[str] = []

    if abs(actual.tax_amount - expected.tax_amount) > AMOUNT_TOLERANCE:
        mismatches.append(_mismatch("tax_amount", expected.tax_amount, actual.tax_amount))

    if expected.tax_rate is not None and abs(actual.tax_rate - expected.tax_rate) > RATE_TOLERANCE:
        mismatches.append(_mismatch("tax_rate", expected.tax_rate, actual.tax_rate))

    if expected.filing_boxes is not None:
        actual_boxes = actual.filing_boxes or {}
        for box_id, expected_value in expected.filing_boxes.items():
            actual_value = actual_boxes.get(box_id, ZERO)
            if abs(actual_value - expected_value) > AMOUNT_TOLERANCE:
                mismatches.append(_mismatch(f"filing box {box_id}", expected_value, actual_value))

    return mismatches


def _evaluation_failure(case: RegressionCase, error: str) -> RegressionResult:
    return RegressionResult(
        case_id=case.id,
        status=RegressionStatus.FAIL,
        expected=case.expected,
        error=error,
        description=case.description,
    )


def run_case(rulepack: Rulepack, case: RegressionCase) -> RegressionResult:
    """Evaluate one case and compare it with its expectation."""
    try:
        actual = evaluate(rulepack, case.transaction)
    except (EvaluationError, ArithmeticError, ValueError) as exc:
        return _evaluation_failure(case, f"evaluation error: {exc}")
    except Exception as exc:
        return _evaluation_failure(case, f"evaluation error: {type(exc).__name__}: {exc}")

    mismatches = compare_result(case.expected, actual)
    return RegressionResult(
        case_id=case.id,
        status=RegressionStatus.FAIL if mismatches else RegressionStatus.PASS,
        expected=case.expected,
        actual=actual,
        error="; ".join(mismatches) if mismatches else None,
        description=case.description,
    )


@traced_engine("regression", "1.0", fingerprint_fields=("rulepack",))
def run_regression(
    rulepack: Rulepack,
    clock: Clock | None = None,
    skip_case_ids: Collection[str] = (),
) -> RegressionReport:
    """
    Replay every embedded regression case.

    Args:
        rulepack: Pack under test.
        clock: Stamps ``summary.last_run_at``.  Defaults to SystemClock.
        skip_case_ids: Cases an operator has excluded from this run; they
            are reported as SKIPPED and count neither as passed nor failed.
    """
    clock = clock or SystemClock()
    run_at = clock.now()

    if not rulepack.regression_cases:
        logger.warning(
            "regression_no_cases",
            extra={
                "jurisdiction_code": rulepack.jurisdiction_code,
                "rulepack_version": rulepack.version,
            },
        )
        return RegressionReport(summary=RegressionSummary(last_run_at=run_at))

    results: list[RegressionResult] = []
    for case in rulepack.regression_cases:
        if case.id in skip_case_ids:
            results.append(RegressionResult(
                case_id=case.id,
                status=RegressionStatus.SKIPPED,
                expected=case.expected,
                description=case.description,
            ))
            continue

        result = run_case(rulepack, case)
        if result.status == RegressionStatus.FAIL:
            logger.warning(
                "regression_case_failed",
                extra={
                    "jurisdiction_code": rulepack.jurisdiction_code,
                    "rulepack_version": rulepack.version,
                    "case_id": case.id,
                    "error": result.error,
                },
            )
        results.append(result)

    summary = RegressionSummary(
        total=len(results),
        passed=sum(1 for r in results if r.status == RegressionStatus.PASS),
        failed=sum(1 for r in results if r.status == RegressionStatus.FAIL),
        skipped=sum(1 for r in results if r.status == RegressionStatus.SKIPPED),
        last_run_at=run_at,
    )

    logger.info(
        "regression_completed",
        extra={
            "jurisdiction_code": rulepack.jurisdiction_code,
            "rulepack_version": rulepack.version,
            "total": summary.total,
            "passed": summary.passed,
            "failed": summary.failed,
            "skipped": summary.skipped,
        },
    )

    return RegressionReport(summary=summary, results=tuple(results))
