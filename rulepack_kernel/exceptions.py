"""
Typed Exception Hierarchy for the Rulepack Engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Tax resolution and installation failures must be handled precisely. A caller
that cannot find a rulepack must never mistake that for "zero tax", and an
operator rejecting an install needs every failing regression case, not a
message string to parse.

Every exception therefore:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes

Example:
    try:
        pipeline.install(pack)
    except RegressionGateError as e:
        report(code=e.code, failed=e.failed_case_ids)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    RulepackEngineError (base)
    |
    +-- RulepackSchemaError
    |
    +-- ResolutionError
    |   +-- RulepackNotFoundError
    |
    +-- EvaluationError
    |   +-- ConfigurationError
    |   +-- UnsupportedTransactionError
    |
    +-- InstallationError
        +-- RegressionGateError
        +-- InvalidStatusTransitionError
        +-- RulepackImmutableError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                          | When Raised
--------------|-------------------------------|-----------------------------------
Schema        | RULEPACK_SCHEMA_ERROR         | Definition missing/malformed field
--------------|-------------------------------|-----------------------------------
Resolution    | RULEPACK_NOT_FOUND            | No persisted or built-in pack
--------------|-------------------------------|-----------------------------------
Evaluation    | RULEPACK_CONFIGURATION_ERROR  | Metadata cannot drive a strategy
              | UNSUPPORTED_TRANSACTION       | Transaction input is invalid
--------------|-------------------------------|-----------------------------------
Installation  | REGRESSION_GATE_FAILED        | Cases failed and policy is strict
              | INVALID_STATUS_TRANSITION     | Lifecycle forbids the transition
              | RULEPACK_IMMUTABLE            | Target row is deprecated

Storage failures (``sqlalchemy.exc.SQLAlchemyError``) are not wrapped; they
propagate unchanged after the unit of work has rolled back.
"""

from __future__ import annotations

from typing import Sequence


class RulepackEngineError(Exception):
    """
    Base exception for all rulepack engine errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "RULEPACK_ENGINE_ERROR"


class RulepackSchemaError(RulepackEngineError):
    """A rulepack definition could not be parsed into the schema."""

    code: str = "RULEPACK_SCHEMA_ERROR"

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid rulepack definition ({source}): {reason}")


# Resolution


class ResolutionError(RulepackEngineError):
    """Base exception for rulepack resolution errors."""

    code: str = "RESOLUTION_ERROR"


class RulepackNotFoundError(ResolutionError):
    """
    No persisted or built-in rulepack covers the jurisdiction/year.

    Callers must treat this as "no tax rule", never as zero tax.
    """

    code: str = "RULEPACK_NOT_FOUND"

    def __init__(self, jurisdiction_code: str, year: int | None = None):
        self.jurisdiction_code = jurisdiction_code
        self.year = year
        suffix = f" for year {year}" if year is not None else ""
        super().__init__(
            f"No tax rulepack available for jurisdiction {jurisdiction_code}{suffix}"
        )


# Evaluation


class EvaluationError(RulepackEngineError):
    """Base exception for evaluation errors."""

    code: str = "EVALUATION_ERROR"


class ConfigurationError(EvaluationError):
    """
    Rulepack metadata cannot drive the selected strategy.

    Raised instead of silently evaluating to zero tax, e.g. when a bracket
    ladder has no entry for the filing status and no ``single`` fallback.
    """

    code: str = "RULEPACK_CONFIGURATION_ERROR"

    def __init__(self, jurisdiction_code: str, version: str, reason: str):
        self.jurisdiction_code = jurisdiction_code
        self.version = version
        self.reason = reason
        super().__init__(
            f"Rulepack {jurisdiction_code} {version} is misconfigured: {reason}"
        )


class UnsupportedTransactionError(EvaluationError):
    """Transaction input cannot be evaluated."""

    code: str = "UNSUPPORTED_TRANSACTION"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Unsupported transaction: {reason}")


# Installation


class InstallationError(RulepackEngineError):
    """Base exception for installation errors."""

    code: str = "INSTALLATION_ERROR"


class RegressionGateError(InstallationError):
    """
    Regression cases failed and the installation policy forbids failures.

    Enumerates every failing case so an operator can judge whether the
    change is a true regression or needs updated fixtures.
    """

    code: str = "REGRESSION_GATE_FAILED"

    def __init__(
        self,
        jurisdiction_code: str,
        version: str,
        failed_case_ids: Sequence[str],
        errors: dict[str, str] | None = None,
    ):
        self.jurisdiction_code = jurisdiction_code
        self.version = version
        self.failed_case_ids = tuple(failed_case_ids)
        self.errors = dict(errors or {})
        super().__init__(
            f"Rulepack {jurisdiction_code} {version} failed regression "
            f"({len(self.failed_case_ids)} cases): {', '.join(self.failed_case_ids)}"
        )


class InvalidStatusTransitionError(InstallationError):
    """The lifecycle state machine does not allow this transition."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, rulepack_key: str, current: str, target: str):
        self.rulepack_key = rulepack_key
        self.current = current
        self.target = target
        super().__init__(
            f"Rulepack {rulepack_key} cannot transition from {current} to {target}"
        )


class RulepackImmutableError(InstallationError):
    """A deprecated rulepack cannot be modified."""

    code: str = "RULEPACK_IMMUTABLE"

    def __init__(self, rulepack_key: str):
        self.rulepack_key = rulepack_key
        super().__init__(f"Rulepack {rulepack_key} is deprecated and immutable")
