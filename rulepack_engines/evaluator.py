"""
Module: rulepack_engines.evaluator
Responsibility:
    Evaluate a resolved rulepack against a transaction, producing the tax
    amount, effective rate, governing rule id and filing-box projection.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import rulepack_config.schema, rulepack_kernel/domain and
    rulepack_kernel.exceptions.

Invariants enforced:
    - Purity: same rulepack + transaction always yields the same result.
      No clock access, no database access.
    - Marginal bracket semantics: income crossing into a higher bracket is
      taxed at the higher rate only on the excess.
    - Full-precision accumulation; monetary outputs rounded to cents and
      rates to 4 places, both ROUND_HALF_UP, only at output.
    - Credits never produce a negative tax.
    - A fallback evaluation is always marked: ``rule_id == "fallback"``
      whenever the applied rate is zero, and ``details["degraded"] is True``.

Failure modes:
    - ConfigurationError when a progressive pack has no ladder for the
      filing status and no ``single`` ladder.
    - UnsupportedTransactionError for negative amounts.

Usage:
    from rulepack_engines.evaluator import evaluate
    from rulepack_config.schema import TransactionInput

    result = evaluate(rulepack, TransactionInput(amount="95000", type="income"))
    result.tax_amount   # Decimal("12741.00")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Union

from rulepack_config.schema import (
    INCOME_TRANSACTION_TYPES,
    SALE_TRANSACTION_TYPES,
    Bracket,
    FlatIncomeShape,
    PayrollShape,
    ProgressiveIncomeShape,
    Rulepack,
    SalesTaxShape,
    TransactionInput,
    TransactionType,
    VatShape,
)
from rulepack_engines.filing_boxes import ProjectionContext, project
from rulepack_engines.tracer import traced_engine
from rulepack_kernel.domain.values import ZERO, round_money, round_rate
from rulepack_kernel.exceptions import ConfigurationError, UnsupportedTransactionError
from rulepack_kernel.logging_config import get_logger

logger = get_logger("engines.evaluator")

TaxShape = Union[
    ProgressiveIncomeShape,
    FlatIncomeShape,
    SalesTaxShape,
    VatShape,
    PayrollShape,
]

FALLBACK_RULE_ID = "fallback"
ZERO_RATED_CATEGORIES = frozenset({"zero", "exempt"})
DEFAULT_VAT_CATEGORY = "standard"


@dataclass(frozen=True)
class CalculationResult:
    """
    Outcome of evaluating one transaction.

    Contract:
        Frozen dataclass; ``tax_amount`` is rounded to cents and
        ``tax_rate`` to 4 places.
    Guarantees:
        - ``tax_amount >= 0``.
        - ``tax_rate == 0`` when the transaction amount is 0.
    Non-goals:
        - Does not carry the rulepack itself; ``jurisdiction_code`` and
          ``rulepack_version`` identify it.
    """

    tax_rate: Decimal
    tax_amount: Decimal
    rule_id: str
    jurisdiction_code: str
    rulepack_version: str
    filing_boxes: Mapping[str, Decimal] | None = None
    details: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_degraded(self) -> bool:
        """True when no strategy matched and the flat-rate fallback applied."""
        return bool(self.details.get("degraded"))

    @property
    def taxable_income(self) -> Decimal | None:
        return self.details.get("taxable_income")


@dataclass(frozen=True)
class _Outcome:
    """Unrounded strategy output."""

    tax: Decimal
    rule_kind: str
    details: dict[str, Any]
    taxable_income: Decimal | None = None


# ---------------------------------------------------------------------------
# Strategy selection
# ---------------------------------------------------------------------------


def select_shape(rulepack: Rulepack, transaction: TransactionInput) -> TaxShape | None:
    """
    Pick the tax shape that handles the transaction type.

    Sales tax wins over VAT when a pack declares both.
    """
    metadata = rulepack.metadata
    txn_type = transaction.type
    if txn_type in INCOME_TRANSACTION_TYPES:
        return metadata.income_tax
    if txn_type in SALE_TRANSACTION_TYPES:
        return metadata.sales_tax or metadata.vat
    if txn_type == TransactionType.PAYROLL:
        return metadata.payroll
    return None


def resolve_rule_id(rulepack: Rulepack, kind: str) -> str:
    """First rule whose id mentions ``kind``, else ``<kind>-metadata``."""
    for rule in rulepack.rules:
        if kind in rule.id:
            return rule.id
    return f"{kind}-metadata"


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


def compute_bracket_tax(ladder: tuple[Bracket, ...], taxable_income: Decimal) -> Decimal:
    """
    Marginal tax over an ascending bracket ladder.

    Each bracket taxes the span between the previous bracket's upper bound
    and its own ``max``; a ``max`` of None consumes the remainder.
    """
    tax = ZERO
    lower = ZERO
    for bracket in ladder:
        if taxable_income <= lower:
            break
        upper = taxable_income if bracket.max is None else min(taxable_income, bracket.max)
        if upper > lower:
            tax += (upper - lower) * bracket.rate
        if bracket.max is None:
            break
        lower = bracket.max
    return tax


def _apply_credits(tax: Decimal, credits: Decimal) -> Decimal:
    return max(ZERO, tax - credits)


def _progressive_income(
    rulepack: Rulepack,
    shape: ProgressiveIncomeShape,
    transaction: TransactionInput,
) -> _Outcome:
    status = transaction.effective_filing_status
    ladder = shape.ladder_for(status)
    if not ladder:
        raise ConfigurationError(
            rulepack.jurisdiction_code,
            rulepack.version,
            f"no bracket ladder for filing status '{status}' and no 'single' ladder",
        )

    standard = shape.standard_deductions.get(status, ZERO)
    deductions = standard + transaction.deductions
    taxable = max(ZERO, transaction.amount - deductions)
    gross_tax = compute_bracket_tax(ladder, taxable)

    return _Outcome(
        tax=_apply_credits(gross_tax, transaction.credits),
        rule_kind="income",
        taxable_income=taxable,
        details={
            "strategy": "progressive_income",
            "filing_status": status,
            "standard_deduction": standard,
            "deductions": round_money(deductions),
            "taxable_income": round_money(taxable),
            "tax_before_credits": round_money(gross_tax),
            "credits": transaction.credits,
            "bracket_count": len(ladder),
        },
    )


def _flat_income(
    rulepack: Rulepack,
    shape: FlatIncomeShape,
    transaction: TransactionInput,
) -> _Outcome:
    status = transaction.effective_filing_status
    standard = shape.standard_deductions.get(status, ZERO)
    deductions = standard + transaction.deductions
    taxable = max(ZERO, transaction.amount - deductions)
    gross_tax = taxable * shape.flat_rate

    return _Outcome(
        tax=_apply_credits(gross_tax, transaction.credits),
        rule_kind="income",
        taxable_income=taxable,
        details={
            "strategy": "flat_income",
            "filing_status": status,
            "flat_rate": round_rate(shape.flat_rate),
            "standard_deduction": standard,
            "deductions": round_money(deductions),
            "taxable_income": round_money(taxable),
            "tax_before_credits": round_money(gross_tax),
            "credits": transaction.credits,
        },
    )


def _sales_tax(
    rulepack: Rulepack,
    shape: SalesTaxShape,
    transaction: TransactionInput,
) -> _Outcome:
    locality = transaction.locality
    locality_rate = shape.local_rates.get(locality, ZERO) if locality else ZERO
    rate = shape.base_rate + locality_rate

    category = transaction.category.lower() if transaction.category else None
    reduced = (
        category is not None
        and category in shape.reduced_categories
        and shape.reduced_rate is not None
    )
    if reduced:
        # Replaces base + locality, never discounts it
        rate = shape.reduced_rate

    return _Outcome(
        tax=transaction.amount * rate,
        rule_kind="sales",
        details={
            "strategy": "sales_tax",
            "base_rate": round_rate(shape.base_rate),
            "locality": locality,
            "locality_rate": round_rate(locality_rate),
            "category": category,
            "reduced": reduced,
            "applied_rate": round_rate(rate),
        },
    )


def _vat(
    rulepack: Rulepack,
    shape: VatShape,
    transaction: TransactionInput,
) -> _Outcome:
    category = (transaction.category or DEFAULT_VAT_CATEGORY).lower()

    if category in shape.zero_rate_categories or category in ZERO_RATED_CATEGORIES:
        band, rate = "zero", ZERO
    elif category in shape.reduced_categories:
        band = "reduced"
        rate = shape.reduced_rate if shape.reduced_rate is not None else shape.standard_rate
    else:
        band, rate = "standard", shape.standard_rate

    return _Outcome(
        tax=transaction.amount * rate,
        rule_kind=shape.source_key,
        details={
            "strategy": "vat",
            "category": category,
            "band": band,
            "applied_rate": round_rate(rate),
        },
    )


def _payroll(
    rulepack: Rulepack,
    shape: PayrollShape,
    transaction: TransactionInput,
) -> _Outcome:
    wages = transaction.amount
    ss_wages = wages if shape.wage_base is None else min(wages, shape.wage_base)
    social_security = ss_wages * shape.social_security_rate
    medicare = wages * shape.medicare_rate
    additional = max(ZERO, wages - shape.additional_medicare_threshold) * shape.additional_medicare_rate

    return _Outcome(
        tax=social_security + medicare + additional,
        rule_kind="payroll",
        details={
            "strategy": "payroll",
            "social_security_wages": round_money(ss_wages),
            "social_security": round_money(social_security),
            "medicare": round_money(medicare),
            "additional_medicare": round_money(additional),
        },
    )


def _fallback(rulepack: Rulepack, transaction: TransactionInput) -> tuple[str, _Outcome]:
    first = rulepack.rules[0] if rulepack.rules else None
    if first is not None and first.rate is not None and first.rate != ZERO:
        rule_id, rate = first.id, first.rate
    else:
        rule_id, rate = FALLBACK_RULE_ID, ZERO

    logger.warning(
        "evaluation_fallback",
        extra={
            "jurisdiction_code": rulepack.jurisdiction_code,
            "rulepack_version": rulepack.version,
            "transaction_type": transaction.type.value,
            "rule_id": rule_id,
            "rate": str(rate),
        },
    )
    return rule_id, _Outcome(
        tax=transaction.amount * rate,
        rule_kind=FALLBACK_RULE_ID,
        details={
            "strategy": "fallback",
            "degraded": True,
            "applied_rate": round_rate(rate),
        },
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


@traced_engine("evaluator", "1.0", fingerprint_fields=("rulepack", "transaction"))
def evaluate(rulepack: Rulepack, transaction: TransactionInput) -> CalculationResult:
    """
    Evaluate ``transaction`` under ``rulepack``.

    Dispatch: income types -> income shape; sale/purchase -> sales tax,
    else VAT; payroll -> payroll shape; anything else -> the rate of the
    first rule (flat-rate fallback).

    Raises:
        ConfigurationError: Progressive ladder missing for the filing status.
        UnsupportedTransactionError: Negative transaction amount.
    """
    if transaction.amount < ZERO:
        raise UnsupportedTransactionError(
            f"amount must not be negative, got {transaction.amount}"
        )

    shape = select_shape(rulepack, transaction)
    match shape:
        case ProgressiveIncomeShape():
            outcome = _progressive_income(rulepack, shape, transaction)
        case FlatIncomeShape():
            outcome = _flat_income(rulepack, shape, transaction)
        case SalesTaxShape():
            outcome = _sales_tax(rulepack, shape, transaction)
        case VatShape():
            outcome = _vat(rulepack, shape, transaction)
        case PayrollShape():
            outcome = _payroll(rulepack, shape, transaction)
        case _:
            outcome = None

    if outcome is None:
        rule_id, outcome = _fallback(rulepack, transaction)
    else:
        rule_id = resolve_rule_id(rulepack, outcome.rule_kind)

    tax_amount = round_money(outcome.tax)
    tax_rate = ZERO if transaction.amount == ZERO else round_rate(outcome.tax / transaction.amount)

    filing_boxes = project(
        rulepack,
        transaction,
        ProjectionContext(
            amount=transaction.amount,
            tax_amount=outcome.tax,
            taxable_income=outcome.taxable_income,
        ),
    )

    logger.info(
        "evaluation_completed",
        extra={
            "jurisdiction_code": rulepack.jurisdiction_code,
            "rulepack_version": rulepack.version,
            "transaction_type": transaction.type.value,
            "strategy": outcome.details.get("strategy"),
            "rule_id": rule_id,
            "tax_amount": str(tax_amount),
            "tax_rate": str(tax_rate),
        },
    )

    return CalculationResult(
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        rule_id=rule_id,
        jurisdiction_code=rulepack.jurisdiction_code,
        rulepack_version=rulepack.version,
        filing_boxes=filing_boxes,
        details=outcome.details,
    )
