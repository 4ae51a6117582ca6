"""
Module: rulepack_engines.filing_boxes
Responsibility:
    Project a calculation onto the box identifiers of an official filing
    form declared by the rulepack.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import rulepack_config.schema and rulepack_kernel/domain.

Invariants enforced:
    - Boxes whose directive cannot be resolved are omitted, never
      zero-filled.  A partially populated map is a valid result.
    - ``taxableIncome`` resolves only when the strategy produced one
      (income strategies); ``context.<key>`` only for numeric metadata.
    - Box values are rounded to cents with ROUND_HALF_UP.

Failure modes:
    (none) -- unknown directives are skipped.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping

from rulepack_config.schema import (
    FilingSchema,
    Rulepack,
    TransactionInput,
    TransactionType,
)
from rulepack_kernel.domain.values import is_number, round_money, to_decimal

SALE_FORM_KEYWORDS = ("vat", "sales", "gst", "hst", "boe", "ca3")
INCOME_FORM_KEYWORDS = ("1040", "income", "tax return", "540", "corporation")
PAYROLL_FORM_KEYWORDS = ("941", "payroll", "employer")

# Keyword tiers per transaction type; an earlier tier wins over a later one
FORM_KEYWORDS: dict[TransactionType, tuple[tuple[str, ...], ...]] = {
    TransactionType.SALE: (SALE_FORM_KEYWORDS,),
    TransactionType.PURCHASE: (SALE_FORM_KEYWORDS,),
    TransactionType.INCOME: (INCOME_FORM_KEYWORDS,),
    TransactionType.CORPORATE_INCOME: (INCOME_FORM_KEYWORDS,),
    TransactionType.PAYROLL: (PAYROLL_FORM_KEYWORDS, INCOME_FORM_KEYWORDS),
}

CONTEXT_PREFIX = "context."


@dataclass(frozen=True)
class ProjectionContext:
    """Values a calculation exposes to filing-box directives."""

    amount: Decimal
    tax_amount: Decimal
    taxable_income: Decimal | None = None


def select_schema(
    schemas: tuple[FilingSchema, ...],
    transaction_type: TransactionType,
) -> FilingSchema | None:
    """
    First schema whose form name contains a keyword for the type, else the
    first schema.  Keyword tiers are tried in order across all schemas.
    """
    if not schemas:
        return None
    for keywords in FORM_KEYWORDS.get(transaction_type, ()):
        for schema in schemas:
            form = schema.form.lower()
            if any(keyword in form for keyword in keywords):
                return schema
    return schemas[0]


def _resolve(
    directive: str | None,
    context: ProjectionContext,
    metadata: Mapping[str, object],
) -> Decimal | None:
    match directive:
        case "amount":
            return context.amount
        case "taxAmount":
            return context.tax_amount
        case "taxableIncome":
            return context.taxable_income
        case str() if directive.startswith(CONTEXT_PREFIX):
            key = directive[len(CONTEXT_PREFIX):]
            if not key or "." in key:
                return None
            value = metadata.get(key)
            return to_decimal(value) if is_number(value) else None
        case _:
            return None


def project(
    rulepack: Rulepack,
    transaction: TransactionInput,
    context: ProjectionContext,
) -> dict[str, Decimal] | None:
    """
    Map a calculation onto the boxes of the best-matching filing schema.

    Returns:
        ``{box_id: value}`` for every resolvable box, or None when the
        rulepack declares no schemas or no box resolves.
    """
    schema = select_schema(rulepack.filing_schemas, transaction.type)
    if schema is None:
        return None

    boxes: dict[str, Decimal] = {}
    for box in schema.boxes:
        value = _resolve(box.calculation, context, transaction.metadata)
        if value is not None:
            boxes[box.id] = round_money(value)

    return boxes or None
