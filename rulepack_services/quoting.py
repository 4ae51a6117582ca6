"""
Tax quoting -- resolve a rulepack and evaluate a transaction in one call.

Thin convenience layer for callers that do not hold on to a resolved
Rulepack.  Resolution failures propagate as RulepackNotFoundError; a
missing pack is never quoted as zero tax.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from rulepack_config.loader import parse_transaction
from rulepack_config.schema import TransactionInput, TransactionType
from rulepack_engines.evaluator import CalculationResult, evaluate
from rulepack_kernel.exceptions import RulepackSchemaError, UnsupportedTransactionError
from rulepack_kernel.logging_config import get_logger
from rulepack_services.store import RulepackStore

logger = get_logger("services.quoting")

# Country-level callers book purchases as expenses
EXPENSE_TYPE = "expense"


def calculate_tax(
    store: RulepackStore,
    jurisdiction_code: str,
    transaction: TransactionInput,
    year: int | None = None,
) -> CalculationResult:
    """Resolve the governing pack for ``jurisdiction_code`` and evaluate."""
    rulepack = store.resolve(jurisdiction_code, year)
    result = evaluate(rulepack, transaction)
    logger.debug(
        "tax_quoted",
        extra={
            "jurisdiction_code": rulepack.jurisdiction_code,
            "rulepack_version": rulepack.version,
            "rule_id": result.rule_id,
        },
    )
    return result


def to_country_transaction(transaction: TransactionInput | Mapping[str, Any]) -> TransactionInput:
    """Normalise a country-level transaction, mapping ``expense`` to ``purchase``."""
    if isinstance(transaction, TransactionInput):
        return transaction

    data = dict(transaction)
    if data.get("type") == EXPENSE_TYPE:
        data["type"] = TransactionType.PURCHASE.value
    try:
        return parse_transaction(data)
    except KeyError as e:
        raise UnsupportedTransactionError(f"missing field {e}") from e
    except RulepackSchemaError as e:
        raise UnsupportedTransactionError(e.reason) from e
    except ValueError as e:
        raise UnsupportedTransactionError(str(e)) from e


def calculate_tax_for_country(
    store: RulepackStore,
    country: str,
    transaction: TransactionInput | Mapping[str, Any],
    year: int | None = None,
) -> CalculationResult:
    """Quote a country-level transaction against the country's own pack."""
    return calculate_tax(store, country, to_country_transaction(transaction), year)
