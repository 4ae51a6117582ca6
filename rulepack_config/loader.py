"""
Rulepack Loader (``rulepack_config.loader``).

Responsibility
--------------
Parses rulepack definitions (YAML files, or the JSON columns of a
persisted row) into the frozen dataclasses of ``rulepack_config.schema``,
and dumps them back into JSON-safe dicts for persistence and checksums.

Architecture position
---------------------
**Config layer**.  Consumed by the built-in registry, the store (row
mapping) and the installation pipeline (row writing).  Depends only on
the kernel's value helpers.

Invariants enforced
-------------------
* ``parse_rulepack(dump_rulepack(x))`` reproduces ``x``'s content, so a
  checksum computed before persistence still matches after a round trip.
* Decimals are dumped as plain decimal strings (``"0.0725"``), never as
  floats.
* Metadata blocks without a typed shape are carried verbatim in
  ``RulepackMetadata.extra``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing/invalid fields  -> ``RulepackSchemaError`` naming the source.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping

import yaml

from rulepack_config.lifecycle import RulepackStatus
from rulepack_config.schema import (
    Bracket,
    FilingBox,
    FilingSchema,
    FlatIncomeShape,
    IncomeShape,
    NexusThreshold,
    PayrollShape,
    ProgressiveIncomeShape,
    RegressionCase,
    RegressionExpectation,
    Rulepack,
    RulepackMetadata,
    RulepackSource,
    SalesTaxShape,
    TaxRule,
    TransactionInput,
    VatShape,
)
from rulepack_kernel.domain.values import ZERO, to_decimal
from rulepack_kernel.exceptions import RulepackSchemaError

INCOME_TAX_KEY = "income_tax"
SALES_TAX_KEY = "sales_tax"
VAT_KEY = "vat"
PAYROLL_KEY = "payroll"
# Single-rate consumption taxes read as VAT when no vat block exists
SINGLE_RATE_VAT_KEYS = ("hst", "gst")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    """
    Parse a date from YAML/JSON (string or date object).

    Raises:
        ValueError: if ``value`` is not a valid date representation.
    """
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    raise ValueError(f"Cannot parse date from {value!r}")


def _optional_decimal(value: Any) -> Decimal | None:
    return None if value is None else to_decimal(value)


def _decimal_map(data: Mapping[str, Any] | None) -> dict[str, Decimal]:
    return {str(k): to_decimal(v) for k, v in (data or {}).items()}


def _lowered(values: Any) -> tuple[str, ...]:
    return tuple(str(v).lower() for v in (values or ()))


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


TRANSACTION_TEXT_FIELDS = ("filing_status", "category", "state_code")


def parse_transaction(data: Mapping[str, Any]) -> TransactionInput:
    """
    Parse a ``TransactionInput`` from a dict.

    Raises:
        RulepackSchemaError: if a text field holds a non-string value.
    """
    for name in TRANSACTION_TEXT_FIELDS:
        value = data.get(name)
        if value is not None and not isinstance(value, str):
            raise RulepackSchemaError(
                "transaction", f"{name} must be a string, got {value!r}"
            )
    return TransactionInput(
        amount=data["amount"],
        type=data["type"],
        filing_status=data.get("filing_status"),
        category=data.get("category"),
        deductions=data.get("deductions"),
        credits=data.get("credits"),
        state_code=data.get("state_code"),
        metadata=data.get("metadata") or {},
    )


def parse_rule(data: Mapping[str, Any]) -> TaxRule:
    """Parse a ``TaxRule`` from a dict."""
    return TaxRule(
        id=str(data["id"]),
        name=data.get("name", ""),
        description=data.get("description", ""),
        condition=data.get("condition", ""),
        action=data.get("action", ""),
        priority=int(data.get("priority", 0)),
        is_deterministic=bool(data.get("is_deterministic", True)),
        rate=_optional_decimal(data.get("rate")),
    )


def parse_filing_schema(data: Mapping[str, Any], jurisdiction_code: str) -> FilingSchema:
    """Parse a ``FilingSchema``; jurisdiction defaults to the owning pack's."""
    boxes = tuple(
        FilingBox(
            id=str(b["id"]),
            label=b.get("label", ""),
            calculation=b.get("calculation"),
            description=b.get("description"),
            source=b.get("source"),
        )
        for b in data.get("boxes", [])
    )
    due = data.get("due_days_after_period")
    return FilingSchema(
        form=data["form"],
        jurisdiction_code=data.get("jurisdiction_code", jurisdiction_code),
        boxes=boxes,
        description=data.get("description"),
        frequency=data.get("frequency", "annual"),
        method=data.get("method", "efile"),
        attachments=tuple(data.get("attachments", ())),
        due_days_after_period=int(due) if due is not None else None,
    )


def parse_nexus_threshold(data: Mapping[str, Any]) -> NexusThreshold:
    """Parse a ``NexusThreshold`` from a dict."""
    transactions = data.get("transactions")
    return NexusThreshold(
        type=data["type"],
        amount=_optional_decimal(data.get("amount")),
        transactions=int(transactions) if transactions is not None else None,
        currency=data.get("currency"),
        period=data.get("period"),
        description=data.get("description"),
    )


def parse_ladder(items: list[Mapping[str, Any]]) -> tuple[Bracket, ...]:
    """Parse a bracket ladder, ordered by ascending ``min``."""
    brackets = [
        Bracket(
            min=to_decimal(item.get("min"), ZERO),
            max=_optional_decimal(item.get("max")),
            rate=to_decimal(item["rate"]),
        )
        for item in items
    ]
    return tuple(sorted(brackets, key=lambda b: b.min))


def _parse_income_shape(block: Mapping[str, Any]) -> IncomeShape:
    deductions = _decimal_map(block.get("standard_deductions"))
    brackets = block.get("brackets")

    if brackets is None:
        if block.get("flat_rate") is None:
            raise ValueError("income_tax requires either brackets or flat_rate")
        return FlatIncomeShape(
            flat_rate=to_decimal(block["flat_rate"]),
            standard_deductions=deductions,
        )

    if isinstance(brackets, list):
        return ProgressiveIncomeShape(
            shared_ladder=parse_ladder(brackets),
            standard_deductions=deductions,
        )

    if isinstance(brackets, Mapping):
        return ProgressiveIncomeShape(
            ladders={str(status): parse_ladder(ladder) for status, ladder in brackets.items()},
            standard_deductions=deductions,
        )

    raise ValueError(f"income_tax.brackets must be a list or mapping, got {type(brackets).__name__}")


def _parse_sales_shape(block: Mapping[str, Any]) -> SalesTaxShape:
    return SalesTaxShape(
        base_rate=to_decimal(block.get("base_rate"), ZERO),
        local_rates=_decimal_map(block.get("local_rates")),
        reduced_categories=_lowered(block.get("reduced_categories")),
        reduced_rate=_optional_decimal(block.get("reduced_rate")),
    )


def _parse_vat_shape(block: Mapping[str, Any]) -> VatShape:
    reduced = block.get("reduced_categories")
    return VatShape(
        standard_rate=to_decimal(block.get("standard_rate"), ZERO),
        reduced_rate=_optional_decimal(block.get("reduced_rate")),
        reduced_categories=_lowered(reduced) if reduced is not None else ("reduced",),
        zero_rate_categories=_lowered(block.get("zero_rate_categories")),
    )


def _parse_payroll_shape(block: Mapping[str, Any]) -> PayrollShape:
    return PayrollShape(
        social_security_rate=to_decimal(block.get("social_security_rate"), ZERO),
        medicare_rate=to_decimal(block.get("medicare_rate"), ZERO),
        additional_medicare_rate=to_decimal(block.get("additional_medicare_rate"), ZERO),
        wage_base=_optional_decimal(block.get("wage_base")),
        additional_medicare_threshold=to_decimal(
            block.get("additional_medicare_threshold"), Decimal("200000")
        ),
    )


def parse_metadata(data: Mapping[str, Any] | None) -> RulepackMetadata:
    """
    Parse rulepack metadata into its tagged tax shapes.

    ``income_tax`` with ``brackets`` is progressive, with ``flat_rate`` is
    flat.  A ``gst``/``hst`` block with a ``rate`` stands in for ``vat``
    when no ``vat`` block exists; the original block stays in ``extra``.
    """
    remaining = dict(data or {})

    income_tax = (
        _parse_income_shape(remaining.pop(INCOME_TAX_KEY))
        if INCOME_TAX_KEY in remaining else None
    )
    sales_tax = (
        _parse_sales_shape(remaining.pop(SALES_TAX_KEY))
        if SALES_TAX_KEY in remaining else None
    )
    payroll = (
        _parse_payroll_shape(remaining.pop(PAYROLL_KEY))
        if PAYROLL_KEY in remaining else None
    )

    vat: VatShape | None = None
    if VAT_KEY in remaining:
        vat = _parse_vat_shape(remaining.pop(VAT_KEY))
    else:
        for key in SINGLE_RATE_VAT_KEYS:
            block = remaining.get(key)
            if isinstance(block, Mapping) and block.get("rate") is not None:
                vat = VatShape(standard_rate=to_decimal(block["rate"]), source_key=key)
                break

    return RulepackMetadata(
        income_tax=income_tax,
        sales_tax=sales_tax,
        vat=vat,
        payroll=payroll,
        extra=remaining,
    )


def parse_expectation(data: Mapping[str, Any]) -> RegressionExpectation:
    """Parse the ``expected`` block of a regression case."""
    boxes = data.get("filing_boxes")
    return RegressionExpectation(
        tax_amount=to_decimal(data["tax_amount"]),
        tax_rate=_optional_decimal(data.get("tax_rate")),
        filing_boxes=_decimal_map(boxes) if boxes is not None else None,
        notes=data.get("notes"),
    )


def parse_regression_case(data: Mapping[str, Any]) -> RegressionCase:
    """Parse a ``RegressionCase`` from a dict."""
    case_id = str(data["id"])
    return RegressionCase(
        id=case_id,
        description=data.get("description") or case_id,
        transaction=parse_transaction(data["transaction"]),
        expected=parse_expectation(data["expected"]),
    )


def _parse_rulepack(data: Mapping[str, Any], source: RulepackSource) -> Rulepack:
    jurisdiction_code = str(data["jurisdiction_code"]).upper()
    year = int(data["year"])
    effective_from = data.get("effective_from")
    effective_to = data.get("effective_to")

    return Rulepack(
        country=data["country"],
        jurisdiction_code=jurisdiction_code,
        year=year,
        version=str(data["version"]),
        region=data.get("region", ""),
        rules=tuple(parse_rule(r) for r in data.get("rules", [])),
        filing_types=tuple(data.get("filing_types", ())),
        status=RulepackStatus(data.get("status", RulepackStatus.PENDING.value)),
        metadata=parse_metadata(data.get("metadata")),
        filing_schemas=tuple(
            parse_filing_schema(s, jurisdiction_code) for s in data.get("filing_schemas", [])
        ),
        nexus_thresholds=tuple(
            parse_nexus_threshold(t) for t in data.get("nexus_thresholds", [])
        ),
        regression_cases=tuple(
            parse_regression_case(c) for c in data.get("regression_cases", [])
        ),
        effective_from=parse_date(effective_from) if effective_from else date(year, 1, 1),
        effective_to=parse_date(effective_to) if effective_to else None,
        checksum=data.get("checksum"),
        source=source,
    )


def parse_rulepack(
    data: Mapping[str, Any],
    source: str = "<dict>",
    origin: RulepackSource = RulepackSource.DEFINITION,
) -> Rulepack:
    """
    Parse a ``Rulepack`` from a dict.

    Preconditions:
        - ``data`` contains ``country``, ``jurisdiction_code``, ``year`` and
          ``version``.  ``version`` should be quoted in YAML ("2024.1").
    Raises:
        RulepackSchemaError: if required keys are missing or values invalid.
    """
    try:
        return _parse_rulepack(data, origin)
    except RulepackSchemaError as e:
        raise RulepackSchemaError(source, e.reason) from e
    except KeyError as e:
        raise RulepackSchemaError(source, f"missing field {e}") from e
    except (TypeError, ValueError) as e:
        raise RulepackSchemaError(source, str(e)) from e


def load_rulepack_file(path: Path, origin: RulepackSource = RulepackSource.DEFINITION) -> Rulepack:
    """Load and parse a single rulepack YAML file."""
    return parse_rulepack(load_yaml_file(path), source=str(path), origin=origin)


# ---------------------------------------------------------------------------
# Dumping (JSON-safe dicts)
# ---------------------------------------------------------------------------


def dump_decimal(value: Decimal) -> str:
    """Plain decimal string without exponent or trailing zeros."""
    text = format(value.normalize(), "f")
    return "0" if text in ("-0", "") else text


def _optional_dump(value: Decimal | None) -> str | None:
    return None if value is None else dump_decimal(value)


def _json_safe(value: Any) -> Any:
    """Transaction metadata keeps numbers numeric so context.<key> boxes still resolve."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, Mapping):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if isinstance(value, date):
        return value.isoformat()
    return value


def dump_transaction(txn: TransactionInput) -> dict[str, Any]:
    """Dump a ``TransactionInput`` to a JSON-safe dict."""
    out: dict[str, Any] = {"amount": dump_decimal(txn.amount), "type": txn.type.value}
    for name in TRANSACTION_TEXT_FIELDS:
        value = getattr(txn, name)
        if value is not None:
            out[name] = value
    if txn.deductions:
        out["deductions"] = dump_decimal(txn.deductions)
    if txn.credits:
        out["credits"] = dump_decimal(txn.credits)
    if txn.metadata:
        out["metadata"] = _json_safe(txn.metadata)
    return out


def dump_rule(rule: TaxRule) -> dict[str, Any]:
    """Dump a ``TaxRule`` to a JSON-safe dict."""
    out: dict[str, Any] = {
        "id": rule.id,
        "name": rule.name,
        "description": rule.description,
        "condition": rule.condition,
        "action": rule.action,
        "priority": rule.priority,
        "is_deterministic": rule.is_deterministic,
    }
    if rule.rate is not None:
        out["rate"] = dump_decimal(rule.rate)
    return out


def dump_rules(rules: tuple[TaxRule, ...]) -> list[dict[str, Any]]:
    return [dump_rule(r) for r in rules]


def _dump_ladder(ladder: tuple[Bracket, ...]) -> list[dict[str, Any]]:
    return [
        {"min": dump_decimal(b.min), "max": _optional_dump(b.max), "rate": dump_decimal(b.rate)}
        for b in ladder
    ]


def _dump_decimal_map(values: Mapping[str, Decimal]) -> dict[str, str]:
    return {k: dump_decimal(v) for k, v in values.items()}


def dump_metadata(metadata: RulepackMetadata) -> dict[str, Any]:
    """Dump ``RulepackMetadata`` back to its block-keyed dict form."""
    out: dict[str, Any] = dict(metadata.extra)

    match metadata.income_tax:
        case ProgressiveIncomeShape() as shape:
            brackets: Any = (
                _dump_ladder(shape.shared_ladder)
                if shape.shared_ladder is not None
                else {status: _dump_ladder(ladder) for status, ladder in shape.ladders.items()}
            )
            out[INCOME_TAX_KEY] = {
                "brackets": brackets,
                "standard_deductions": _dump_decimal_map(shape.standard_deductions),
            }
        case FlatIncomeShape() as shape:
            out[INCOME_TAX_KEY] = {
                "flat_rate": dump_decimal(shape.flat_rate),
                "standard_deductions": _dump_decimal_map(shape.standard_deductions),
            }
        case None:
            pass

    if metadata.sales_tax is not None:
        sales = metadata.sales_tax
        out[SALES_TAX_KEY] = {
            "base_rate": dump_decimal(sales.base_rate),
            "local_rates": _dump_decimal_map(sales.local_rates),
            "reduced_categories": list(sales.reduced_categories),
            "reduced_rate": _optional_dump(sales.reduced_rate),
        }

    if metadata.vat is not None and metadata.vat.source_key == VAT_KEY:
        vat = metadata.vat
        out[VAT_KEY] = {
            "standard_rate": dump_decimal(vat.standard_rate),
            "reduced_rate": _optional_dump(vat.reduced_rate),
            "reduced_categories": list(vat.reduced_categories),
            "zero_rate_categories": list(vat.zero_rate_categories),
        }

    if metadata.payroll is not None:
        payroll = metadata.payroll
        out[PAYROLL_KEY] = {
            "social_security_rate": dump_decimal(payroll.social_security_rate),
            "medicare_rate": dump_decimal(payroll.medicare_rate),
            "additional_medicare_rate": dump_decimal(payroll.additional_medicare_rate),
            "wage_base": _optional_dump(payroll.wage_base),
            "additional_medicare_threshold": dump_decimal(payroll.additional_medicare_threshold),
        }

    return out


def dump_filing_schema(schema: FilingSchema) -> dict[str, Any]:
    """Dump a ``FilingSchema`` to a JSON-safe dict."""
    return {
        "form": schema.form,
        "jurisdiction_code": schema.jurisdiction_code,
        "description": schema.description,
        "frequency": schema.frequency,
        "method": schema.method,
        "attachments": list(schema.attachments),
        "due_days_after_period": schema.due_days_after_period,
        "boxes": [
            {
                "id": b.id,
                "label": b.label,
                "calculation": b.calculation,
                "description": b.description,
                "source": b.source,
            }
            for b in schema.boxes
        ],
    }


def dump_nexus_threshold(threshold: NexusThreshold) -> dict[str, Any]:
    """Dump a ``NexusThreshold`` to a JSON-safe dict."""
    return {
        "type": threshold.type,
        "amount": _optional_dump(threshold.amount),
        "transactions": threshold.transactions,
        "currency": threshold.currency,
        "period": threshold.period,
        "description": threshold.description,
    }


def dump_expectation(expected: RegressionExpectation) -> dict[str, Any]:
    """Dump a ``RegressionExpectation`` to a JSON-safe dict."""
    out: dict[str, Any] = {"tax_amount": dump_decimal(expected.tax_amount)}
    if expected.tax_rate is not None:
        out["tax_rate"] = dump_decimal(expected.tax_rate)
    if expected.filing_boxes is not None:
        out["filing_boxes"] = _dump_decimal_map(expected.filing_boxes)
    if expected.notes:
        out["notes"] = expected.notes
    return out


def dump_regression_case(case: RegressionCase) -> dict[str, Any]:
    """Dump a ``RegressionCase`` to a JSON-safe dict."""
    return {
        "id": case.id,
        "description": case.description,
        "transaction": dump_transaction(case.transaction),
        "expected": dump_expectation(case.expected),
    }


def dump_rulepack(rulepack: Rulepack) -> dict[str, Any]:
    """Dump a ``Rulepack`` definition (content fields only) to a dict."""
    return {
        "country": rulepack.country,
        "jurisdiction_code": rulepack.jurisdiction_code,
        "region": rulepack.region,
        "year": rulepack.year,
        "version": rulepack.version,
        "status": rulepack.status.value,
        "rules": dump_rules(rulepack.rules),
        "filing_types": list(rulepack.filing_types),
        "metadata": dump_metadata(rulepack.metadata),
        "filing_schemas": [dump_filing_schema(s) for s in rulepack.filing_schemas],
        "nexus_thresholds": [dump_nexus_threshold(t) for t in rulepack.nexus_thresholds],
        "regression_cases": [dump_regression_case(c) for c in rulepack.regression_cases],
        "effective_from": rulepack.effective_from.isoformat() if rulepack.effective_from else None,
        "effective_to": rulepack.effective_to.isoformat() if rulepack.effective_to else None,
    }
