"""
Row <-> Rulepack mapping.

The persisted JSON columns hold exactly what ``rulepack_config.loader``
dumps, so a row is mapped back by feeding its columns through the same
parser the YAML files use.  A pack read back this way hashes to the
checksum it was installed with.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from typing import Any

from rulepack_config.loader import (
    dump_filing_schema,
    dump_nexus_threshold,
    dump_regression_case,
    dump_rules,
    dump_metadata,
    parse_rulepack,
)
from rulepack_config.schema import RegressionSummary, Rulepack, RulepackSource
from rulepack_kernel.models.rulepack import TaxRulepackModel


def rulepack_from_row(row: TaxRulepackModel) -> Rulepack:
    """Map a persisted row to an immutable Rulepack."""
    data: dict[str, Any] = {
        "country": row.country,
        "jurisdiction_code": row.jurisdiction_code,
        "region": row.region,
        "year": row.year,
        "version": row.version,
        "status": row.status,
        "rules": row.rules or [],
        "filing_types": row.filing_types or [],
        "metadata": row.metadata_json or {},
        "filing_schemas": row.filing_schemas or [],
        "nexus_thresholds": row.nexus_thresholds or [],
        "regression_cases": row.regression_cases or [],
        "effective_from": row.effective_from,
        "effective_to": row.effective_to,
        "checksum": row.checksum,
    }
    pack = parse_rulepack(data, source=f"tax_rulepacks/{row.id}", origin=RulepackSource.PERSISTED)
    return replace(
        pack,
        id=row.id,
        regression_summary=(
            RegressionSummary.from_dict(row.regression_summary)
            if row.regression_summary else None
        ),
        activated_at=row.activated_at,
        deprecated_at=row.deprecated_at,
    )


def write_content(
    row: TaxRulepackModel,
    rulepack: Rulepack,
    *,
    status: str,
    checksum: str,
    regression_summary: RegressionSummary,
) -> None:
    """Overwrite a row's content columns from ``rulepack``.

    Lifecycle timestamps are left to the caller.
    """
    row.country = rulepack.country
    row.jurisdiction_code = rulepack.jurisdiction_code
    row.region = rulepack.region
    row.year = rulepack.year
    row.version = rulepack.version
    row.status = status
    row.rules = dump_rules(rulepack.rules)
    row.filing_types = list(rulepack.filing_types)
    row.metadata_json = dump_metadata(rulepack.metadata)
    row.filing_schemas = [dump_filing_schema(s) for s in rulepack.filing_schemas]
    row.nexus_thresholds = [dump_nexus_threshold(t) for t in rulepack.nexus_thresholds]
    row.regression_cases = [dump_regression_case(c) for c in rulepack.regression_cases]
    row.checksum = checksum
    row.regression_summary = regression_summary.to_dict()
    row.effective_from = rulepack.effective_from or date(rulepack.year, 1, 1)
    row.effective_to = rulepack.effective_to
