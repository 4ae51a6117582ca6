"""
Rulepack schema.

Defines the versioned, jurisdiction-scoped rulepack definition and the
transaction input it is evaluated against.  YAML files and persisted rows
are parsed into these types by the loader; the evaluator, projector,
regression runner and installation pipeline consume nothing else.

Rulepack metadata is a tagged union over tax shapes.  Each shape carries
its own typed parameters, so the evaluator pattern-matches on the shape
instead of probing dictionaries for keys.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Union
from uuid import UUID

from rulepack_config.lifecycle import RulepackStatus
from rulepack_kernel.domain.values import ZERO, to_decimal

# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TransactionType(str, Enum):
    """Kind of transaction being taxed."""

    INCOME = "income"
    CORPORATE_INCOME = "corporate_income"
    SALE = "sale"
    PURCHASE = "purchase"
    PAYROLL = "payroll"


INCOME_TRANSACTION_TYPES = frozenset(
    {TransactionType.INCOME, TransactionType.CORPORATE_INCOME}
)
SALE_TRANSACTION_TYPES = frozenset({TransactionType.SALE, TransactionType.PURCHASE})

DEFAULT_FILING_STATUS = "single"


@dataclass(frozen=True)
class TransactionInput:
    """
    A transaction to evaluate.

    Numeric fields accept int/float/str/Decimal and are normalised to
    Decimal.  ``metadata`` carries sub-jurisdiction hints (``locality`` /
    ``local_code``) and numeric values for ``context.<key>`` filing boxes.
    """

    amount: Decimal
    type: TransactionType
    filing_status: str | None = None
    category: str | None = None
    deductions: Decimal = ZERO
    credits: Decimal = ZERO
    state_code: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount))
        object.__setattr__(self, "type", TransactionType(self.type))
        object.__setattr__(self, "deductions", to_decimal(self.deductions, ZERO))
        object.__setattr__(self, "credits", to_decimal(self.credits, ZERO))
        object.__setattr__(self, "metadata", dict(self.metadata or {}))

    @property
    def effective_filing_status(self) -> str:
        return self.filing_status or DEFAULT_FILING_STATUS

    @property
    def locality(self) -> str | None:
        """Sub-jurisdiction code used for local rate overrides."""
        value = (
            self.metadata.get("locality")
            or self.metadata.get("local_code")
            or self.state_code
        )
        return str(value) if value else None


# ---------------------------------------------------------------------------
# Rules, filing schemas, nexus thresholds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaxRule:
    """
    One declarative rule of a rulepack.

    Rules are descriptive; only ``rate`` is consumed (by the flat-rate
    fallback when no metadata shape matches the transaction).
    """

    id: str
    name: str = ""
    description: str = ""
    condition: str = ""
    action: str = ""
    priority: int = 0
    is_deterministic: bool = True
    rate: Decimal | None = None


@dataclass(frozen=True)
class FilingBox:
    """A named field on an official filing form."""

    id: str
    label: str = ""
    calculation: str | None = None  # amount | taxAmount | taxableIncome | context.<key>
    description: str | None = None
    source: str | None = None


@dataclass(frozen=True)
class FilingSchema:
    """An official filing form and its boxes."""

    form: str
    jurisdiction_code: str
    boxes: tuple[FilingBox, ...] = ()
    description: str | None = None
    frequency: str = "annual"  # monthly | quarterly | annual
    method: str = "efile"  # api | efile | paper
    attachments: tuple[str, ...] = ()
    due_days_after_period: int | None = None


@dataclass(frozen=True)
class NexusThreshold:
    """Registration trigger carried by the rulepack; never evaluated."""

    type: str  # sales | transactions | revenue | customers
    amount: Decimal | None = None
    transactions: int | None = None
    currency: str | None = None
    period: str | None = None  # monthly | quarterly | annual | rolling12
    description: str | None = None


# ---------------------------------------------------------------------------
# Tax shapes (tagged union)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Bracket:
    """One span of a bracket ladder; ``max=None`` is unbounded."""

    min: Decimal
    max: Decimal | None
    rate: Decimal


@dataclass(frozen=True)
class ProgressiveIncomeShape:
    """
    Progressive income tax.

    Either ``shared_ladder`` (status-independent) or ``ladders`` keyed by
    filing status is populated.
    """

    ladders: Mapping[str, tuple[Bracket, ...]] = field(default_factory=dict)
    shared_ladder: tuple[Bracket, ...] | None = None
    standard_deductions: Mapping[str, Decimal] = field(default_factory=dict)

    def ladder_for(self, filing_status: str) -> tuple[Bracket, ...] | None:
        """Ladder for the filing status, falling back to ``single``."""
        if self.shared_ladder is not None:
            return self.shared_ladder
        if filing_status in self.ladders:
            return self.ladders[filing_status]
        return self.ladders.get(DEFAULT_FILING_STATUS)


@dataclass(frozen=True)
class FlatIncomeShape:
    """Flat-rate income tax."""

    flat_rate: Decimal
    standard_deductions: Mapping[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class SalesTaxShape:
    """Sales/use tax with locality add-ons and reduced categories."""

    base_rate: Decimal = ZERO
    local_rates: Mapping[str, Decimal] = field(default_factory=dict)
    reduced_categories: tuple[str, ...] = ()
    reduced_rate: Decimal | None = None


@dataclass(frozen=True)
class VatShape:
    """
    Value-added tax (also GST/HST packs that only declare a single rate).

    ``source_key`` records which metadata block the shape was read from;
    shapes derived from ``gst``/``hst`` blocks are not written back as
    ``vat``.
    """

    standard_rate: Decimal = ZERO
    reduced_rate: Decimal | None = None
    reduced_categories: tuple[str, ...] = ("reduced",)
    zero_rate_categories: tuple[str, ...] = ()
    source_key: str = "vat"


@dataclass(frozen=True)
class PayrollShape:
    """Employee payroll contributions."""

    social_security_rate: Decimal = ZERO
    medicare_rate: Decimal = ZERO
    additional_medicare_rate: Decimal = ZERO
    wage_base: Decimal | None = None
    additional_medicare_threshold: Decimal = Decimal("200000")


IncomeShape = Union[ProgressiveIncomeShape, FlatIncomeShape]


@dataclass(frozen=True)
class RulepackMetadata:
    """
    Tax-shape parameters of a rulepack.

    ``extra`` holds metadata blocks without a typed shape (carried verbatim
    so they survive persistence and participate in the checksum).
    """

    income_tax: IncomeShape | None = None
    sales_tax: SalesTaxShape | None = None
    vat: VatShape | None = None
    payroll: PayrollShape | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Regression fixtures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RegressionExpectation:
    """Expected output of a regression case."""

    tax_amount: Decimal
    tax_rate: Decimal | None = None
    filing_boxes: Mapping[str, Decimal] | None = None
    notes: str | None = None


@dataclass(frozen=True)
class RegressionCase:
    """A fixture input/expected-output pair embedded in a rulepack."""

    id: str
    description: str
    transaction: TransactionInput
    expected: RegressionExpectation


@dataclass(frozen=True)
class RegressionSummary:
    """Pass/fail counts of the last regression run."""

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    last_run_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RegressionSummary:
        last_run_at = data.get("last_run_at")
        return cls(
            total=int(data.get("total", 0)),
            passed=int(data.get("passed", 0)),
            failed=int(data.get("failed", 0)),
            skipped=int(data.get("skipped", 0)),
            last_run_at=datetime.fromisoformat(last_run_at) if last_run_at else None,
        )


# ---------------------------------------------------------------------------
# Rulepack
# ---------------------------------------------------------------------------


class RulepackSource(str, Enum):
    """Where a Rulepack instance came from."""

    DEFINITION = "definition"  # authored, not yet installed
    PERSISTED = "persisted"
    BUILTIN = "builtin"


@dataclass(frozen=True)
class Rulepack:
    """
    A versioned, jurisdiction-scoped bundle of tax rules.

    Identity is ``(jurisdiction_code, year, version)``.  Instances are
    immutable; callers evaluating at high frequency should hold on to a
    resolved Rulepack instead of re-resolving per transaction.
    """

    country: str
    jurisdiction_code: str
    year: int
    version: str
    region: str = ""
    rules: tuple[TaxRule, ...] = ()
    filing_types: tuple[str, ...] = ()
    status: RulepackStatus = RulepackStatus.PENDING
    metadata: RulepackMetadata = field(default_factory=RulepackMetadata)
    filing_schemas: tuple[FilingSchema, ...] = ()
    nexus_thresholds: tuple[NexusThreshold, ...] = ()
    regression_cases: tuple[RegressionCase, ...] = ()
    effective_from: date | None = None
    effective_to: date | None = None
    checksum: str | None = None
    regression_summary: RegressionSummary | None = None
    activated_at: datetime | None = None
    deprecated_at: datetime | None = None
    id: UUID | None = None
    source: RulepackSource = RulepackSource.DEFINITION

    def __post_init__(self) -> None:
        object.__setattr__(self, "jurisdiction_code", self.jurisdiction_code.upper())
        object.__setattr__(self, "status", RulepackStatus(self.status))

    @property
    def key(self) -> str:
        return f"{self.jurisdiction_code}/{self.year}/{self.version}"

    @property
    def has_regression_coverage(self) -> bool:
        return bool(self.regression_cases)
