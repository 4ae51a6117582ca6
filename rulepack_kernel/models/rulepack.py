"""
Module: rulepack_kernel.models.rulepack
Responsibility: ORM persistence for versioned tax rulepacks and the
    per-case regression audit rows written alongside each install.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - (jurisdiction_code, year, version) is unique: the upsert key of the
      installation pipeline.
    - (rulepack_id, case_id) is unique: the regression audit upsert key.
    - Regression audit rows reference an existing rulepack row (FK); the
      pipeline writes both inside one unit of work.

Failure modes:
    - IntegrityError on a duplicate key written outside the pipeline.
"""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rulepack_kernel.db.base import TrackedBase, UUIDString


class TaxRulepackModel(TrackedBase):
    """
    Persisted rulepack version.

    Contract:
        Rows are written only by the installation pipeline.  ``rules``,
        ``metadata_json``, ``filing_schemas``, ``nexus_thresholds`` and
        ``regression_cases`` hold the JSON form of the corresponding
        ``rulepack_config.schema`` objects.

    Guarantees:
        - ``checksum`` is the SHA-256 of rules + metadata at install time.
        - ``status`` is one of pending / active / deprecated.
    """

    __tablename__ = "tax_rulepacks"

    __table_args__ = (
        UniqueConstraint(
            "jurisdiction_code", "year", "version",
            name="uq_rulepack_jurisdiction_year_version",
        ),
        Index("idx_rulepack_lookup", "jurisdiction_code", "year", "status"),
    )

    country: Mapped[str] = mapped_column(String(2), nullable=False)
    jurisdiction_code: Mapped[str] = mapped_column(String(16), nullable=False)
    region: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    year: Mapped[int] = mapped_column(nullable=False)
    version: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    rules: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    filing_types: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    # "metadata" is reserved on declarative classes
    metadata_json: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    filing_schemas: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    nexus_thresholds: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    regression_cases: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )

    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    regression_summary: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    activated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    deprecated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    regressions: Mapped[list["RulepackRegressionModel"]] = relationship(
        back_populates="rulepack",
        cascade="all, delete-orphan",
    )

    @property
    def key(self) -> str:
        return f"{self.jurisdiction_code}/{self.year}/{self.version}"

    def __repr__(self) -> str:
        return f"<TaxRulepack {self.key} [{self.status}]>"


class RulepackRegressionModel(TrackedBase):
    """
    Last-run outcome of one regression case for one rulepack.

    Contract:
        Upserted by the installation pipeline in the same transaction as
        its parent rulepack row.  Audit visibility only; never read by the
        evaluator.
    """

    __tablename__ = "rulepack_regressions"

    __table_args__ = (
        UniqueConstraint("rulepack_id", "case_id", name="uq_regression_rulepack_case"),
    )

    rulepack_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tax_rulepacks.id", ondelete="CASCADE"),
        nullable=False,
    )
    case_id: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    input: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    expected: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    last_run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_error: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    rulepack: Mapped[TaxRulepackModel] = relationship(back_populates="regressions")

    def __repr__(self) -> str:
        return f"<RulepackRegression {self.case_id} [{self.status}]>"
