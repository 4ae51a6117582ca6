"""
Module: rulepack_kernel.selectors.rulepack_selector
Responsibility: Read-only queries over ``tax_rulepacks`` and
    ``rulepack_regressions``.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Resolution never returns a row for a year after the requested one.
    - Ordering is deterministic: year descending, then version descending
      (lexicographic) as tiebreak.
"""

from collections.abc import Collection
from uuid import UUID

from sqlalchemy import select

from rulepack_kernel.models.rulepack import RulepackRegressionModel, TaxRulepackModel
from rulepack_kernel.selectors.base import BaseSelector


class RulepackSelector(BaseSelector[TaxRulepackModel]):
    """Queries used by the rulepack store and the installation pipeline."""

    def find_latest(
        self,
        jurisdiction_code: str,
        year: int,
        statuses: Collection[str] | None = None,
    ) -> TaxRulepackModel | None:
        """
        Highest (year, version) row for the jurisdiction with year <= ``year``.

        Args:
            statuses: Restrict to these statuses; None means any status.
        """
        stmt = select(TaxRulepackModel).where(
            TaxRulepackModel.jurisdiction_code == jurisdiction_code,
            TaxRulepackModel.year <= year,
        )
        if statuses is not None:
            stmt = stmt.where(TaxRulepackModel.status.in_(list(statuses)))
        stmt = stmt.order_by(
            TaxRulepackModel.year.desc(),
            TaxRulepackModel.version.desc(),
        ).limit(1)
        return self.session.execute(stmt).scalars().first()

    def get(self, rulepack_id: UUID) -> TaxRulepackModel | None:
        return self.session.get(TaxRulepackModel, rulepack_id)

    def get_by_key(
        self,
        jurisdiction_code: str,
        year: int,
        version: str,
    ) -> TaxRulepackModel | None:
        stmt = select(TaxRulepackModel).where(
            TaxRulepackModel.jurisdiction_code == jurisdiction_code,
            TaxRulepackModel.year == year,
            TaxRulepackModel.version == version,
        )
        return self.session.execute(stmt).scalars().first()

    def list_rulepacks(self, jurisdiction_code: str | None = None) -> list[TaxRulepackModel]:
        stmt = select(TaxRulepackModel)
        if jurisdiction_code is not None:
            stmt = stmt.where(TaxRulepackModel.jurisdiction_code == jurisdiction_code)
        stmt = stmt.order_by(
            TaxRulepackModel.jurisdiction_code,
            TaxRulepackModel.year.desc(),
            TaxRulepackModel.version.desc(),
        )
        return list(self.session.execute(stmt).scalars())

    def with_status(
        self,
        jurisdiction_code: str,
        year: int,
        status: str,
    ) -> list[TaxRulepackModel]:
        """Every row for exactly this jurisdiction and year in ``status``."""
        stmt = select(TaxRulepackModel).where(
            TaxRulepackModel.jurisdiction_code == jurisdiction_code,
            TaxRulepackModel.year == year,
            TaxRulepackModel.status == status,
        ).order_by(TaxRulepackModel.version)
        return list(self.session.execute(stmt).scalars())

    def get_regression(self, rulepack_id: UUID, case_id: str) -> RulepackRegressionModel | None:
        stmt = select(RulepackRegressionModel).where(
            RulepackRegressionModel.rulepack_id == rulepack_id,
            RulepackRegressionModel.case_id == case_id,
        )
        return self.session.execute(stmt).scalars().first()

    def regressions_for(self, rulepack_id: UUID) -> list[RulepackRegressionModel]:
        stmt = select(RulepackRegressionModel).where(
            RulepackRegressionModel.rulepack_id == rulepack_id,
        ).order_by(RulepackRegressionModel.case_id)
        return list(self.session.execute(stmt).scalars())
