"""
rulepack_services.installation -- Regression-gated rulepack installation.

Responsibility:
    The only write path for rulepacks.  Replays the pack's embedded
    regression cases, blocks the install when any fail (unless the policy
    allows it), then upserts the pack and one audit row per case.

Architecture position:
    Services -- imperative shell.  Composes the pure regression runner
    (rulepack_engines.regression), the checksum (rulepack_config.integrity)
    and the lifecycle state machine (rulepack_config.lifecycle) over a
    UnitOfWorkFactory.

Invariants enforced:
    - A blocked install writes nothing.
    - The rulepack upsert and every audit row upsert commit together or
      not at all.
    - ``activated_at`` moves only when the installed status is active;
      ``deprecated_at`` is stamped only when a pack becomes deprecated.
    - Deprecated rows are immutable.  Every other status change follows
      ALLOWED_TRANSITIONS; re-installing with the same status is allowed.

Failure modes:
    - RegressionGateError: cases failed under REQUIRE_CLEAN_REGRESSION.
    - RulepackIntegrityError: the definition declares a checksum that does
      not match its content.
    - RulepackImmutableError / InvalidStatusTransitionError: lifecycle.
    - SQLAlchemyError: propagates unchanged after rollback.

Audit relevance:
    - Each install leaves a regression summary on the pack row and a
      per-case row (status, last_run_at, last_error) an operator can read
      through RulepackStore.latest_regressions.

Usage:
    pipeline = InstallationPipeline(SqlAlchemyUnitOfWorkFactory(session_factory))
    report = pipeline.install(pack)
"""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from rulepack_config.integrity import verify_checksum
from rulepack_config.lifecycle import RulepackStatus, validate_reinstall, validate_transition
from rulepack_config.loader import dump_expectation, dump_transaction
from rulepack_config.schema import RegressionSummary, Rulepack
from rulepack_engines.regression import (
    RegressionReport,
    RegressionResult,
    failed_case_ids,
    run_regression,
)
from rulepack_kernel.domain.clock import Clock, SystemClock
from rulepack_kernel.exceptions import (
    InvalidStatusTransitionError,
    RegressionGateError,
    RulepackImmutableError,
    RulepackNotFoundError,
)
from rulepack_kernel.logging_config import LogContext, get_logger
from rulepack_kernel.models.rulepack import RulepackRegressionModel, TaxRulepackModel
from rulepack_services.mapping import rulepack_from_row, write_content
from rulepack_services.store import normalize_jurisdiction
from rulepack_services.unit_of_work import UnitOfWork, UnitOfWorkFactory

logger = get_logger("services.installation")


class InstallationPolicy(str, Enum):
    """How the installer treats failing regression cases."""

    REQUIRE_CLEAN_REGRESSION = "require_clean_regression"
    ALLOW_WITH_FAILURES = "allow_with_failures"


@dataclass(frozen=True)
class InstallationReport:
    """Outcome of a successful install."""

    id: UUID
    key: str
    checksum: str
    status: RulepackStatus
    policy: InstallationPolicy
    regression_summary: RegressionSummary
    results: tuple[RegressionResult, ...] = ()
    requires_manual_signoff: bool = False
    superseded_versions: tuple[str, ...] = ()

    @property
    def failed_case_ids(self) -> tuple[str, ...]:
        return failed_case_ids(self.results)


class InstallationPipeline:
    """
    Installs rulepacks behind the regression gate.

    Contract:
        ``install`` either returns an InstallationReport for a committed
        write or raises, in which case nothing was written.

    Guarantees:
        - Regression runs before any write, against the exact definition
          being installed.
        - The report's ``results`` are the results persisted as audit rows.
        - Packs without regression cases install but are flagged
          ``requires_manual_signoff``.
        - Each install and supersede runs in its own unit of work, so
          installs of different versions may proceed in parallel.

    Non-goals:
        - Does NOT serialize concurrent installs of the same key; two
          first installs race on the (jurisdiction, year, version) unique
          key and the loser raises.
        - Does NOT roll back superseded packs; deprecation is terminal.
    """

    def __init__(self, uow_factory: UnitOfWorkFactory, clock: Clock | None = None):
        self._uow_factory = uow_factory
        self._clock = clock or SystemClock()

    def install(
        self,
        rulepack: Rulepack,
        *,
        policy: InstallationPolicy = InstallationPolicy.REQUIRE_CLEAN_REGRESSION,
        target_status: RulepackStatus | None = None,
        supersede_previous: bool = False,
        skip_case_ids: Collection[str] = (),
    ) -> InstallationReport:
        """
        Regression-gate and persist ``rulepack``.

        Args:
            policy: ALLOW_WITH_FAILURES installs even when cases fail.
            target_status: Status to persist; defaults to active.
            supersede_previous: When installing as active, deprecate every
                other active version for the same jurisdiction and year.
            skip_case_ids: Cases excluded from this run.

        Raises:
            RegressionGateError: Cases failed and the policy is strict.
            RulepackImmutableError: The persisted row is deprecated.
            InvalidStatusTransitionError: Lifecycle forbids the change.
        """
        policy = InstallationPolicy(policy)
        target = RulepackStatus(target_status) if target_status else RulepackStatus.ACTIVE

        with LogContext.bind(
            jurisdiction_code=rulepack.jurisdiction_code,
            rulepack_version=rulepack.version,
        ):
            report = run_regression(rulepack, self._clock, skip_case_ids)

            if report.failed_case_ids and policy == InstallationPolicy.REQUIRE_CLEAN_REGRESSION:
                logger.warning(
                    "rulepack_install_blocked",
                    extra={
                        "rulepack_key": rulepack.key,
                        "failed_case_ids": list(report.failed_case_ids),
                    },
                )
                raise RegressionGateError(
                    rulepack.jurisdiction_code,
                    rulepack.version,
                    report.failed_case_ids,
                    report.errors,
                )

            checksum = verify_checksum(rulepack)

            requires_manual_signoff = not rulepack.has_regression_coverage
            if requires_manual_signoff:
                logger.warning(
                    "rulepack_zero_coverage",
                    extra={"rulepack_key": rulepack.key},
                )

            with self._uow_factory.create() as uow:
                row = self._upsert_rulepack(uow, rulepack, target, checksum, report.summary)
                self._upsert_regressions(uow, row.id, rulepack, report)
                superseded: tuple[str, ...] = ()
                if supersede_previous and target == RulepackStatus.ACTIVE:
                    superseded = self._deprecate_others(uow, row)
                rulepack_id = row.id

            logger.info(
                "rulepack_installed",
                extra={
                    "rulepack_key": rulepack.key,
                    "rulepack_id": str(rulepack_id),
                    "status": target.value,
                    "policy": policy.value,
                    "checksum": checksum,
                    "regression_total": report.summary.total,
                    "regression_failed": report.summary.failed,
                    "superseded_versions": list(superseded),
                },
            )

        return InstallationReport(
            id=rulepack_id,
            key=rulepack.key,
            checksum=checksum,
            status=target,
            policy=policy,
            regression_summary=report.summary,
            results=report.results,
            requires_manual_signoff=requires_manual_signoff,
            superseded_versions=superseded,
        )

    def supersede(self, jurisdiction_code: str, year: int, version: str) -> Rulepack:
        """
        Mark an active pack deprecated.

        Raises:
            RulepackNotFoundError: No persisted pack has this key.
            RulepackImmutableError: The pack is already deprecated.
            InvalidStatusTransitionError: The pack is pending.
        """
        code = normalize_jurisdiction(jurisdiction_code)
        with LogContext.bind(jurisdiction_code=code, rulepack_version=version):
            with self._uow_factory.create() as uow:
                row = uow.rulepacks.get_by_key(code, year, version)
                if row is None:
                    raise RulepackNotFoundError(code, year)
                self._deprecate(row)
                superseded = rulepack_from_row(row)

            logger.info("rulepack_superseded", extra={"rulepack_key": superseded.key})
        return superseded

    # -- internals ---------------------------------------------------------

    def _upsert_rulepack(
        self,
        uow: UnitOfWork,
        rulepack: Rulepack,
        target: RulepackStatus,
        checksum: str,
        summary: RegressionSummary,
    ) -> TaxRulepackModel:
        row = uow.rulepacks.get_by_key(rulepack.jurisdiction_code, rulepack.year, rulepack.version)
        current = RulepackStatus(row.status) if row is not None else RulepackStatus.PENDING

        if current == RulepackStatus.DEPRECATED:
            raise RulepackImmutableError(rulepack.key)
        if not validate_reinstall(current, target):
            raise InvalidStatusTransitionError(rulepack.key, current.value, target.value)

        is_new = row is None
        if is_new:
            row = TaxRulepackModel()

        write_content(
            row,
            rulepack,
            status=target.value,
            checksum=checksum,
            regression_summary=summary,
        )

        now = self._clock.now()
        if target == RulepackStatus.ACTIVE:
            row.activated_at = now
        elif target == RulepackStatus.DEPRECATED:
            row.deprecated_at = now

        if is_new:
            uow.rulepacks.add(row)
        return row

    def _upsert_regressions(
        self,
        uow: UnitOfWork,
        rulepack_id: UUID,
        rulepack: Rulepack,
        report: RegressionReport,
    ) -> None:
        cases = {case.id: case for case in rulepack.regression_cases}
        run_at = report.summary.last_run_at or self._clock.now()

        for result in report.results:
            case = cases[result.case_id]
            audit = uow.rulepacks.get_regression(rulepack_id, result.case_id)
            is_new = audit is None
            if is_new:
                audit = RulepackRegressionModel(rulepack_id=rulepack_id, case_id=result.case_id)
            audit.description = case.description
            audit.input = dump_transaction(case.transaction)
            audit.expected = dump_expectation(case.expected)
            audit.status = result.status.value
            audit.last_run_at = run_at
            audit.last_error = result.error
            if is_new:
                uow.rulepacks.add_regression(audit)

    def _deprecate_others(self, uow: UnitOfWork, installed: TaxRulepackModel) -> tuple[str, ...]:
        superseded: list[str] = []
        for other in uow.rulepacks.with_status(
            installed.jurisdiction_code, installed.year, RulepackStatus.ACTIVE.value
        ):
            if other.version == installed.version:
                continue
            self._deprecate(other)
            superseded.append(other.version)
        return tuple(superseded)

    def _deprecate(self, row: TaxRulepackModel) -> None:
        current = RulepackStatus(row.status)
        if current == RulepackStatus.DEPRECATED:
            raise RulepackImmutableError(row.key)
        if not validate_transition(current, RulepackStatus.DEPRECATED):
            raise InvalidStatusTransitionError(
                row.key, current.value, RulepackStatus.DEPRECATED.value
            )
        row.status = RulepackStatus.DEPRECATED.value
        row.deprecated_at = self._clock.now()
