"""
rulepack_services.store -- Rulepack resolution.

Responsibility:
    Finds the rulepack that governs a jurisdiction for a tax year: the
    newest persisted pack first, the bundled built-in registry second.

Architecture position:
    Services -- stateful read path over the kernel selector and the
    config-layer registry.  Returns immutable ``Rulepack`` objects; ORM
    rows never leave this module.

Invariants enforced:
    - Never resolves a pack whose year is after the requested year.
    - Among eligible packs the highest (year, version) wins; version ties
      break lexicographically.
    - A persisted pack always beats a built-in pack, whatever their years.
    - Default eligibility is ``active`` or ``pending``; deprecated packs
      are resolvable only when explicitly requested.

Failure modes:
    - RulepackNotFoundError when neither the store nor the registry covers
      the jurisdiction for any year up to the requested one.

Usage:
    store = RulepackStore(session_factory, default_builtin_registry())
    pack = store.resolve("us", 2024)
"""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from rulepack_config.lifecycle import RESOLVABLE_STATUSES, RulepackStatus
from rulepack_config.registry import BuiltInRegistry
from rulepack_config.schema import Rulepack
from rulepack_kernel.db.engine import transaction_scope
from rulepack_kernel.domain.clock import Clock, SystemClock
from rulepack_kernel.exceptions import RulepackNotFoundError
from rulepack_kernel.logging_config import get_logger
from rulepack_kernel.selectors.rulepack_selector import RulepackSelector
from rulepack_services.mapping import rulepack_from_row

logger = get_logger("services.store")


@dataclass(frozen=True)
class RegressionAudit:
    """Last recorded outcome of one regression case for an installed pack."""

    case_id: str
    description: str
    status: str
    last_run_at: datetime
    last_error: str | None = None


def normalize_jurisdiction(jurisdiction_code: str) -> str:
    return jurisdiction_code.strip().upper()


class RulepackStore:
    """
    Read access to installed and built-in rulepacks.

    Contract:
        ``resolve`` returns exactly one Rulepack or raises
        RulepackNotFoundError.  It never returns ``None`` and never
        fabricates a zero-rate pack.

    Guarantees:
        - Each call opens and closes its own session.
        - The registry fallback is consulted only when no persisted pack
          matches, and ignores the status filter (bundled packs are
          authoritative defaults).

    Non-goals:
        - Does NOT cache resolved packs; callers hold on to the Rulepack.
        - Does NOT write.  Installation lives in InstallationPipeline.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        registry: BuiltInRegistry,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._registry = registry
        self._clock = clock or SystemClock()

    @property
    def registry(self) -> BuiltInRegistry:
        return self._registry

    def resolve(
        self,
        jurisdiction_code: str,
        year: int | None = None,
        *,
        status: RulepackStatus | None = None,
        include_inactive: bool = False,
    ) -> Rulepack:
        """
        Resolve the governing rulepack for ``jurisdiction_code``/``year``.

        Args:
            jurisdiction_code: Case-insensitive, e.g. "us-ca".
            year: Tax year; defaults to the clock's current year.
            status: Restrict persisted candidates to exactly this status.
            include_inactive: With no ``status``, consider every status
                including deprecated.

        Raises:
            RulepackNotFoundError: Nothing covers the jurisdiction for
                ``year`` or any earlier year.
        """
        code = normalize_jurisdiction(jurisdiction_code)
        if year is None:
            year = self._clock.current_year()

        statuses = self._eligible_statuses(status, include_inactive)

        with transaction_scope(self._session_factory) as session:
            row = RulepackSelector(session).find_latest(code, year, statuses)
            persisted = rulepack_from_row(row) if row is not None else None

        if persisted is not None:
            logger.info(
                "rulepack_resolved",
                extra={
                    "jurisdiction_code": code,
                    "requested_year": year,
                    "rulepack_year": persisted.year,
                    "rulepack_version": persisted.version,
                    "status": persisted.status.value,
                    "source": persisted.source.value,
                },
            )
            return persisted

        builtin = self._registry.find(code, year)
        if builtin is not None:
            logger.warning(
                "rulepack_builtin_fallback",
                extra={
                    "jurisdiction_code": code,
                    "requested_year": year,
                    "rulepack_year": builtin.year,
                    "rulepack_version": builtin.version,
                },
            )
            return builtin

        logger.warning(
            "rulepack_not_found",
            extra={"jurisdiction_code": code, "requested_year": year},
        )
        raise RulepackNotFoundError(code, year)

    def get(self, rulepack_id: UUID) -> Rulepack | None:
        with transaction_scope(self._session_factory) as session:
            row = RulepackSelector(session).get(rulepack_id)
            return rulepack_from_row(row) if row is not None else None

    def list_rulepacks(self, jurisdiction_code: str | None = None) -> list[Rulepack]:
        """Every persisted pack, newest first within each jurisdiction."""
        code = normalize_jurisdiction(jurisdiction_code) if jurisdiction_code else None
        with transaction_scope(self._session_factory) as session:
            rows = RulepackSelector(session).list_rulepacks(code)
            return [rulepack_from_row(row) for row in rows]

    def latest_regressions(self, rulepack_id: UUID) -> list[RegressionAudit]:
        """Audit rows written by the last install of ``rulepack_id``."""
        with transaction_scope(self._session_factory) as session:
            rows = RulepackSelector(session).regressions_for(rulepack_id)
            return [
                RegressionAudit(
                    case_id=row.case_id,
                    description=row.description,
                    status=row.status,
                    last_run_at=row.last_run_at,
                    last_error=row.last_error,
                )
                for row in rows
            ]

    @staticmethod
    def _eligible_statuses(
        status: RulepackStatus | None,
        include_inactive: bool,
    ) -> Collection[str] | None:
        if status is not None:
            return {RulepackStatus(status).value}
        if include_inactive:
            return None
        return {s.value for s in RESOLVABLE_STATUSES}
