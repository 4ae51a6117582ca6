"""
Unit of Work -- atomic write scope for the installation pipeline.

Responsibility:
    Groups the rulepack upsert and the per-case regression audit upserts
    into one all-or-nothing scope.  The pipeline is written against the
    abstract ``UnitOfWorkFactory``/``UnitOfWork``/``RulepackRepository``
    trio so the same logic runs against SQLAlchemy or an in-memory store.

Architecture position:
    Services -- imperative shell.  The SQLAlchemy implementation delegates
    commit/rollback to ``rulepack_kernel.db.transaction_scope``.

Invariants enforced:
    - Exiting the scope normally commits every staged write; exiting with
      an exception discards all of them.  A regression audit row is never
      visible without its rulepack row.
    - Each scope comes from ``UnitOfWorkFactory.create`` and owns its
      session (or staged copies).  Concurrent installs never share one.

Failure modes:
    - Exceptions raised inside the scope propagate after rollback.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from contextlib import ExitStack
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session, sessionmaker

from rulepack_kernel.db.engine import transaction_scope
from rulepack_kernel.logging_config import get_logger
from rulepack_kernel.models.rulepack import RulepackRegressionModel, TaxRulepackModel
from rulepack_kernel.selectors.rulepack_selector import RulepackSelector

logger = get_logger("services.unit_of_work")

RowKey = tuple[str, int, str]


class RulepackRepository(ABC):
    """Write-side access to rulepack rows inside a unit of work."""

    @abstractmethod
    def get_by_key(self, jurisdiction_code: str, year: int, version: str) -> TaxRulepackModel | None:
        ...

    @abstractmethod
    def with_status(self, jurisdiction_code: str, year: int, status: str) -> list[TaxRulepackModel]:
        ...

    @abstractmethod
    def add(self, row: TaxRulepackModel) -> None:
        """Stage a new row; assigns ``row.id`` when unset."""
        ...

    @abstractmethod
    def get_regression(self, rulepack_id: UUID, case_id: str) -> RulepackRegressionModel | None:
        ...

    @abstractmethod
    def add_regression(self, row: RulepackRegressionModel) -> None:
        ...


class UnitOfWork(ABC):
    """
    One transactional scope exposing a ``RulepackRepository``.

    Single use: obtain a fresh instance from a ``UnitOfWorkFactory`` for
    every scope.

    Usage:
        with factory.create() as uow:
            row = uow.rulepacks.get_by_key("US", 2024, "2024.1")
            ...
    """

    rulepacks: RulepackRepository

    @abstractmethod
    def __enter__(self) -> UnitOfWork:
        ...

    @abstractmethod
    def __exit__(self, exc_type, exc, tb) -> bool | None:
        ...


class UnitOfWorkFactory(ABC):
    """Creates a new ``UnitOfWork`` per scope; safe to share across threads."""

    @abstractmethod
    def create(self) -> UnitOfWork:
        ...

    def __call__(self) -> UnitOfWork:
        return self.create()


# ---------------------------------------------------------------------------
# SQLAlchemy
# ---------------------------------------------------------------------------


class SqlAlchemyRulepackRepository(RulepackRepository):
    """Repository over an open session; reads go through RulepackSelector."""

    def __init__(self, session: Session):
        self._session = session
        self._selector = RulepackSelector(session)

    def get_by_key(self, jurisdiction_code, year, version):
        return self._selector.get_by_key(jurisdiction_code, year, version)

    def with_status(self, jurisdiction_code, year, status):
        return self._selector.with_status(jurisdiction_code, year, status)

    def add(self, row):
        if row.id is None:
            row.id = uuid4()
        self._session.add(row)
        self._session.flush()

    def get_regression(self, rulepack_id, case_id):
        return self._selector.get_regression(rulepack_id, case_id)

    def add_regression(self, row):
        if row.id is None:
            row.id = uuid4()
        self._session.add(row)


class SqlAlchemyUnitOfWork(UnitOfWork):
    """Unit of work backed by one ``transaction_scope`` session."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory
        self._stack = ExitStack()

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        session = self._stack.enter_context(transaction_scope(self._session_factory))
        self.rulepacks = SqlAlchemyRulepackRepository(session)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool | None:
        return self._stack.__exit__(exc_type, exc, tb)


class SqlAlchemyUnitOfWorkFactory(UnitOfWorkFactory):
    """Opens a new session per unit of work."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def create(self) -> SqlAlchemyUnitOfWork:
        return SqlAlchemyUnitOfWork(self._session_factory)


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

ModelT = TypeVar("ModelT", TaxRulepackModel, RulepackRegressionModel)


def _clone(row: ModelT) -> ModelT:
    """Detached copy of a row's column values."""
    mapper = sa_inspect(type(row))
    values: dict[str, Any] = {attr.key: getattr(row, attr.key) for attr in mapper.column_attrs}
    return type(row)(**values)


class InMemoryRulepackRepository(RulepackRepository):
    """Dict-backed repository holding staged copies of committed rows."""

    def __init__(
        self,
        rulepacks: dict[RowKey, TaxRulepackModel],
        regressions: dict[tuple[UUID, str], RulepackRegressionModel],
    ):
        self.rulepack_rows = rulepacks
        self.regression_rows = regressions

    def get_by_key(self, jurisdiction_code, year, version):
        return self.rulepack_rows.get((jurisdiction_code, year, version))

    def with_status(self, jurisdiction_code, year, status):
        rows = [
            row for row in self.rulepack_rows.values()
            if row.jurisdiction_code == jurisdiction_code
            and row.year == year
            and row.status == status
        ]
        return sorted(rows, key=lambda row: row.version)

    def add(self, row):
        if row.id is None:
            row.id = uuid4()
        self.rulepack_rows[(row.jurisdiction_code, row.year, row.version)] = row

    def get_regression(self, rulepack_id, case_id):
        return self.regression_rows.get((rulepack_id, case_id))

    def add_regression(self, row):
        if row.id is None:
            row.id = uuid4()
        self.regression_rows[(row.rulepack_id, row.case_id)] = row


class InMemoryUnitOfWorkFactory(UnitOfWorkFactory):
    """
    Committed rows held in plain dicts, for tests and tooling without a
    database.

    Scopes are serialized on one lock; each works on copies of the
    committed rows, which replace the committed state only when the scope
    exits without an exception.
    """

    def __init__(self) -> None:
        self.rulepack_rows: dict[RowKey, TaxRulepackModel] = {}
        self.regression_rows: dict[tuple[UUID, str], RulepackRegressionModel] = {}
        self.commit_count = 0
        self.lock = threading.Lock()

    def create(self) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(self)


class InMemoryUnitOfWork(UnitOfWork):
    """One serialized scope over an ``InMemoryUnitOfWorkFactory``'s rows."""

    def __init__(self, committed: InMemoryUnitOfWorkFactory):
        self._committed = committed

    def __enter__(self) -> InMemoryUnitOfWork:
        committed = self._committed
        committed.lock.acquire()
        self.rulepacks = InMemoryRulepackRepository(
            {key: _clone(row) for key, row in committed.rulepack_rows.items()},
            {key: _clone(row) for key, row in committed.regression_rows.items()},
        )
        return self

    def __exit__(self, exc_type, exc, tb) -> bool | None:
        committed = self._committed
        try:
            if exc_type is None:
                committed.rulepack_rows = self.rulepacks.rulepack_rows
                committed.regression_rows = self.rulepacks.regression_rows
                committed.commit_count += 1
                logger.debug("transaction_committed")
            else:
                logger.warning("transaction_rolled_back", exc_info=(exc_type, exc, tb))
        finally:
            committed.lock.release()
        return None
