"""
Pytest fixtures for the rulepack engine test suite.

Provides:
- Structured logging configured once per session, plus ``captured_logs``
- In-memory SQLite engine and session factory, tables created per test
- Deterministic clock
- The bundled built-in registry and the test rulepacks from tests/factories.py

Environment Variables:
- RULEPACK_TEST_DATABASE_URL: run the database-backed tests against another
  SQLAlchemy URL (e.g. postgresql+psycopg2://...).  Defaults to in-memory
  SQLite.
"""

import json
import logging
import os
from io import StringIO

import pytest

from rulepack_config.loader import parse_rulepack
from rulepack_config.registry import BuiltInRegistry, default_builtin_registry
from rulepack_config.schema import Rulepack
from rulepack_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from rulepack_kernel.domain.clock import DeterministicClock
from rulepack_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from rulepack_services.installation import InstallationPipeline
from rulepack_services.store import RulepackStore
from rulepack_services.unit_of_work import InMemoryUnitOfWorkFactory, SqlAlchemyUnitOfWorkFactory
from tests.factories import build_sales_pack, failing_case, sales_pack_data

DEFAULT_TEST_DATABASE_URL = "sqlite+pysqlite:///:memory:"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture rulepack logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, store):
            store.resolve("US", 2024)
            logs = captured_logs()
            assert any(r["message"] == "rulepack_resolved" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("rulepack")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


def get_database_url() -> str:
    return os.environ.get("RULEPACK_TEST_DATABASE_URL", DEFAULT_TEST_DATABASE_URL)


@pytest.fixture
def engine():
    """Fresh schema per test; dropped and disposed afterwards."""
    engine = init_engine_from_url(get_database_url())
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    """A plain session for direct assertions against the tables."""
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# Clock, registry, services
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def builtin_registry() -> BuiltInRegistry:
    return default_builtin_registry()


@pytest.fixture
def empty_registry() -> BuiltInRegistry:
    return BuiltInRegistry()


@pytest.fixture
def store(session_factory, builtin_registry, deterministic_clock):
    return RulepackStore(session_factory, builtin_registry, deterministic_clock)


@pytest.fixture
def installer(session_factory, deterministic_clock):
    return InstallationPipeline(SqlAlchemyUnitOfWorkFactory(session_factory), deterministic_clock)


@pytest.fixture
def memory_uow_factory():
    return InMemoryUnitOfWorkFactory()


@pytest.fixture
def memory_installer(memory_uow_factory, deterministic_clock):
    return InstallationPipeline(memory_uow_factory, deterministic_clock)


# =============================================================================
# Rulepacks
# =============================================================================


@pytest.fixture
def sales_pack() -> Rulepack:
    return build_sales_pack()


@pytest.fixture
def failing_sales_pack() -> Rulepack:
    data = sales_pack_data()
    data["regression_cases"].append(failing_case())
    return parse_rulepack(data, source="tests")
