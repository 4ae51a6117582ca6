"""
Tests for regression-gated installation (rulepack_services.installation).

Every test runs against both unit-of-work implementations: SQLAlchemy
over the test database and the dict-backed in-memory one.

Covers:
- The regression gate blocks failing packs and persists nothing
- ALLOW_WITH_FAILURES installs and records the failures
- Per-case audit rows, upserted on re-install
- Lifecycle: pending -> active -> deprecated, deprecated immutable
- supersede / supersede_previous
- Zero-coverage packs require manual sign-off
- Atomicity when a write fails mid-install
- Concurrent installs of different versions through one pipeline
"""

import threading
from dataclasses import replace

import pytest

from rulepack_config.integrity import RulepackIntegrityError, rulepack_checksum
from rulepack_config.lifecycle import RulepackStatus
from rulepack_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from rulepack_kernel.exceptions import (
    InvalidStatusTransitionError,
    RegressionGateError,
    RulepackImmutableError,
    RulepackNotFoundError,
)
from rulepack_services.installation import InstallationPipeline, InstallationPolicy
from rulepack_services.unit_of_work import (
    InMemoryRulepackRepository,
    InMemoryUnitOfWorkFactory,
    SqlAlchemyRulepackRepository,
    SqlAlchemyUnitOfWorkFactory,
)
from tests.factories import build_sales_pack


@pytest.fixture(params=["sqlalchemy", "memory"])
def uow_factory(request):
    if request.param == "sqlalchemy":
        return SqlAlchemyUnitOfWorkFactory(request.getfixturevalue("session_factory"))
    return InMemoryUnitOfWorkFactory()


@pytest.fixture
def pipeline(uow_factory, deterministic_clock):
    return InstallationPipeline(uow_factory, deterministic_clock)


def stored(uow_factory, key: tuple[str, int, str]) -> dict | None:
    """Snapshot of a persisted row and its audit rows."""
    with uow_factory.create() as u:
        row = u.rulepacks.get_by_key(*key)
        if row is None:
            return None
        audits = {}
        for case_id in [c["id"] for c in row.regression_cases] + ["ts-wrong-expectation"]:
            audit = u.rulepacks.get_regression(row.id, case_id)
            if audit is not None:
                audits[case_id] = (audit.status, audit.last_error, audit.input, audit.expected)
        return {
            "id": row.id,
            "status": row.status,
            "checksum": row.checksum,
            "regression_summary": row.regression_summary,
            "activated": row.activated_at is not None,
            "deprecated": row.deprecated_at is not None,
            "rules": row.rules,
            "audits": audits,
        }


KEY = ("US-TS", 2024, "2024.1")


class TestRegressionGate:
    """Failing cases block the install under the default policy."""

    def test_blocked_and_nothing_persisted(self, pipeline, uow_factory, failing_sales_pack, captured_logs):
        with pytest.raises(RegressionGateError) as exc_info:
            pipeline.install(failing_sales_pack)

        error = exc_info.value
        assert error.code == "REGRESSION_GATE_FAILED"
        assert error.failed_case_ids == ("ts-wrong-expectation",)
        assert "expected 100, got 150.00" in error.errors["ts-wrong-expectation"]
        assert stored(uow_factory, KEY) is None
        blocked = [r for r in captured_logs() if r["message"] == "rulepack_install_blocked"]
        assert blocked[0]["jurisdiction_code"] == "US-TS"

    def test_allow_with_failures(self, pipeline, uow_factory, failing_sales_pack):
        report = pipeline.install(
            failing_sales_pack, policy=InstallationPolicy.ALLOW_WITH_FAILURES,
        )

        assert report.regression_summary.failed == 1
        assert report.regression_summary.passed == 2
        assert report.failed_case_ids == ("ts-wrong-expectation",)
        row = stored(uow_factory, KEY)
        assert row["regression_summary"]["failed"] == 1
        status, error, _, _ = row["audits"]["ts-wrong-expectation"]
        assert status == "fail"
        assert "diff 50.00" in error

    def test_skipped_case_does_not_block(self, pipeline, uow_factory, failing_sales_pack):
        report = pipeline.install(failing_sales_pack, skip_case_ids={"ts-wrong-expectation"})

        assert report.regression_summary.skipped == 1
        assert stored(uow_factory, KEY)["audits"]["ts-wrong-expectation"][0] == "skipped"

    def test_declared_checksum_mismatch(self, pipeline, uow_factory):
        pack = build_sales_pack(checksum="f" * 64)

        with pytest.raises(RulepackIntegrityError):
            pipeline.install(pack)

        assert stored(uow_factory, KEY) is None


class TestInstall:
    """Successful installs."""

    def test_clean_install(self, pipeline, uow_factory, sales_pack, captured_logs):
        report = pipeline.install(sales_pack)

        assert report.status == RulepackStatus.ACTIVE
        assert report.key == "US-TS/2024/2024.1"
        assert report.checksum == rulepack_checksum(sales_pack)
        assert report.requires_manual_signoff is False
        row = stored(uow_factory, KEY)
        assert row["id"] == report.id
        assert row["status"] == "active"
        assert row["checksum"] == rulepack_checksum(sales_pack)
        assert row["activated"] is True
        assert row["regression_summary"]["passed"] == 2
        assert row["regression_summary"]["last_run_at"] == "2024-06-01T12:00:00+00:00"
        installed = [r for r in captured_logs() if r["message"] == "rulepack_installed"]
        assert installed[0]["rulepack_version"] == "2024.1"

    def test_audit_rows(self, pipeline, uow_factory, sales_pack):
        pipeline.install(sales_pack)

        audits = stored(uow_factory, KEY)["audits"]
        assert set(audits) == {"ts-sale-1000", "ts-sale-metro-100"}
        status, error, txn, expected = audits["ts-sale-1000"]
        assert status == "pass"
        assert error is None
        assert txn["amount"] == "1000"
        assert expected["tax_amount"] == "50"

    def test_pending_target(self, pipeline, uow_factory, sales_pack):
        report = pipeline.install(sales_pack, target_status=RulepackStatus.PENDING)

        assert report.status == RulepackStatus.PENDING
        row = stored(uow_factory, KEY)
        assert row["status"] == "pending"
        assert row["activated"] is False

    def test_pending_then_active(self, pipeline, uow_factory, sales_pack):
        pipeline.install(sales_pack, target_status="pending")

        pipeline.install(sales_pack, target_status="active")

        assert stored(uow_factory, KEY)["status"] == "active"

    def test_reinstall_is_upsert(self, pipeline, uow_factory, failing_sales_pack, sales_pack):
        first = pipeline.install(
            failing_sales_pack, policy=InstallationPolicy.ALLOW_WITH_FAILURES,
        )
        changed = replace(sales_pack, rules=(replace(sales_pack.rules[0], name="Renamed"),))

        second = pipeline.install(changed)

        assert second.id == first.id
        row = stored(uow_factory, KEY)
        assert row["rules"][0]["name"] == "Renamed"
        assert row["checksum"] == rulepack_checksum(changed)
        # Audit rows are upserted per case; the dropped case keeps its last result
        assert row["audits"]["ts-sale-1000"][0] == "pass"
        assert row["audits"]["ts-wrong-expectation"][0] == "fail"

    def test_active_cannot_return_to_pending(self, pipeline, sales_pack):
        pipeline.install(sales_pack)

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            pipeline.install(sales_pack, target_status=RulepackStatus.PENDING)

        assert exc_info.value.current == "active"
        assert exc_info.value.target == "pending"

    def test_new_pack_cannot_start_deprecated(self, pipeline, uow_factory, sales_pack):
        with pytest.raises(InvalidStatusTransitionError):
            pipeline.install(sales_pack, target_status=RulepackStatus.DEPRECATED)

        assert stored(uow_factory, KEY) is None

    def test_zero_coverage_requires_signoff(self, pipeline, uow_factory, captured_logs):
        pack = build_sales_pack(regression_cases=[])

        report = pipeline.install(pack)

        assert report.requires_manual_signoff is True
        assert report.regression_summary.total == 0
        assert stored(uow_factory, KEY)["audits"] == {}
        assert any(r["message"] == "rulepack_zero_coverage" for r in captured_logs())


class TestSupersede:
    """Deprecation is terminal."""

    def test_supersede(self, pipeline, uow_factory, sales_pack):
        pipeline.install(sales_pack)

        superseded = pipeline.supersede("us-ts", 2024, "2024.1")

        assert superseded.status == RulepackStatus.DEPRECATED
        row = stored(uow_factory, KEY)
        assert row["status"] == "deprecated"
        assert row["deprecated"] is True

    def test_deprecated_is_immutable(self, pipeline, sales_pack):
        pipeline.install(sales_pack)
        pipeline.supersede("US-TS", 2024, "2024.1")

        with pytest.raises(RulepackImmutableError):
            pipeline.install(sales_pack)
        with pytest.raises(RulepackImmutableError):
            pipeline.supersede("US-TS", 2024, "2024.1")

    def test_pending_cannot_be_superseded(self, pipeline, sales_pack):
        pipeline.install(sales_pack, target_status="pending")

        with pytest.raises(InvalidStatusTransitionError):
            pipeline.supersede("US-TS", 2024, "2024.1")

    def test_unknown_key(self, pipeline):
        with pytest.raises(RulepackNotFoundError):
            pipeline.supersede("US-TS", 2024, "2024.7")

    def test_supersede_previous(self, pipeline, uow_factory, sales_pack):
        pipeline.install(sales_pack)
        newer = replace(sales_pack, version="2024.2")

        report = pipeline.install(newer, supersede_previous=True)

        assert report.superseded_versions == ("2024.1",)
        assert stored(uow_factory, KEY)["status"] == "deprecated"
        assert stored(uow_factory, ("US-TS", 2024, "2024.2"))["status"] == "active"

    def test_without_supersede_previous_both_active(self, pipeline, uow_factory, sales_pack):
        pipeline.install(sales_pack)

        report = pipeline.install(replace(sales_pack, version="2024.2"))

        assert report.superseded_versions == ()
        assert stored(uow_factory, KEY)["status"] == "active"


class TestAtomicity:
    """A failure after the rulepack row is written leaves nothing behind."""

    def test_sqlalchemy_rollback(self, session_factory, deterministic_clock, sales_pack,
                                 monkeypatch, captured_logs):
        uow_factory = SqlAlchemyUnitOfWorkFactory(session_factory)
        pipeline = InstallationPipeline(uow_factory, deterministic_clock)

        def explode(self, row):
            raise RuntimeError("audit write failed")

        monkeypatch.setattr(SqlAlchemyRulepackRepository, "add_regression", explode)

        with pytest.raises(RuntimeError, match="audit write failed"):
            pipeline.install(sales_pack)

        assert stored(uow_factory, KEY) is None
        assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())

    def test_in_memory_rollback(self, deterministic_clock, sales_pack, monkeypatch):
        uow_factory = InMemoryUnitOfWorkFactory()
        pipeline = InstallationPipeline(uow_factory, deterministic_clock)

        def explode(self, row):
            raise RuntimeError("audit write failed")

        monkeypatch.setattr(InMemoryRulepackRepository, "add_regression", explode)

        with pytest.raises(RuntimeError):
            pipeline.install(sales_pack)

        assert uow_factory.commit_count == 0
        assert uow_factory.rulepack_rows == {}


class TestConcurrentInstalls:
    """Every install opens its own unit of work, so versions install in parallel."""

    @pytest.fixture
    def file_session_factory(self, tmp_path):
        init_engine_from_url(f"sqlite+pysqlite:///{tmp_path / 'rulepacks.db'}")
        create_tables()
        yield get_session_factory()
        drop_tables()
        reset_engine()

    def test_overlapping_installs_both_commit(self, file_session_factory, deterministic_clock,
                                              sales_pack, monkeypatch):
        uow_factory = SqlAlchemyUnitOfWorkFactory(file_session_factory)
        pipeline = InstallationPipeline(uow_factory, deterministic_clock)
        both_inside = threading.Barrier(2, timeout=10)
        original_get_by_key = SqlAlchemyRulepackRepository.get_by_key

        def get_by_key_then_wait(self, jurisdiction_code, year, version):
            row = original_get_by_key(self, jurisdiction_code, year, version)
            both_inside.wait()
            return row

        monkeypatch.setattr(SqlAlchemyRulepackRepository, "get_by_key", get_by_key_then_wait)
        errors: list[str] = []

        def install(version):
            try:
                pipeline.install(replace(sales_pack, version=version))
            except Exception as exc:
                errors.append(f"{version}: {type(exc).__name__}: {exc}")

        threads = [threading.Thread(target=install, args=(v,)) for v in ("2024.1", "2024.2")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        monkeypatch.undo()

        assert errors == []
        assert stored(uow_factory, KEY)["status"] == "active"
        assert stored(uow_factory, ("US-TS", 2024, "2024.2"))["status"] == "active"
        assert len(stored(uow_factory, KEY)["audits"]) == len(sales_pack.regression_cases)

    def test_each_scope_is_a_new_unit_of_work(self, session_factory):
        uow_factory = SqlAlchemyUnitOfWorkFactory(session_factory)

        assert uow_factory.create() is not uow_factory.create()

    def test_in_memory_scopes_serialize(self, memory_installer, memory_uow_factory, sales_pack):
        versions = [f"2024.{n}" for n in range(1, 6)]
        threads = [
            threading.Thread(target=memory_installer.install, args=(replace(sales_pack, version=v),))
            for v in versions
        ]

        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert memory_uow_factory.commit_count == len(versions)
        assert sorted(key[2] for key in memory_uow_factory.rulepack_rows) == versions
