"""Tests for process wiring (rulepack_services.bootstrap)."""

from decimal import Decimal

import pytest

from rulepack_config.schema import RulepackSource, TransactionInput
from rulepack_config.settings import EngineSettings
from rulepack_engines.evaluator import evaluate
from rulepack_kernel.db.engine import drop_tables, reset_engine
from rulepack_services.bootstrap import bootstrap
from tests.factories import build_sales_pack


@pytest.fixture
def services(deterministic_clock):
    services = bootstrap(EngineSettings(), deterministic_clock)
    yield services
    drop_tables()
    reset_engine()


class TestBootstrap:
    """Services built from settings share one database and registry."""

    def test_registry_loaded(self, services):
        assert services.registry.jurisdictions() == ("CA", "CA-ON", "GB", "US", "US-CA", "US-IL")
        assert services.store.registry is services.registry

    def test_install_then_resolve(self, services):
        services.installer.install(build_sales_pack())

        pack = services.store.resolve("US-TS", 2024)

        assert pack.source == RulepackSource.PERSISTED

    def test_year_defaults_to_clock(self, services):
        pack = services.store.resolve("CA-ON")

        assert pack.year == 2024

    def test_evaluation_through_services(self, services):
        pack = services.store.resolve("GB", 2024)

        result = evaluate(pack, TransactionInput(amount=1000, type="sale"))

        assert result.tax_amount == Decimal("200.00")

    def test_ready_logged(self, services, captured_logs):
        bootstrap(EngineSettings(), services.clock)

        ready = [r for r in captured_logs() if r["message"] == "rulepack_services_ready"]
        assert ready[0]["builtin_rulepacks"] == 6

    def test_custom_sets_dir(self, tmp_path, deterministic_clock):
        services = bootstrap(EngineSettings(sets_dir=tmp_path), deterministic_clock)
        try:
            assert len(services.registry) == 0
        finally:
            drop_tables()
            reset_engine()
