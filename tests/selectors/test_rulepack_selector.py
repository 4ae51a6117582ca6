"""Tests for RulepackSelector read queries."""

from datetime import datetime
from uuid import uuid4

from rulepack_kernel.models.rulepack import RulepackRegressionModel
from rulepack_kernel.selectors.rulepack_selector import RulepackSelector
from tests.factories import build_sales_pack, persist_rulepack


class TestFindLatest:
    """Year/version ordering and status filters."""

    def setup_rows(self, session):
        persist_rulepack(session, build_sales_pack(year=2023, version="2023.1"))
        persist_rulepack(session, build_sales_pack(year=2024, version="2024.1"))
        persist_rulepack(session, build_sales_pack(year=2024, version="2024.2", status="pending"))
        persist_rulepack(session, build_sales_pack(year=2025, version="2025.1"))
        persist_rulepack(session, build_sales_pack(year=2024, version="2024.3"), status="deprecated")
        session.commit()
        return RulepackSelector(session)

    def test_highest_version_in_year(self, session):
        selector = self.setup_rows(session)

        row = selector.find_latest("US-TS", 2024, statuses={"active", "pending"})

        assert row.version == "2024.2"

    def test_any_status_when_unfiltered(self, session):
        selector = self.setup_rows(session)

        assert selector.find_latest("US-TS", 2024).version == "2024.3"

    def test_status_filter(self, session):
        selector = self.setup_rows(session)

        assert selector.find_latest("US-TS", 2024, statuses={"active"}).version == "2024.1"

    def test_never_future_year(self, session):
        selector = self.setup_rows(session)

        assert selector.find_latest("US-TS", 2023).version == "2023.1"
        assert selector.find_latest("US-TS", 2022) is None

    def test_falls_back_to_earlier_year(self, session):
        selector = self.setup_rows(session)

        assert selector.find_latest("US-TS", 2030).year == 2025

    def test_other_jurisdiction(self, session):
        selector = self.setup_rows(session)

        assert selector.find_latest("US-XX", 2024) is None


class TestLookups:
    """Key, id, listing and regression lookups."""

    def test_get_by_key_and_id(self, session):
        row = persist_rulepack(session, build_sales_pack())
        session.commit()
        selector = RulepackSelector(session)

        assert selector.get_by_key("US-TS", 2024, "2024.1").id == row.id
        assert selector.get(row.id) is row
        assert selector.get_by_key("US-TS", 2024, "2024.9") is None
        assert selector.get(uuid4()) is None

    def test_list_and_with_status(self, session):
        persist_rulepack(session, build_sales_pack())
        persist_rulepack(session, build_sales_pack(version="2024.2"))
        persist_rulepack(session, build_sales_pack(jurisdiction_code="US-OT"))
        session.commit()
        selector = RulepackSelector(session)

        assert [r.jurisdiction_code for r in selector.list_rulepacks()] == ["US-OT", "US-TS", "US-TS"]
        assert [r.version for r in selector.list_rulepacks("US-TS")] == ["2024.2", "2024.1"]
        assert [r.version for r in selector.with_status("US-TS", 2024, "active")] == ["2024.1", "2024.2"]

    def test_regressions(self, session):
        row = persist_rulepack(session, build_sales_pack())
        for case_id in ("b-case", "a-case"):
            session.add(RulepackRegressionModel(
                rulepack_id=row.id,
                case_id=case_id,
                status="pass",
                last_run_at=datetime(2024, 6, 1, 12),
            ))
        session.commit()
        selector = RulepackSelector(session)

        assert [r.case_id for r in selector.regressions_for(row.id)] == ["a-case", "b-case"]
        assert selector.get_regression(row.id, "a-case").status == "pass"
        assert selector.get_regression(row.id, "zzz") is None
