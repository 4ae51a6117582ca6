"""Tests for filing-box projection (rulepack_engines.filing_boxes)."""

from decimal import Decimal

import pytest

from rulepack_config.loader import parse_filing_schema
from rulepack_config.schema import TransactionInput, TransactionType
from rulepack_engines.evaluator import evaluate
from rulepack_engines.filing_boxes import ProjectionContext, project, select_schema
from tests.factories import build_sales_pack


def schemas(*forms: str):
    return tuple(parse_filing_schema({"form": form}, "XX") for form in forms)


class TestSelectSchema:
    """Keyword-based form selection."""

    def test_sale_prefers_sales_form(self):
        selected = select_schema(schemas("Form 540", "BOE-401-A2"), TransactionType.SALE)

        assert selected.form == "BOE-401-A2"

    def test_income_prefers_income_form(self):
        selected = select_schema(schemas("VAT100", "SA100 Tax Return"), TransactionType.INCOME)

        assert selected.form == "SA100 Tax Return"

    def test_payroll_form_beats_earlier_income_form(self):
        selected = select_schema(schemas("Form 1040", "Form 941"), TransactionType.PAYROLL)

        assert selected.form == "Form 941"

    def test_payroll_falls_back_to_income_keywords(self):
        selected = select_schema(schemas("GST34", "Form 1040"), TransactionType.PAYROLL)

        assert selected.form == "Form 1040"

    def test_no_keyword_match_uses_first(self):
        selected = select_schema(schemas("ON428", "GST/HST Return"), TransactionType.INCOME)

        assert selected.form == "ON428"

    def test_no_schemas(self):
        assert select_schema((), TransactionType.SALE) is None


class TestProject:
    """Directive resolution."""

    def setup_method(self):
        self.pack = build_sales_pack(filing_schemas=[{
            "form": "Sales Return",
            "boxes": [
                {"id": "1", "calculation": "amount"},
                {"id": "2", "calculation": "taxAmount"},
                {"id": "3", "calculation": "taxableIncome"},
                {"id": "4", "calculation": "context.locations"},
                {"id": "5", "calculation": "context.region"},
                {"id": "6", "calculation": "context.nested.value"},
                {"id": "7", "calculation": "mystery"},
                {"id": "8"},
            ],
        }])

    def test_resolvable_boxes_only(self):
        txn = TransactionInput(
            amount=100, type="sale", metadata={"locations": 4, "region": "west"},
        )

        boxes = project(self.pack, txn, ProjectionContext(Decimal("100"), Decimal("5.005")))

        assert boxes == {"1": Decimal("100.00"), "2": Decimal("5.01"), "4": Decimal("4.00")}

    def test_taxable_income_when_present(self):
        txn = TransactionInput(amount=100, type="sale")

        boxes = project(
            self.pack, txn, ProjectionContext(Decimal("100"), Decimal("5"), Decimal("80")),
        )

        assert boxes["3"] == Decimal("80.00")

    def test_no_schemas_returns_none(self):
        pack = build_sales_pack(filing_schemas=[])
        txn = TransactionInput(amount=100, type="sale")

        assert project(pack, txn, ProjectionContext(Decimal("100"), Decimal("5"))) is None

    def test_nothing_resolvable_returns_none(self):
        pack = build_sales_pack(filing_schemas=[
            {"form": "Sales Return", "boxes": [{"id": "1", "calculation": "context.missing"}]},
        ])
        txn = TransactionInput(amount=100, type="sale")

        assert project(pack, txn, ProjectionContext(Decimal("100"), Decimal("5"))) is None


class TestEvaluationBoxes:
    """Boxes attached to evaluation results from the bundled packs."""

    def test_us_payroll_form_941(self, builtin_registry):
        result = evaluate(
            builtin_registry.find("US", 2024),
            TransactionInput(amount=100000, type="payroll", metadata={"employees": 3}),
        )

        assert result.filing_boxes == {
            "1": Decimal("3.00"),
            "2": Decimal("100000.00"),
            "5d": Decimal("7650.00"),
        }

    def test_us_income_form_1040(self, builtin_registry):
        result = evaluate(
            builtin_registry.find("US", 2024),
            TransactionInput(amount=95000, type="income"),
        )

        assert result.filing_boxes == {
            "1": Decimal("95000"),
            "15": Decimal("80400"),
            "16": Decimal("12741"),
        }

    @pytest.mark.parametrize("code", ["GB", "CA", "CA-ON"])
    def test_sale_boxes_carry_tax(self, builtin_registry, code):
        result = evaluate(
            builtin_registry.find(code, 2024),
            TransactionInput(amount=1000, type="sale"),
        )

        assert result.tax_amount in result.filing_boxes.values()
