"""
Tests for kernel primitives: decimal values, clocks, hashing and the
exception hierarchy.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from rulepack_config.schema import TransactionType
from rulepack_kernel.domain.clock import DeterministicClock, SystemClock
from rulepack_kernel.domain.values import (
    ZERO,
    is_number,
    round_money,
    round_rate,
    to_decimal,
)
from rulepack_kernel.exceptions import (
    ConfigurationError,
    EvaluationError,
    InstallationError,
    InvalidStatusTransitionError,
    RegressionGateError,
    ResolutionError,
    RulepackEngineError,
    RulepackImmutableError,
    RulepackNotFoundError,
    UnsupportedTransactionError,
)
from rulepack_kernel.utils.hashing import canonicalize_json, hash_payload, sha256_hex, short_digest


class TestToDecimal:
    """Numeric coercion."""

    @pytest.mark.parametrize("value,expected", [
        (5, Decimal("5")),
        ("0.0495", Decimal("0.0495")),
        (0.1, Decimal("0.1")),
        (Decimal("1.50"), Decimal("1.50")),
    ])
    def test_accepted(self, value, expected):
        assert to_decimal(value) == expected

    def test_none_uses_default(self):
        assert to_decimal(None, ZERO) == ZERO

    @pytest.mark.parametrize("value", [None, "abc", True, "NaN", float("inf")])
    def test_rejected(self, value):
        with pytest.raises(ValueError):
            to_decimal(value)

    def test_is_number(self):
        assert is_number(3) and is_number(2.5) and is_number(Decimal("1"))
        assert not is_number("3")
        assert not is_number(False)


class TestRounding:
    """Half away from zero at every quantum."""

    def test_money(self):
        assert round_money(Decimal("0.005")) == Decimal("0.01")
        assert round_money(Decimal("2.345")) == Decimal("2.35")
        assert round_money(Decimal("-0.005")) == Decimal("-0.01")

    def test_rate(self):
        assert round_rate(Decimal("0.13335")) == Decimal("0.1334")
        assert round_rate(Decimal("0.05")) == Decimal("0.0500")


class TestClocks:
    """Injectable time."""

    def test_deterministic_default(self):
        clock = DeterministicClock()

        assert clock.now() == datetime(2024, 6, 1, 12, tzinfo=timezone.utc)
        assert clock.current_year() == 2024

    def test_advance_and_set(self):
        clock = DeterministicClock()

        clock.advance(60)
        assert clock.now().minute == 1

        clock.set_time(datetime(2025, 1, 1, tzinfo=timezone.utc))
        assert clock.current_year() == 2025

    def test_system_clock_is_utc(self):
        assert SystemClock().now().tzinfo == timezone.utc


class TestHashing:
    """Canonical JSON and SHA-256."""

    def test_key_order_irrelevant(self):
        assert hash_payload({"a": 1, "b": 2}) == hash_payload({"b": 2, "a": 1})

    def test_decimal_trailing_zeros(self):
        assert canonicalize_json({"r": Decimal("0.10")}) == canonicalize_json({"r": Decimal("0.1")})

    def test_uuid_and_dates(self):
        uid = UUID(int=1)

        text = canonicalize_json({"id": uid, "at": datetime(2024, 1, 1)})

        assert str(uid) in text
        assert "2024-01-01T00:00:00" in text

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            canonicalize_json({"x": object()})

    def test_digest_length(self):
        assert len(hash_payload({})) == 64

    def test_enums_encode_as_values(self):
        assert canonicalize_json({"type": TransactionType.SALE}) == '{"type":"sale"}'

    def test_short_digest_is_prefix(self):
        assert short_digest("US/2024/2024.1") == sha256_hex("US/2024/2024.1")[:16]
        assert len(short_digest("x", length=8)) == 8


class TestExceptionHierarchy:
    """Every error is typed and carries a machine-readable code."""

    @pytest.mark.parametrize("error,base,code", [
        (RulepackNotFoundError("US", 2025), ResolutionError, "RULEPACK_NOT_FOUND"),
        (ConfigurationError("US", "2024.1", "no ladder"), EvaluationError,
         "RULEPACK_CONFIGURATION_ERROR"),
        (UnsupportedTransactionError("negative"), EvaluationError, "UNSUPPORTED_TRANSACTION"),
        (RegressionGateError("US", "2024.1", ["a"]), InstallationError, "REGRESSION_GATE_FAILED"),
        (InvalidStatusTransitionError("US/2024/1", "active", "pending"), InstallationError,
         "INVALID_STATUS_TRANSITION"),
        (RulepackImmutableError("US/2024/1"), InstallationError, "RULEPACK_IMMUTABLE"),
    ])
    def test_codes(self, error, base, code):
        assert isinstance(error, base)
        assert isinstance(error, RulepackEngineError)
        assert error.code == code

    def test_not_found_message(self):
        assert str(RulepackNotFoundError("US-NY", 2025)) == (
            "No tax rulepack available for jurisdiction US-NY for year 2025"
        )

    def test_gate_message_lists_cases(self):
        error = RegressionGateError("US", "2024.2", ["a", "b"], {"a": "x"})

        assert "(2 cases): a, b" in str(error)
        assert error.errors == {"a": "x"}
