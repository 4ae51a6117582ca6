"""
Values -- Decimal conversion and output rounding.

Responsibility:
    The single place where numeric inputs become ``Decimal`` and where
    monetary amounts and rates are rounded for output.

Invariants enforced:
    - Never float: inputs are converted through ``str()`` so that 0.1
      becomes Decimal("0.1"), not its binary approximation.
    - Monetary outputs are rounded to cents, rates to 4 places, both with
      ROUND_HALF_UP (half away from zero for Decimal).
    - Rounding happens only at output; accumulation stays at full precision.

Failure modes:
    - ValueError on values that cannot be represented as a finite Decimal.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0")
CENT = Decimal("0.01")
RATE_QUANTUM = Decimal("0.0001")

# Regression comparison tolerances
AMOUNT_TOLERANCE = Decimal("0.01")
RATE_TOLERANCE = Decimal("0.0001")


def to_decimal(value: Any, default: Decimal | None = None) -> Decimal:
    """
    Convert an int/float/str/Decimal to Decimal.

    ``None`` maps to ``default`` when one is given.

    Raises:
        ValueError: If the value is not numeric or not finite.
    """
    if value is None:
        if default is None:
            raise ValueError("Numeric value required, got None")
        return default
    if isinstance(value, bool):
        raise ValueError(f"Invalid numeric value: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise ValueError(f"Invalid numeric value: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"Invalid numeric value: {value!r}")
    return result


def is_number(value: Any) -> bool:
    """True for int/float/Decimal values (bool excluded)."""
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def round_money(value: Decimal) -> Decimal:
    """Round to cents, half away from zero."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def round_rate(value: Decimal) -> Decimal:
    """Round a rate to 4 decimal places, half away from zero."""
    return value.quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)
