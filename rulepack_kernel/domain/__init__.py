"""
Pure domain layer.

Decimal value helpers and the injectable clock. No ORM, no database,
no I/O (except SystemClock).
"""

from rulepack_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from rulepack_kernel.domain.values import (
    AMOUNT_TOLERANCE,
    RATE_TOLERANCE,
    ZERO,
    is_number,
    round_money,
    round_rate,
    to_decimal,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "AMOUNT_TOLERANCE",
    "RATE_TOLERANCE",
    "ZERO",
    "is_number",
    "round_money",
    "round_rate",
    "to_decimal",
]
