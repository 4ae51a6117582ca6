"""
Rulepack Kernel

Foundation layer for the rulepack engine:
- Typed exceptions with machine-readable codes
- Structured JSON logging
- Deterministic hashing and Decimal rounding
- SQLAlchemy persistence for versioned rulepacks
"""

__version__ = "0.1.0"
