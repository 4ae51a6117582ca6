"""Database layer - engine, base classes and transactional scopes."""

from rulepack_kernel.db.base import Base, TrackedBase, UUIDString
from rulepack_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    transaction_scope,
)

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session_factory",
    "create_tables",
    "drop_tables",
    "reset_engine",
    "transaction_scope",
    "Base",
    "TrackedBase",
    "UUIDString",
]
