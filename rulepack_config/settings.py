"""
Engine runtime settings.

The only place the engine reads environment variables.  Everything else
receives an ``EngineSettings`` (or the objects built from it) explicitly.

    RULEPACK_DATABASE_URL   SQLAlchemy URL (default: in-memory SQLite)
    RULEPACK_SETS_DIR       Built-in rulepack YAML directory
    RULEPACK_LOG_LEVEL      DEBUG / INFO / WARNING / ... (default INFO)
    RULEPACK_SQL_ECHO       "1"/"true" to log SQL statements
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from rulepack_config.registry import DEFAULT_SETS_DIR

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///:memory:"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True)
class EngineSettings:
    database_url: str = DEFAULT_DATABASE_URL
    sets_dir: Path = DEFAULT_SETS_DIR
    log_level: int = logging.INFO
    sql_echo: bool = False


def _parse_log_level(value: str) -> int:
    level = logging.getLevelName(value.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {value!r}")
    return level


def load_settings(environ: Mapping[str, str] | None = None) -> EngineSettings:
    """
    Build settings from environment variables.

    Raises:
        ValueError: If ``RULEPACK_LOG_LEVEL`` names no logging level.
    """
    env = os.environ if environ is None else environ
    sets_dir = env.get("RULEPACK_SETS_DIR")
    log_level = env.get("RULEPACK_LOG_LEVEL")
    return EngineSettings(
        database_url=env.get("RULEPACK_DATABASE_URL", DEFAULT_DATABASE_URL),
        sets_dir=Path(sets_dir) if sets_dir else DEFAULT_SETS_DIR,
        log_level=_parse_log_level(log_level) if log_level else logging.INFO,
        sql_echo=env.get("RULEPACK_SQL_ECHO", "").strip().lower() in _TRUE_VALUES,
    )
