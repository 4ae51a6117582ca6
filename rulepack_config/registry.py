"""
Built-in Rulepack Registry.

Responsibility:
    Holds the rulepacks bundled with the engine (``rulepack_config/sets``)
    as an immutable value.  The store consults it only when the persisted
    table has no match, so a freshly provisioned database still resolves
    every shipped jurisdiction.

Architecture position:
    Configuration.  Constructed once at start-up and passed explicitly to
    ``RulepackStore``; there is no module-level mutable registry.

Invariants enforced:
    - No two bundled packs share ``(jurisdiction_code, year, version)``.
    - Every bundled pack carries its computed checksum, and a checksum
      declared in the YAML file must match it.
    - ``find`` never returns a pack for a year after the requested one.

Failure modes:
    - ``FileNotFoundError`` if the sets directory does not exist.
    - ``RulepackSchemaError`` for malformed files or duplicate keys.
    - ``RulepackIntegrityError`` for a declared checksum mismatch.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path
from typing import Iterable

from rulepack_config.integrity import verify_checksum
from rulepack_config.loader import load_rulepack_file
from rulepack_config.schema import Rulepack, RulepackSource
from rulepack_kernel.exceptions import RulepackSchemaError
from rulepack_kernel.logging_config import get_logger

logger = get_logger("config.registry")

DEFAULT_SETS_DIR = Path(__file__).parent / "sets"


@dataclass(frozen=True)
class BuiltInRegistry:
    """
    Immutable collection of bundled rulepacks.

    Contract:
        ``find`` applies the same year rule as the persisted lookup:
        highest year not after the requested one, then version descending.

    Non-goals:
        Status filtering.  Built-in packs are a fallback and are returned
        regardless of their declared status.
    """

    rulepacks: tuple[Rulepack, ...] = ()

    def find(self, jurisdiction_code: str, year: int) -> Rulepack | None:
        code = jurisdiction_code.upper()
        candidates = [
            pack for pack in self.rulepacks
            if pack.jurisdiction_code == code and pack.year <= year
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda pack: (pack.year, pack.version))

    def jurisdictions(self) -> tuple[str, ...]:
        return tuple(sorted({pack.jurisdiction_code for pack in self.rulepacks}))

    def __iter__(self):
        return iter(self.rulepacks)

    def __len__(self) -> int:
        return len(self.rulepacks)

    @classmethod
    def of(cls, rulepacks: Iterable[Rulepack]) -> BuiltInRegistry:
        """Build a registry from already-parsed packs, rejecting duplicate keys."""
        seen: set[str] = set()
        packs: list[Rulepack] = []
        for pack in rulepacks:
            if pack.key in seen:
                raise RulepackSchemaError(pack.key, "duplicate built-in rulepack key")
            seen.add(pack.key)
            packs.append(replace(pack, checksum=verify_checksum(pack)))
        return cls(rulepacks=tuple(packs))


def load_builtin_registry(sets_dir: Path | None = None) -> BuiltInRegistry:
    """
    Load every ``*.yaml`` rulepack under ``sets_dir`` into a registry.

    Args:
        sets_dir: Directory of rulepack YAML files.  Defaults to the
            bundled ``rulepack_config/sets``.

    Raises:
        FileNotFoundError: If ``sets_dir`` does not exist.
        RulepackSchemaError: If a file is malformed or a key repeats.
    """
    directory = sets_dir or DEFAULT_SETS_DIR
    if not directory.is_dir():
        raise FileNotFoundError(f"Rulepack sets directory not found: {directory}")

    registry = BuiltInRegistry.of(
        load_rulepack_file(path, origin=RulepackSource.BUILTIN)
        for path in sorted(directory.glob("*.yaml"))
    )

    logger.info(
        "builtin_registry_loaded",
        extra={
            "sets_dir": str(directory),
            "rulepack_count": len(registry),
            "jurisdictions": list(registry.jurisdictions()),
        },
    )
    return registry


@lru_cache(maxsize=1)
def default_builtin_registry() -> BuiltInRegistry:
    """The bundled registry, loaded once per process."""
    return load_builtin_registry()
