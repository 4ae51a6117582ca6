"""
Rulepack Integrity -- content checksums for installed rulepacks.

The checksum is the SHA-256 of the canonical JSON of ``{"rules": ...,
"metadata": ...}``, dumped through the loader so that a pack read back from
its JSON columns hashes to the same value it was installed with.  Nothing
else participates: renaming a region or editing a regression fixture does
not change the checksum, changing any rate does.

A pack that arrives with a checksum (e.g. a YAML file carrying the value
an operator approved) is verified before installation.
"""

from __future__ import annotations

from rulepack_config.loader import dump_metadata, dump_rules
from rulepack_config.schema import Rulepack, RulepackMetadata, TaxRule
from rulepack_kernel.exceptions import RulepackEngineError
from rulepack_kernel.utils.hashing import hash_payload


class RulepackIntegrityError(RulepackEngineError):
    """Declared checksum does not match the rulepack content.

    Attributes:
        rulepack_key: ``jurisdiction/year/version`` of the pack.
        expected: The declared checksum.
        actual: The checksum computed from rules + metadata.
    """

    code: str = "RULEPACK_INTEGRITY_MISMATCH"

    def __init__(self, rulepack_key: str, expected: str, actual: str):
        self.rulepack_key = rulepack_key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Rulepack integrity check failed for '{rulepack_key}': "
            f"declared checksum {expected[:16]}... != "
            f"computed checksum {actual[:16]}..."
        )


def compute_checksum(rules: tuple[TaxRule, ...], metadata: RulepackMetadata) -> str:
    """SHA-256 hex digest over canonical JSON of rules and metadata."""
    return hash_payload({"rules": dump_rules(rules), "metadata": dump_metadata(metadata)})


def rulepack_checksum(rulepack: Rulepack) -> str:
    return compute_checksum(rulepack.rules, rulepack.metadata)


def verify_checksum(rulepack: Rulepack) -> str:
    """Verify a declared checksum and return the computed one.

    No-op comparison if the pack declares no checksum.

    Raises:
        RulepackIntegrityError: If a declared checksum does not match.
    """
    actual = rulepack_checksum(rulepack)
    if rulepack.checksum is not None and rulepack.checksum != actual:
        raise RulepackIntegrityError(rulepack.key, rulepack.checksum, actual)
    return actual
