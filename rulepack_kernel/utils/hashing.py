"""
Canonical JSON and SHA-256 digests.

Rulepack checksums (rulepack_config.integrity) and engine trace
fingerprints (rulepack_engines.tracer) both hash through here, so a pack
hashes the same whether it was read from YAML, built in code or loaded
back from the JSON columns of an installed row.
"""

import hashlib
import json
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

FINGERPRINT_LENGTH = 16


def _encode(value: Any) -> Any:
    """
    ``json.dumps`` default hook.

    Raises:
        TypeError: for anything that has no canonical text form.
    """
    if isinstance(value, Decimal):
        # 0.10 and 0.1 are the same rate
        return str(value.normalize())
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    raise TypeError(f"Cannot canonicalize {type(value).__name__}")


def canonicalize_json(data: Any) -> str:
    """Sorted keys, no whitespace; Decimal, dates, UUIDs and enums as strings."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: dict) -> str:
    """64-character SHA-256 hex digest of the payload's canonical JSON."""
    return sha256_hex(canonicalize_json(payload))


def short_digest(text: str, length: int = FINGERPRINT_LENGTH) -> str:
    """Leading ``length`` hex characters of the SHA-256 digest of ``text``."""
    return sha256_hex(text)[:length]
