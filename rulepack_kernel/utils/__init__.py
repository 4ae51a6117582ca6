"""Utility functions for the rulepack kernel."""

from rulepack_kernel.utils.hashing import canonicalize_json, hash_payload, short_digest

__all__ = [
    "canonicalize_json",
    "hash_payload",
    "short_digest",
]
