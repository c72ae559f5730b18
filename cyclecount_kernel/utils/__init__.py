"""Utility modules for the cycle count kernel."""

from cyclecount_kernel.utils.hashing import (
    canonicalize_json,
    hash_payload,
    to_json_safe,
)

__all__ = [
    "canonicalize_json",
    "hash_payload",
    "to_json_safe",
]
