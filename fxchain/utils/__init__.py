"""
Utility helpers for fxchain.

Re-exports:
- bytes: hex, quantity and address helpers
- hash: Keccak-256 convenience wrappers
"""

from .bytes import (ensure_bytes, from_hex, from_quantity, is_address,
                    normalize_address, to_hex, to_quantity)
from .hash import keccak256, keccak256_hex, label_key

__all__ = [
    # bytes
    "to_hex",
    "from_hex",
    "ensure_bytes",
    "to_quantity",
    "from_quantity",
    "normalize_address",
    "is_address",
    # hash
    "keccak256",
    "keccak256_hex",
    "label_key",
]
