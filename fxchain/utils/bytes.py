from __future__ import annotations

from typing import Union

BytesLike = Union[bytes, bytearray, memoryview]


def ensure_bytes(data: Union[BytesLike, str]) -> bytes:
    """
    Ensure input is bytes.

    Accepts:
      - bytes / bytearray / memoryview  -> bytes(data)
      - str: treated as hex; optional '0x' prefix; even-length enforced

    Raises:
      ValueError on invalid hex strings.
    """
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, str):
        return from_hex(data)
    raise TypeError(f"Unsupported type for ensure_bytes: {type(data)!r}")


def to_hex(b: BytesLike, prefix: bool = True) -> str:
    """
    Bytes -> hex string (lowercase). Prefix with '0x' by default.
    """
    s = bytes(b).hex()
    return f"0x{s}" if prefix else s


def from_hex(s: str) -> bytes:
    """
    Hex string (optionally '0x' prefixed) -> bytes.

    Enforces even-length (nibbles must pair to bytes) and lowercase/uppercase agnostic.
    """
    if not isinstance(s, str):
        raise TypeError("from_hex expects a string")
    if s.startswith(("0x", "0X")):
        s = s[2:]
    if len(s) % 2 != 0:
        raise ValueError("hex string must have even length")
    try:
        return bytes.fromhex(s)
    except ValueError as e:
        raise ValueError(f"invalid hex string: {e}") from e


# --- JSON-RPC quantities --------------------------------------------------------
# Ethereum JSON-RPC encodes integers as "0x"-prefixed hex without leading zeros.


def to_quantity(n: int) -> str:
    if n < 0:
        raise ValueError("quantities are non-negative")
    return hex(int(n))


def from_quantity(q: Union[str, int, None]) -> int:
    if q is None:
        raise ValueError("missing quantity")
    if isinstance(q, int):
        return q
    s = q.strip()
    if s.startswith(("0x", "0X")):
        return int(s[2:] or "0", 16)
    return int(s, 10)


# --- Addresses -----------------------------------------------------------------


def normalize_address(addr: Union[str, BytesLike]) -> str:
    """
    Return the canonical (lowercase, 0x-prefixed) form of a 20-byte address.

    Raises ValueError for anything that does not decode to exactly 20 bytes.
    """
    raw = ensure_bytes(addr)
    if len(raw) != 20:
        raise ValueError(f"address must be 20 bytes, got {len(raw)}")
    return to_hex(raw)


def is_address(addr: object) -> bool:
    if not isinstance(addr, (str, bytes, bytearray, memoryview)):
        return False
    try:
        normalize_address(addr)  # type: ignore[arg-type]
        return True
    except (ValueError, TypeError):
        return False


__all__ = [
    "BytesLike",
    "ensure_bytes",
    "to_hex",
    "from_hex",
    "to_quantity",
    "from_quantity",
    "normalize_address",
    "is_address",
]
